"""core — OBS bridge and component wiring."""
from .obs_client import BridgeState, OBSBridge, OBSConnectionError, OBSError, OBSRequestError
from .relay import Relay, build_relay

__all__ = [
    "BridgeState",
    "OBSBridge",
    "OBSConnectionError",
    "OBSError",
    "OBSRequestError",
    "Relay",
    "build_relay",
]
