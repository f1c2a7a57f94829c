"""api — FastAPI surface and the WebSocket broadcast hub."""
from .hub import BroadcastHub, Connection, ConnectionRegistry, Role
from .server import create_app

__all__ = ["BroadcastHub", "Connection", "ConnectionRegistry", "Role", "create_app"]
