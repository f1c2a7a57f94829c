"""
core/relay.py — Builds and wires the relay components.

Everything stateful (config record, client set, bridge, visibility flag) is
owned by one Relay instance that is handed to the API factory and the CLI.

Listener order matters: config changes are broadcast to clients before the
bridge decides whether to reconnect.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from pngtuber_relay.api.hub import BroadcastHub, ConnectionRegistry
from pngtuber_relay.config import ConfigStore, Settings
from pngtuber_relay.overlay import AudioLevelPipeline, ImageStore, VisibilityController

from .obs_client import OBSBridge


@dataclass
class Relay:
    settings: Settings
    config: ConfigStore
    registry: ConnectionRegistry
    hub: BroadcastHub
    bridge: OBSBridge
    visibility: VisibilityController
    audio: AudioLevelPipeline
    images: ImageStore


def build_relay(
    settings: Settings,
    config: Optional[ConfigStore] = None,
    session_factory: Optional[Callable[..., Any]] = None,
) -> Relay:
    storage = settings.storage
    config = config or ConfigStore.from_file(storage.resolve(storage.config_path))

    registry = ConnectionRegistry()
    hub = BroadcastHub(registry, config)

    bridge_kwargs: dict[str, Any] = {}
    if session_factory is not None:
        bridge_kwargs["session_factory"] = session_factory
    bridge = OBSBridge(
        config,
        hub,
        reconnect_interval=settings.obs.reconnect_interval,
        connect_timeout=settings.obs.connect_timeout,
        request_timeout=settings.obs.request_timeout,
        **bridge_kwargs,
    )
    hub.bind_status_source(bridge.is_connected)

    config.add_listener(hub.on_config_changed)
    config.add_listener(bridge.on_config_changed)

    audio = AudioLevelPipeline(config, hub)
    bridge.on_volume_meters(audio.handle)

    return Relay(
        settings=settings,
        config=config,
        registry=registry,
        hub=hub,
        bridge=bridge,
        visibility=VisibilityController(hub, bridge),
        audio=audio,
        images=ImageStore(storage.resolve(storage.images_dir)),
    )
