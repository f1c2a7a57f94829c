"""
overlay/visibility.py — The "avatar visible" flag.

Flipped from the panel button, a Stream Deck or plain curl (GET and POST
/api/toggle). Each toggle tells every overlay the new value and mirrors it
onto the configured OBS scene item. Not persisted: restarts come up visible.
"""

from __future__ import annotations

import logging
from typing import Any

log = logging.getLogger(__name__)


class VisibilityController:
    def __init__(self, hub: Any, bridge: Any, initial: bool = True):
        self._hub = hub
        self._bridge = bridge
        self._visible = initial

    @property
    def visible(self) -> bool:
        return self._visible

    async def toggle(self) -> bool:
        visible = self._visible = not self._visible
        log.info(f"Avatar {'shown' if visible else 'hidden'}")
        await self._hub.broadcast({"type": "set-visible", "visible": visible})
        await self._bridge.set_source_visibility(visible)
        return visible
