"""
api/hub.py — WebSocket connection registry + broadcast fan-out.

Broadcast is fire-and-forget: each event is serialized once and written to
every open socket. A socket that is closed or errors is skipped, never
removed here — removal belongs to the endpoint's own disconnect handling.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from typing import Any, Callable, Iterator, Optional

from starlette.websockets import WebSocketState

log = logging.getLogger(__name__)

_ids = count(1)


class Role(str, Enum):
    OVERLAY = "overlay"
    PANEL = "panel"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        try:
            return cls(value or cls.OVERLAY.value)
        except ValueError:
            log.debug(f"Unknown client role {value!r}, treating as overlay")
            return cls.OVERLAY


@dataclass(eq=False)
class Connection:
    socket: Any
    role: Role = Role.OVERLAY
    id: int = field(default_factory=lambda: next(_ids))

    def is_open(self) -> bool:
        return (
            getattr(self.socket, "client_state", None) == WebSocketState.CONNECTED
            and getattr(self.socket, "application_state", None) == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.socket.send_text(data)


class ConnectionRegistry:
    """The only place the set of live client connections is mutated."""

    def __init__(self):
        self._connections: dict[int, Connection] = {}

    def add(self, conn: Connection) -> None:
        self._connections[conn.id] = conn
        log.info(f"WS client connected ({conn.role.value}). Total: {len(self)}")

    def discard(self, conn: Connection) -> None:
        if self._connections.pop(conn.id, None) is not None:
            log.info(f"WS client disconnected ({conn.role.value}). Total: {len(self)}")

    def __contains__(self, conn: Connection) -> bool:
        return conn.id in self._connections

    def __iter__(self) -> Iterator[Connection]:
        # Snapshot: registrations during an awaited send must not break iteration
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)

    def count_by_role(self) -> dict[str, int]:
        counts = {r.value: 0 for r in Role}
        for conn in self:
            counts[conn.role.value] += 1
        return counts


class BroadcastHub:
    def __init__(
        self,
        registry: ConnectionRegistry,
        config_store: Any,
        status_source: Optional[Callable[[], bool]] = None,
    ):
        self.registry = registry
        self._config = config_store
        self._status_source = status_source or (lambda: False)

    def bind_status_source(self, source: Callable[[], bool]) -> None:
        """Wire the OBS connection flag sent to clients on connect."""
        self._status_source = source

    # ── Membership ────────────────────────────────────────────────────

    async def register(self, socket: Any, role: Any = Role.OVERLAY) -> Connection:
        conn = Connection(socket=socket, role=Role.parse(getattr(role, "value", role)))
        self.registry.add(conn)
        await self._send(conn, json.dumps({"type": "config", "data": self._config.get()}))
        await self._send(conn, json.dumps({"type": "obs-status", "connected": self._status_source()}))
        return conn

    def unregister(self, conn: Connection) -> None:
        self.registry.discard(conn)

    # ── Fan-out ───────────────────────────────────────────────────────

    async def broadcast(self, event: dict, exclude: Optional[Connection] = None) -> int:
        """Send `event` to every open connection but `exclude`. Returns the number written."""
        data = json.dumps(event)
        sent = 0
        for conn in self.registry:
            if conn is exclude or not conn.is_open():
                continue
            if await self._send(conn, data):
                sent += 1
        return sent

    async def _send(self, conn: Connection, data: str) -> bool:
        try:
            await conn.send_text(data)
            return True
        except Exception as e:
            log.debug(f"WS send to client {conn.id} failed: {e}")
            return False

    async def on_config_changed(self, previous: dict, current: dict) -> None:
        await self.broadcast({"type": "config", "data": current})

    # ── Inbound ───────────────────────────────────────────────────────

    async def handle_message(self, conn: Connection, raw: Any) -> None:
        """Only {"type": "toggle-visible"} is accepted; everything else is dropped."""
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            log.debug(f"Ignoring malformed message from client {conn.id}")
            return
        if isinstance(msg, dict) and msg.get("type") == "toggle-visible":
            await self.broadcast({"type": "toggle-visible"})
