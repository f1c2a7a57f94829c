"""
core/obs_client.py — OBS WebSocket 5.x bridge: connection state machine,
auto-reconnect, volume-meter events and scene-item visibility.

States:
    Disconnected ──connect()──▶ Connecting ──ok──▶ Connected
         ▲                        │  │                 │
         └───────fail─────────────┘  └─superseded─┐    │ remote close
         ▲                                        ▼    │
         └──────────────────────────────────── (retry timer, 5s)

obs-websocket-py is blocking and delivers events on its own receive thread:
handshakes and requests run in the default executor, and event callbacks are
marshalled back onto the event loop captured by connect(). Only one reconnect
timer is ever pending — it is cancelled before every attempt and reschedule.
A handshake that does not finish within connect_timeout counts as a failed
attempt, and a watch task treats the end of the receive thread as a remote
close, whatever ended it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Coroutine, Optional

from obswebsocket import obsws, requests as obs_requests, events as obs_events  # type: ignore
from websocket import WebSocketConnectionClosedException

log = logging.getLogger(__name__)

VolumeCallback = Callable[[dict], Coroutine[Any, Any, None]]

# obs-websocket EventSubscription bitmask: All (bits 0–10) + InputVolumeMeters (high-volume, opt-in)
EVENT_SUBSCRIPTION_ALL = (1 << 11) - 1
EVENT_SUBSCRIPTION_INPUT_VOLUME_METERS = 1 << 16
OP_REIDENTIFY = 3

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 4455


class OBSError(Exception):
    pass


class OBSConnectionError(OBSError):
    pass


class OBSRequestError(OBSError):
    pass


class BridgeState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


TRANSITIONS: dict[BridgeState, set[BridgeState]] = {
    BridgeState.DISCONNECTED: {BridgeState.CONNECTING},
    BridgeState.CONNECTING: {BridgeState.CONNECTED, BridgeState.DISCONNECTED, BridgeState.CONNECTING},
    BridgeState.CONNECTED: {BridgeState.DISCONNECTED, BridgeState.CONNECTING},
}


def _data(result: Any) -> dict:
    return getattr(result, "datain", None) or {}


def _request_name(request: Any) -> str:
    return getattr(request, "name", None) or type(request).__name__


class OBSBridge:
    def __init__(
        self,
        config_store: Any,
        hub: Any,
        session_factory: Callable[..., Any] = obsws,
        reconnect_interval: float = 5.0,
        connect_timeout: float = 5.0,
        request_timeout: float = 10.0,
    ):
        self._config = config_store
        self._hub = hub
        self._session_factory = session_factory
        self.reconnect_interval = reconnect_interval
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout

        self._state = BridgeState.DISCONNECTED
        self._ws: Optional[Any] = None
        self._endpoint: Optional[tuple] = None
        self._attempt = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._volume_listeners: list[VolumeCallback] = []

    # ── State ─────────────────────────────────────────────────────────

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def endpoint(self) -> Optional[tuple]:
        return self._endpoint

    @property
    def pending_reconnect(self) -> Optional[asyncio.TimerHandle]:
        return self._reconnect_handle

    def is_connected(self) -> bool:
        return self._state is BridgeState.CONNECTED

    def _transition(self, new: BridgeState) -> None:
        if new not in TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal bridge transition {self._state.value} → {new.value}")
        log.debug(f"OBS bridge: {self._state.value} → {new.value}")
        self._state = new

    # ── Connection ────────────────────────────────────────────────────

    async def connect(self) -> bool:
        """(Re)connect to the endpoint in the current config. Never raises."""
        self._cancel_reconnect()
        self._loop = asyncio.get_running_loop()
        self._attempt += 1
        attempt = self._attempt

        await self._close_session()
        if attempt != self._attempt:
            return False
        self._transition(BridgeState.CONNECTING)
        host, port, password = self._resolve_endpoint()
        self._endpoint = (host, port, password)

        # The worker thread cannot be interrupted; shield it so a timed-out
        # handshake still hands its session to _discard_late_session.
        handshake = self._loop.run_in_executor(None, self._open_session, host, port, password)
        try:
            session = await asyncio.wait_for(asyncio.shield(handshake), self.connect_timeout)
        except asyncio.CancelledError:
            handshake.add_done_callback(self._discard_late_session)
            raise
        except Exception as e:
            reason = str(e)
            if isinstance(e, asyncio.TimeoutError):
                handshake.add_done_callback(self._discard_late_session)
                reason = f"no handshake within {self.connect_timeout}s"
            if attempt != self._attempt:
                return False
            self._transition(BridgeState.DISCONNECTED)
            log.warning(f"OBS not available (ws://{host}:{port}): {reason}")
            self._schedule_reconnect()
            await self._publish_status(False)
            return False

        if attempt != self._attempt:
            # A newer connect() or disconnect() ran while this handshake was in flight
            await self._loop.run_in_executor(None, self._close_quietly, session)
            return False

        self._ws = session
        self._transition(BridgeState.CONNECTED)
        log.info(f"Connected to OBS at {host}:{port}")
        self._watch_task = asyncio.ensure_future(self._watch_session(session))
        await self._publish_status(True)
        return True

    def start(self) -> asyncio.Task:
        """Begin connecting in the background; the caller does not wait for the handshake."""
        self._connect_task = asyncio.ensure_future(self.connect())
        return self._connect_task

    async def disconnect(self) -> None:
        """Shutdown: drop the session without scheduling a retry."""
        self._cancel_reconnect()
        self._attempt += 1
        await self._close_session()
        if self._state is not BridgeState.DISCONNECTED:
            self._transition(BridgeState.DISCONNECTED)
        pending = self._connect_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            # A superseded handshake returns within connect_timeout
            await asyncio.wait({pending}, timeout=self.connect_timeout + 1)

    def _discard_late_session(self, handshake: asyncio.Future) -> None:
        if handshake.cancelled() or handshake.exception() is not None:
            return
        session = handshake.result()
        log.debug("Closing OBS session whose handshake finished after the timeout")
        if self._loop is not None and not self._loop.is_closed():
            self._loop.run_in_executor(None, self._close_quietly, session)

    async def _watch_session(self, session: Any) -> None:
        # The receive thread exits on any socket error, including resets that
        # never reach on_disconnect.
        thread = getattr(session, "thread_recv", None)
        if thread is None:
            return
        await asyncio.get_running_loop().run_in_executor(None, thread.join)
        await self._handle_session_closed(session)

    def _resolve_endpoint(self) -> tuple[str, int, str]:
        cfg = self._config.get()
        host = cfg.get("obsHost") or DEFAULT_HOST
        try:
            port = int(cfg.get("obsPort") or DEFAULT_PORT)
        except (TypeError, ValueError):
            log.warning(f"Invalid obsPort {cfg.get('obsPort')!r}, using {DEFAULT_PORT}")
            port = DEFAULT_PORT
        return host, port, cfg.get("obsPassword") or ""

    def _open_session(self, host: str, port: int, password: str) -> Any:
        # Runs in a worker thread. The lambdas resolve `session` late, after assignment.
        session = self._session_factory(
            host,
            port,
            password,
            timeout=self.request_timeout,
            on_disconnect=lambda *_: self._from_thread(self._handle_session_closed, session),
        )
        session.register(self._on_volume_meters, obs_events.InputVolumeMeters)
        session.register(
            lambda _event: self._from_thread(self._handle_session_closed, session),
            obs_events.ExitStarted,
        )
        session.connect()
        try:
            session.ws.send(json.dumps({
                "op": OP_REIDENTIFY,
                "d": {"eventSubscriptions": EVENT_SUBSCRIPTION_ALL | EVENT_SUBSCRIPTION_INPUT_VOLUME_METERS},
            }))
        except Exception:
            self._close_quietly(session)
            raise
        return session

    @staticmethod
    def _close_quietly(session: Any) -> None:
        try:
            session.disconnect()
        except Exception:
            pass

    async def _close_session(self) -> None:
        session, self._ws = self._ws, None
        if session is not None:
            await asyncio.get_running_loop().run_in_executor(None, self._close_quietly, session)

    async def _publish_status(self, connected: bool) -> None:
        await self._hub.broadcast({"type": "obs-status", "connected": connected})

    # ── Reconnect timer ───────────────────────────────────────────────

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_interval, self._fire_reconnect)
        log.debug(f"OBS reconnect scheduled in {self.reconnect_interval}s")

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        self._connect_task = asyncio.ensure_future(self.connect())

    # ── Remote events (receive thread → loop) ─────────────────────────

    def _from_thread(self, handler: Callable[..., Coroutine], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(handler(*args), loop)

    async def _handle_session_closed(self, session: Any) -> None:
        if session is None or session is not self._ws:
            return
        self._ws = None
        self._transition(BridgeState.DISCONNECTED)
        log.warning("OBS disconnected, retrying...")
        self._schedule_reconnect()
        await asyncio.get_running_loop().run_in_executor(None, self._close_quietly, session)
        await self._publish_status(False)

    def _on_volume_meters(self, event: Any) -> None:
        self._from_thread(self._dispatch_volume, _data(event))

    def on_volume_meters(self, callback: VolumeCallback) -> None:
        """Subscribe to InputVolumeMeters payloads ({"inputs": [...]})."""
        self._volume_listeners.append(callback)

    async def _dispatch_volume(self, data: dict) -> None:
        for cb in self._volume_listeners:
            try:
                await cb(data)
            except Exception as e:
                log.error(f"Volume listener error: {e}")

    async def on_config_changed(self, previous: dict, current: dict) -> None:
        if self._config.endpoint_of(previous) != self._config.endpoint_of(current):
            log.info("OBS endpoint changed — reconnecting")
            await self.connect()

    # ── Core request helper ───────────────────────────────────────────

    async def call(self, request: Any) -> Any:
        session = self._ws
        if not self.is_connected() or session is None:
            raise OBSConnectionError("Not connected to OBS")
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, session.call, request)
        except (WebSocketConnectionClosedException, OSError) as e:
            await self._handle_session_closed(session)
            raise OBSConnectionError(f"{_request_name(request)} failed, connection lost: {e}") from e
        except Exception as e:
            raise OBSRequestError(f"{_request_name(request)} failed: {e}") from e
        if not getattr(result, "status", True):
            raise OBSRequestError(f"{_request_name(request)} rejected by OBS")
        return result

    # ── Inputs & scenes ───────────────────────────────────────────────

    async def list_audio_inputs(self) -> list[str]:
        """Inputs that answer GetInputVolume, in OBS enumeration order."""
        result = await self.call(obs_requests.GetInputList())
        names = []
        for item in _data(result).get("inputs", []):
            name = item.get("inputName")
            try:
                await self.call(obs_requests.GetInputVolume(inputName=name))
            except OBSRequestError:
                continue
            names.append(name)
        return names

    async def get_current_scene(self) -> str:
        result = await self.call(obs_requests.GetCurrentProgramScene())
        return _data(result).get("currentProgramSceneName", "")

    async def _scene_items(self, scene_name: str) -> list[dict]:
        result = await self.call(obs_requests.GetSceneItemList(sceneName=scene_name))
        return _data(result).get("sceneItems", [])

    async def list_scene_sources(self) -> tuple[str, list[str]]:
        scene = await self.get_current_scene()
        items = await self._scene_items(scene)
        return scene, [i.get("sourceName") for i in items]

    async def set_source_visibility(self, visible: bool) -> bool:
        """
        Mirror the avatar flag onto the configured scene item in the program scene.
        Returns False (logged, not raised) when OBS is down or the item is missing.
        """
        source = self._config.get().get("obsSourceName")
        if not source:
            return False
        if not self.is_connected():
            log.debug(f"OBS disconnected — '{source}' visibility not mirrored")
            return False
        try:
            scene = await self.get_current_scene()
            items = await self._scene_items(scene)
            item = next((i for i in items if i.get("sourceName") == source), None)
            if item is None:
                log.info(f"Source '{source}' not found in scene '{scene}'")
                return False
            await self.call(obs_requests.SetSceneItemEnabled(
                sceneName=scene,
                sceneItemId=item.get("sceneItemId"),
                sceneItemEnabled=visible,
            ))
        except OBSError as e:
            log.warning(f"Could not toggle '{source}' in OBS: {e}")
            return False
        log.debug(f"Scene item '{source}' in '{scene}' → {'visible' if visible else 'hidden'}")
        return True
