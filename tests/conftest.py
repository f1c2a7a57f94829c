"""Shared fakes: WebSocket clients and obs-websocket-py sessions."""

import json
import threading
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from pngtuber_relay.core import obs_client


class FakeSocket:
    def __init__(self, open: bool = True, fail: bool = False):
        state = WebSocketState.CONNECTED if open else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = state
        self.fail = fail
        self.sent: list[dict] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(data))


class FakeRequests:
    """Stands in for obswebsocket.requests: GetInputList(**kw) → ("GetInputList", kw)."""

    def __getattr__(self, name):
        return lambda **kw: (name, kw)


def ok(**datain):
    return SimpleNamespace(status=True, datain=datain)


def rejected():
    return SimpleNamespace(status=False, datain={})


class FakeReceiveThread:
    """Stands in for obsws.thread_recv: join() blocks until the thread ends."""

    def __init__(self):
        self._ended = threading.Event()

    def end(self):
        self._ended.set()

    def join(self, timeout=None):
        self._ended.wait(timeout)


class FakeSession:
    def __init__(self, host, port, password, timeout=None, on_disconnect=None, responder=None, fail=False,
                 gate=None):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self.on_disconnect = on_disconnect
        self.responder = responder or (lambda name, kw: ok())
        self.fail = fail
        self.gate = gate
        self.handlers: dict[str, object] = {}
        self.calls: list[tuple[str, dict]] = []
        self.connected = False
        self.disconnected = False
        self.ws = MagicMock()
        self.thread_recv = FakeReceiveThread()

    def register(self, fn, event):
        self.handlers[event] = fn

    def connect(self):
        if self.gate is not None:
            self.gate.wait()
        if self.fail:
            raise ConnectionRefusedError("connection refused")
        self.connected = True

    def disconnect(self):
        self.disconnected = True
        self.thread_recv.end()

    def call(self, request):
        name, kw = request
        self.calls.append((name, kw))
        return self.responder(name, kw)

    def names(self):
        return [name for name, _ in self.calls]


class SessionFactory:
    """
    Callable used as OBSBridge.session_factory; `outcomes` lists fail flags per attempt.
    With a `gate` (threading.Event), every handshake blocks until the gate is set.
    """

    def __init__(self, responder=None, fail=False, outcomes=None, gate=None):
        self.responder = responder
        self.fail = fail
        self.outcomes = list(outcomes or [])
        self.gate = gate
        self.sessions: list[FakeSession] = []

    def __call__(self, host, port, password, timeout=None, on_disconnect=None):
        fail = self.outcomes.pop(0) if self.outcomes else self.fail
        session = FakeSession(host, port, password, timeout, on_disconnect, self.responder, fail, self.gate)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]


@pytest.fixture
def fake_obs(monkeypatch):
    monkeypatch.setattr(obs_client, "obs_requests", FakeRequests())
    monkeypatch.setattr(
        obs_client,
        "obs_events",
        SimpleNamespace(InputVolumeMeters="InputVolumeMeters", ExitStarted="ExitStarted"),
    )


@pytest.fixture
def hub():
    h = MagicMock()
    h.broadcast = AsyncMock()
    return h


def scene_responder(items, scene="Main", inputs=(), silent=()):
    """OBS with one program scene holding `items` and `inputs`, of which `silent` have no audio."""
    def respond(name, kw):
        if name == "GetCurrentProgramScene":
            return ok(currentProgramSceneName=scene)
        if name == "GetSceneItemList":
            return ok(sceneItems=[{"sourceName": n, "sceneItemId": i + 1} for i, n in enumerate(items)])
        if name == "GetInputList":
            return ok(inputs=[{"inputName": n} for n in inputs])
        if name == "GetInputVolume":
            return rejected() if kw["inputName"] in silent else ok(inputVolumeMul=1.0)
        return ok()
    return respond
