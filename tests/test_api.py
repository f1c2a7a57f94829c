"""
tests/test_api.py — HTTP + WebSocket surface via FastAPI's TestClient.
"""

import json
import threading
import time

import pytest
from fastapi.testclient import TestClient

from conftest import SessionFactory, scene_responder

from pngtuber_relay.api import create_app
from pngtuber_relay.config import ConfigStore, JsonConfigFile, Settings
from pngtuber_relay.config.settings import StorageSettings
from pngtuber_relay.core import build_relay

pytestmark = pytest.mark.usefixtures("fake_obs")


def make_relay(tmp_path, factory=None, **initial):
    settings = Settings(
        storage=StorageSettings(
            config_path=tmp_path / "config.json",
            images_dir=tmp_path / "images",
            web_dir=tmp_path / "web",
        )
    )
    config = ConfigStore(storage=JsonConfigFile(tmp_path / "config.json"), initial=initial)
    return build_relay(settings, config=config, session_factory=factory or SessionFactory(fail=True))


@pytest.fixture
def relay(tmp_path):
    return make_relay(tmp_path)


@pytest.fixture
def client(relay):
    with TestClient(create_app(relay, connect_on_startup=False)) as c:
        yield c


def bootstrap(ws):
    return [ws.receive_json(), ws.receive_json()]


def wait_for_obs(client, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if client.get("/api/obs/status").json()["connected"]:
            return True
        time.sleep(0.01)
    return False


# ─── Config ───────────────────────────────────────────────────────────────────

def test_get_config_defaults(client):
    data = client.get("/api/config").json()
    assert data["threshold"] == 15
    assert data["obsPort"] == 4455


def test_post_config_merges_persists_and_broadcasts(client, tmp_path):
    with client.websocket_connect("/ws?role=overlay") as ws:
        config_msg, status_msg = bootstrap(ws)
        assert config_msg["type"] == "config"
        assert status_msg == {"type": "obs-status", "connected": False}

        r = client.post("/api/config", json={"threshold": 42, "customFlag": True})
        assert r.json() == {"ok": True}

        pushed = ws.receive_json()
        assert pushed["type"] == "config"
        assert pushed["data"]["threshold"] == 42
        assert pushed["data"]["customFlag"] is True
        assert pushed["data"]["scale"] == 80

    saved = json.loads((tmp_path / "config.json").read_text())
    assert saved["threshold"] == 42


def test_post_config_rejects_non_object(client):
    assert client.post("/api/config", json=[1, 2]).status_code == 422


# ─── Uploads ──────────────────────────────────────────────────────────────────

def test_upload_rejects_unknown_slot(client, tmp_path):
    r = client.post("/api/upload/banner", content=b"img", headers={"content-type": "image/png"})
    assert r.status_code == 400
    assert "banner" in r.json()["detail"]
    assert client.get("/api/config").json()["idleImage"] is None


def test_upload_stores_image_and_broadcasts(client, tmp_path):
    with client.websocket_connect("/") as ws:
        bootstrap(ws)
        r = client.post("/api/upload/idle", content=b"GIF89a", headers={"content-type": "image/gif"})
        assert r.json() == {"ok": True, "filename": "idle.gif"}

        pushed = ws.receive_json()
        assert pushed["type"] == "config"
        assert pushed["data"]["idleImage"] == "idle.gif"

    assert (tmp_path / "images" / "idle.gif").read_bytes() == b"GIF89a"
    assert client.get("/images/idle.gif").content == b"GIF89a"


def test_upload_over_limit_rejected_while_streaming(client, relay, tmp_path):
    relay.images.max_bytes = 4

    def chunks():
        yield b"0123"
        yield b"4567"
        yield b"89"

    r = client.post("/api/upload/talk", content=chunks(), headers={"content-type": "image/png"})

    assert r.status_code == 413
    assert "4 byte" in r.json()["detail"]
    assert not (tmp_path / "images" / "talk.png").exists()
    assert client.get("/api/config").json()["talkImage"] is None


# ─── OBS ──────────────────────────────────────────────────────────────────────

def test_obs_lists_empty_when_disconnected(client):
    assert client.get("/api/obs/sources").json() == {"sources": [], "connected": False}
    assert client.get("/api/obs/inputs").json() == {"inputs": [], "connected": False}
    assert client.get("/api/obs/status").json() == {"connected": False}


def test_obs_connect_reports_failure(client, relay):
    assert client.post("/api/obs/connect").json() == {"connected": False}
    assert relay.bridge.pending_reconnect is not None


def test_obs_lists_when_connected(tmp_path):
    responder = scene_responder(["Camera", "Avatar"], scene="Live", inputs=["Mic", "Browser"], silent={"Browser"})
    relay = make_relay(tmp_path, factory=SessionFactory(responder=responder))

    with TestClient(create_app(relay)) as client:
        assert wait_for_obs(client)
        assert client.get("/api/obs/sources").json() == {
            "sources": ["Camera", "Avatar"],
            "scene": "Live",
            "connected": True,
        }
        assert client.get("/api/obs/inputs").json() == {"inputs": ["Mic"], "connected": True}

    assert relay.bridge.is_connected() is False


def test_startup_does_not_wait_for_obs_handshake(tmp_path):
    gate = threading.Event()
    relay = make_relay(tmp_path, factory=SessionFactory(gate=gate))

    with TestClient(create_app(relay)) as client:
        try:
            # The API answers while the first handshake is still blocked
            assert client.get("/health").json()["obs_state"] == "connecting"
            assert client.get("/api/config").status_code == 200
        finally:
            gate.set()
        assert wait_for_obs(client)

    assert relay.bridge.is_connected() is False


# ─── Visibility ───────────────────────────────────────────────────────────────

def test_toggle_get_and_post(client):
    with client.websocket_connect("/ws?role=overlay") as ws:
        bootstrap(ws)
        assert client.get("/api/toggle").json() == {"visible": False}
        assert ws.receive_json() == {"type": "set-visible", "visible": False}
        assert client.post("/api/toggle").json() == {"visible": True}
        assert ws.receive_json() == {"type": "set-visible", "visible": True}


def test_ws_toggle_relay_and_junk_messages(client, relay):
    with client.websocket_connect("/ws?role=panel") as panel, \
            client.websocket_connect("/ws?role=overlay") as overlay:
        bootstrap(panel)
        bootstrap(overlay)
        assert relay.registry.count_by_role() == {"overlay": 1, "panel": 1}

        panel.send_text("{broken")
        panel.send_json({"type": "shrug"})
        panel.send_bytes(b"\x00\x01")
        panel.send_json({"type": "toggle-visible"})

        assert panel.receive_json() == {"type": "toggle-visible"}
        assert overlay.receive_json() == {"type": "toggle-visible"}
        # Peer relay does not touch the authoritative flag
        assert relay.visibility.visible is True
        assert len(relay.registry) == 2


# ─── Pages & health ───────────────────────────────────────────────────────────

def test_pages_served_from_web_dir(client, tmp_path):
    assert client.get("/panel").status_code == 404
    (tmp_path / "web").mkdir()
    (tmp_path / "web" / "overlay.html").write_text("<html>overlay</html>")
    assert "overlay" in client.get("/overlay").text
    assert client.get("/", follow_redirects=False).headers["location"] == "/panel"


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["obs_connected"] is False
    assert data["obs_state"] == "disconnected"
    assert data["visible"] is True
