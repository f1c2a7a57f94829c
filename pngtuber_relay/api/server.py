"""
api/server.py — FastAPI REST API + WebSocket relay for the panel and overlays.

HTTP:
  GET  /api/config            current avatar config
  POST /api/config            partial update (merge) → broadcast → maybe reconnect OBS
  POST /api/upload/{slot}     raw image body for slot idle|talk
  GET  /api/obs/status        bridge connection flag
  POST /api/obs/connect       force reconnect
  GET  /api/obs/inputs        audio-capable OBS inputs
  GET  /api/obs/sources       scene items of the program scene
  GET|POST /api/toggle        flip avatar visibility (Stream Deck / curl friendly)
  GET  /health                summary for uptime checks

WebSocket (/ and /ws, ?role=overlay|panel):
  on connect   → {"type": "config", ...} then {"type": "obs-status", ...}
  client sends → {"type": "toggle-visible"} (relayed to everyone)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import Body, FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from pngtuber_relay import __version__
from pngtuber_relay.core.obs_client import OBSError
from pngtuber_relay.overlay.images import AssetTooLargeError, InvalidSlotError

if TYPE_CHECKING:
    from pngtuber_relay.core.relay import Relay

log = logging.getLogger(__name__)


def create_app(relay: "Relay", connect_on_startup: bool = True) -> FastAPI:
    settings = relay.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(f"pngtuber-relay API starting on {settings.api.host}:{settings.api.port}")
        if connect_on_startup:
            # Runs in the background; a failed first attempt falls into the retry loop
            relay.bridge.start()
        yield
        await relay.bridge.disconnect()
        log.info("pngtuber-relay API shutting down.")

    app = FastAPI(
        title="pngtuber-relay",
        description="PNG-tuber avatar control server with OBS bridge",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    images_dir = relay.images.ensure_dir()
    app.mount("/images", StaticFiles(directory=str(images_dir)), name="images")
    web_dir = settings.storage.resolve(settings.storage.web_dir)

    # ─────────────────────────────────────────────────────────────────
    # Pages
    # ─────────────────────────────────────────────────────────────────

    def page(name: str) -> FileResponse:
        path = web_dir / f"{name}.html"
        if not path.is_file():
            raise HTTPException(status_code=404, detail=f"{name}.html not found in {web_dir}")
        return FileResponse(path)

    @app.get("/", include_in_schema=False)
    async def index():
        return RedirectResponse("/panel")

    @app.get("/panel", tags=["Pages"])
    async def panel():
        return page("panel")

    @app.get("/overlay", tags=["Pages"])
    async def overlay():
        return page("overlay")

    # ─────────────────────────────────────────────────────────────────
    # Health
    # ─────────────────────────────────────────────────────────────────

    @app.get("/health", tags=["System"])
    async def health():
        return {
            "status": "ok",
            "obs_connected": relay.bridge.is_connected(),
            "obs_state": relay.bridge.state.value,
            "ws_clients": relay.registry.count_by_role(),
            "visible": relay.visibility.visible,
            "version": __version__,
        }

    # ─────────────────────────────────────────────────────────────────
    # Config
    # ─────────────────────────────────────────────────────────────────

    @app.get("/api/config", tags=["Config"])
    async def get_config():
        return relay.config.get()

    @app.post("/api/config", tags=["Config"])
    async def update_config(body: dict[str, Any] = Body(...)):
        """Merge the given keys over the current config. Unknown keys are kept."""
        await relay.config.update(body)
        return {"ok": True}

    @app.post("/api/upload/{slot}", tags=["Config"])
    async def upload_image(slot: str, request: Request):
        try:
            relay.images.check_slot(slot)
        except InvalidSlotError as e:
            raise HTTPException(status_code=400, detail=str(e))

        data = bytearray()
        async for chunk in request.stream():
            data.extend(chunk)
            if len(data) > relay.images.max_bytes:
                raise HTTPException(status_code=413, detail=relay.images.too_large_message())

        try:
            filename = relay.images.save(slot, request.headers.get("content-type", "image/png"), bytes(data))
        except AssetTooLargeError as e:
            raise HTTPException(status_code=413, detail=str(e))
        await relay.config.update({relay.images.config_key(slot): filename})
        return {"ok": True, "filename": filename}

    # ─────────────────────────────────────────────────────────────────
    # OBS
    # ─────────────────────────────────────────────────────────────────

    @app.get("/api/obs/status", tags=["OBS"])
    async def obs_status():
        return {"connected": relay.bridge.is_connected()}

    @app.post("/api/obs/connect", tags=["OBS"])
    async def obs_connect():
        await relay.bridge.connect()
        return {"connected": relay.bridge.is_connected()}

    @app.get("/api/obs/inputs", tags=["OBS"])
    async def obs_inputs():
        if not relay.bridge.is_connected():
            return {"inputs": [], "connected": False}
        try:
            inputs = await relay.bridge.list_audio_inputs()
        except OBSError as e:
            return {"inputs": [], "connected": relay.bridge.is_connected(), "error": str(e)}
        return {"inputs": inputs, "connected": True}

    @app.get("/api/obs/sources", tags=["OBS"])
    async def obs_sources():
        if not relay.bridge.is_connected():
            return {"sources": [], "connected": False}
        try:
            scene, sources = await relay.bridge.list_scene_sources()
        except OBSError as e:
            return {"sources": [], "connected": relay.bridge.is_connected(), "error": str(e)}
        return {"sources": sources, "scene": scene, "connected": True}

    # ─────────────────────────────────────────────────────────────────
    # Visibility
    # ─────────────────────────────────────────────────────────────────

    @app.api_route("/api/toggle", methods=["GET", "POST"], tags=["Avatar"])
    async def toggle_visible():
        """Flip avatar visibility. GET works too, for Stream Deck 'open URL' buttons."""
        return {"visible": await relay.visibility.toggle()}

    # ─────────────────────────────────────────────────────────────────
    # WebSocket relay
    # ─────────────────────────────────────────────────────────────────

    @app.websocket("/")
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        conn = await relay.hub.register(websocket, websocket.query_params.get("role"))
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                await relay.hub.handle_message(conn, raw)
        finally:
            relay.hub.unregister(conn)

    return app
