"""
pngtuber-relay — Local control server for a PNG-tuber avatar overlay.

Modules:
  core/     — OBS WebSocket bridge (state machine) & component wiring
  api/      — FastAPI REST + WebSocket broadcast hub
  overlay/  — Avatar visibility, audio level pipeline, image slots
  config/   — Settings, env loading, YAML config, avatar config store
"""

__version__ = "1.0.0"
__author__ = "pngtuber-relay"
