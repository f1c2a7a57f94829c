"""
config/store.py — The shared avatar configuration record.

One process-wide record, edited from the panel and pushed to every overlay.
Updates are a shallow last-write-wins merge; unknown keys are kept so newer
panels can store fields this server doesn't know about yet.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Coroutine, Optional

log = logging.getLogger(__name__)

ConfigListener = Callable[[dict, dict], Coroutine[Any, Any, None]]

DEFAULT_CONFIG: dict[str, Any] = {
    "threshold": 15,          # Mouth-open volume threshold (0–100)
    "closeDelay": 150,        # ms the mouth stays open after volume drops
    "breathe": True,
    "bounce": True,
    "scale": 80,
    "hotkey": "F9",
    "hotkeyCode": "F9",
    "hotkeyCtrl": False,
    "hotkeyAlt": False,
    "hotkeyShift": False,
    "idleImage": None,
    "talkImage": None,
    "obsHost": "localhost",
    "obsPort": 4455,
    "obsPassword": "",
    "obsInputName": "",       # Audio input whose meter drives the mouth
    "obsSourceName": "",      # Scene item mirrored by the visibility toggle
}

ENDPOINT_KEYS = ("obsHost", "obsPort", "obsPassword")


class JsonConfigFile:
    """Persistence collaborator: a flat JSON document on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"Config load error ({self.path}): {e}")
            return None
        if not isinstance(data, dict):
            log.warning(f"Config file {self.path} is not a JSON object — using defaults")
            return None
        return data

    def save(self, record: dict) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(record, indent=2), encoding="utf-8")
            return True
        except (OSError, TypeError, ValueError) as e:
            log.error(f"Config save error ({self.path}): {e}")
            return False


class ConfigStore:
    """
    Holds the avatar configuration record.

    Listeners are awaited in registration order after every update with
    (previous, current) snapshots. Persistence runs after notification, so a
    failing disk never blocks the broadcast.
    """

    def __init__(self, storage: Optional[Any] = None, initial: Optional[dict] = None):
        self._storage = storage
        self._record: dict[str, Any] = {**DEFAULT_CONFIG, **(initial or {})}
        self._listeners: list[ConfigListener] = []

    @classmethod
    def from_file(cls, path: Path) -> "ConfigStore":
        storage = JsonConfigFile(path)
        loaded = storage.load()
        if loaded is None:
            log.info(f"No usable config at {path} — starting from defaults")
        return cls(storage=storage, initial=loaded)

    def add_listener(self, callback: ConfigListener) -> None:
        self._listeners.append(callback)

    def get(self) -> dict[str, Any]:
        return dict(self._record)

    def __getitem__(self, key: str) -> Any:
        return self._record.get(key)

    @staticmethod
    def endpoint_of(record: dict) -> tuple:
        return tuple(record.get(k) for k in ENDPOINT_KEYS)

    async def update(self, partial: dict) -> dict[str, Any]:
        previous = self.get()
        self._record = {**self._record, **partial}
        current = self.get()
        log.debug(f"Config updated: {sorted(partial)}")

        for cb in self._listeners:
            try:
                await cb(previous, current)
            except Exception as e:
                log.error(f"Config listener error: {e}")

        if self._storage is not None:
            self._storage.save(current)
        return current
