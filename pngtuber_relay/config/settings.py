"""
config/settings.py — Process settings via env vars + YAML override.

Priority: ENV > relay.yaml > defaults

The avatar record (thresholds, images, OBS endpoint...) is NOT here — it lives
in config.json and is owned by ConfigStore so the panel can edit it live.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def app_dir() -> Path:
    """Directory relative paths resolve against: next to the executable when frozen."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path.cwd()


class OBSSettings(BaseSettings):
    reconnect_interval: float = Field(5.0, description="Seconds between reconnect attempts")
    connect_timeout: float = Field(5.0, description="Handshake timeout in seconds")
    request_timeout: float = Field(10.0, description="Seconds to wait for a request reply")

    model_config = SettingsConfigDict(env_prefix="OBS_")


class APISettings(BaseSettings):
    host: str = Field("0.0.0.0", description="API server bind host")
    port: int = Field(3377, description="API server port")
    cors_origins: list[str] = Field(["*"], description="CORS allowed origins")
    log_level: str = Field("info", description="Log level")

    model_config = SettingsConfigDict(env_prefix="API_")


class StorageSettings(BaseSettings):
    config_path: Path = Field(Path("config.json"), description="Avatar config record (JSON)")
    images_dir: Path = Field(Path("images"), description="Uploaded avatar images")
    web_dir: Path = Field(Path("web"), description="Directory holding panel.html / overlay.html")

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else app_dir() / path


class Settings(BaseSettings):
    obs: OBSSettings = Field(default_factory=OBSSettings)
    api: APISettings = Field(default_factory=APISettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    model_config = SettingsConfigDict(env_prefix="RELAY_")

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings, merging YAML file if present."""
        path = config_path or Path(os.environ.get("RELAY_CONFIG_FILE", "relay.yaml"))
        yaml_data: dict = {}

        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

        obs = OBSSettings(**yaml_data.get("obs", {}))
        api = APISettings(**yaml_data.get("api", {}))
        storage = StorageSettings(**yaml_data.get("storage", {}))

        return cls(obs=obs, api=api, storage=storage)

    def to_yaml(self, path: Path) -> None:
        """Save current settings to YAML."""
        data = {
            "obs": self.obs.model_dump(),
            "api": self.api.model_dump(),
            "storage": {k: str(v) for k, v in self.storage.model_dump().items()},
        }
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
