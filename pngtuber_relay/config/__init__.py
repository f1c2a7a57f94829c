"""config — process settings and the shared avatar configuration record."""
from .settings import Settings, app_dir
from .store import DEFAULT_CONFIG, ConfigStore, JsonConfigFile

__all__ = ["Settings", "app_dir", "DEFAULT_CONFIG", "ConfigStore", "JsonConfigFile"]
