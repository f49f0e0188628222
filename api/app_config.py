"""
Application settings for the simulation playback backend.

Settings are resolved in the following order (first match wins per key):
1. Environment variables (SIMVIZ_BACKEND_URL, SIMVIZ_TICK_MS, ...)
2. ``settings.json`` in the config folder
3. Built-in defaults

The config folder location is determined by:
1. SIMVIZ_CONFIG environment variable
2. Default platform-specific location (platformdirs user config dir)
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import platformdirs

from .shared.logger import get_logger

logger = get_logger(__name__)

APP_NAME = "simviz"
APP_AUTHOR = "simviz"
_SETTINGS_FILE_NAME = "settings.json"

# env var -> (field name, parser)
_ENV_OVERRIDES: Dict[str, tuple] = {
    "SIMVIZ_BACKEND_URL": ("backend_url", str),
    "SIMVIZ_REQUEST_TIMEOUT": ("request_timeout", float),
    "SIMVIZ_RUN_TIMEOUT": ("run_timeout", float),
    "SIMVIZ_TICK_MS": ("base_tick_ms", float),
    "SIMVIZ_MAX_SPEED": ("max_speed", int),
    "SIMVIZ_LOG_LEVEL": ("log_level", str),
}


@dataclass
class AppSettings:
    """Runtime settings for the backend."""

    backend_url: str = "http://127.0.0.1:8001"
    request_timeout: float = 10.0
    # The optimizer behind visual-run can take minutes
    run_timeout: float = 120.0
    base_tick_ms: float = 500.0
    max_speed: int = 20
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def get_config_dir() -> Path:
    """Get the config directory (SIMVIZ_CONFIG or the platform default)."""
    env_config = os.environ.get("SIMVIZ_CONFIG")
    if env_config:
        return Path(env_config)
    return Path(platformdirs.user_config_dir(APP_NAME, APP_AUTHOR))


def _read_settings_file(config_dir: Path) -> Dict[str, Any]:
    settings_path = config_dir / _SETTINGS_FILE_NAME
    if not settings_path.exists():
        return {}
    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", settings_path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object", settings_path)
        return {}
    return data


def _apply_env(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(data)
    for env_name, (field_name, parser) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            merged[field_name] = parser(raw)
        except ValueError:
            logger.warning("Invalid value for %s: %r, keeping %r", env_name, raw, merged.get(field_name))
    return merged


def load_settings(config_dir: Optional[Path] = None) -> AppSettings:
    """Load settings from the config folder and environment.

    Args:
        config_dir: Folder holding ``settings.json``. Defaults to get_config_dir().

    Returns:
        The resolved AppSettings.
    """
    folder = config_dir if config_dir is not None else get_config_dir()
    data = _apply_env(_read_settings_file(folder))
    return AppSettings.from_dict(data)


_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reload_settings() -> AppSettings:
    """Drop cached settings and load them again (used by tests)."""
    global _settings
    _settings = None
    return get_settings()
