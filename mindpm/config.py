from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .db import DEFAULT_DB_PATH

DEFAULT_CONFIG_PATH = Path("~/.config/mindpm/config.json").expanduser()
DEFAULT_VIEWER_HOST = "127.0.0.1"
DEFAULT_VIEWER_PORT = 3131

CONFIG_ENV_OVERRIDES = {
    "db_path": "MINDPM_DB_PATH",
    "viewer_enabled": "MINDPM_VIEWER",
    "viewer_host": "MINDPM_HOST",
    "viewer_port": "MINDPM_PORT",
    "open_browser": "MINDPM_OPEN_BROWSER",
    "log_level": "MINDPM_LOG_LEVEL",
}

# Older installs used this name for the database location.
LEGACY_DB_ENV = "PROJECT_MEMORY_DB_PATH"

SETTABLE_KEYS = tuple(CONFIG_ENV_OVERRIDES)
_INT_KEYS = {"viewer_port"}
_BOOL_KEYS = {"viewer_enabled", "open_browser"}
_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "off", "no"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MINDPM_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    legacy_db = os.getenv(LEGACY_DB_ENV)
    if legacy_db is not None:
        overrides["db_path"] = legacy_db
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MindpmConfig:
    db_path: str = str(DEFAULT_DB_PATH)
    viewer_enabled: bool = True
    viewer_host: str = DEFAULT_VIEWER_HOST
    viewer_port: int = DEFAULT_VIEWER_PORT
    open_browser: bool = False
    log_level: str = "INFO"

    @property
    def viewer_url(self) -> str:
        return f"http://{self.viewer_host}:{self.viewer_port}"


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in _TRUE_WORDS:
        return True
    if value.lower() in _FALSE_WORDS:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> MindpmConfig:
    cfg = MindpmConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    cfg.log_level = cfg.log_level.upper()
    return cfg


def _apply_dict(cfg: MindpmConfig, data: dict[str, Any]) -> MindpmConfig:
    for key, value in data.items():
        if key not in SETTABLE_KEYS:
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if value is not None:
            setattr(cfg, key, str(value))
    return cfg


def set_config_value(key: str, value: str, path: Path | None = None) -> Path:
    """Validate one setting and store it in the config file."""

    if key not in SETTABLE_KEYS:
        raise ValueError(f"unknown config key {key!r}; expected one of {', '.join(SETTABLE_KEYS)}")
    stored: object = value
    if key in _INT_KEYS:
        try:
            stored = int(value)
        except ValueError as exc:
            raise ValueError(f"{key} must be an integer") from exc
    elif key in _BOOL_KEYS:
        lowered = value.lower()
        if lowered not in _TRUE_WORDS | _FALSE_WORDS:
            raise ValueError(f"{key} must be a boolean")
        stored = lowered in _TRUE_WORDS
    data = read_config_file(path)
    data[key] = stored
    return write_config_file(data, path)
