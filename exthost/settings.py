"""Load application settings from config/settings.yaml."""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_DEFAULTS: dict[str, Any] = {
    "extensions": {
        "sandbox_enabled": True,
        # Unsafe. Remote http(s) extension URLs load only when this is true.
        "allow_remote_urls": False,
        "capability_gate_enabled": True,
        "bundled_dir": None,
        "http": {
            "default_timeout_ms": 15000,
            "max_timeout_ms": 30000,
            "max_body_bytes": 1000000,
            "proxy_url": None,
            "resolve_dns": False,
        },
        "storage": {
            "max_bytes_per_extension": 1000000,
        },
    },
    "settings_store": {
        "db_path": "data/settings.db",
    },
    "logging": {
        "file": "logs/exthost.log",
        "level": "INFO",
        "log_to_console": False,
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 3,
        "extensions_level": None,
        "http_client_level": "WARNING",
    },
}

CONFIG_DIR_ENV = "EXTHOST_CONFIG_DIR"
SETTINGS_FILE = "settings.yaml"

_cache: dict[Path, dict[str, Any]] = {}


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base recursively. Mutates base. None in overlay keeps the default."""
    for key, value in overlay.items():
        if value is None:
            continue
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_default_settings() -> dict[str, Any]:
    """Return a deep copy of default settings."""
    return copy.deepcopy(_DEFAULTS)


def get_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    """Get a nested value by dot path (e.g. 'extensions.http.max_body_bytes')."""
    current: Any = settings
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def settings_path(config_dir: Path | None = None) -> Path:
    """config_dir, else $EXTHOST_CONFIG_DIR, else <project>/config; plus settings.yaml."""
    if config_dir is None:
        env_dir = os.environ.get(CONFIG_DIR_ENV, "").strip()
        config_dir = Path(env_dir) if env_dir else Path(__file__).resolve().parent.parent / "config"
    return (config_dir / SETTINGS_FILE).resolve()


def reload_settings() -> None:
    """Clear the settings cache. Call after config files change."""
    _cache.clear()


def _read_overlay(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: top level must be a mapping", path)
        return {}
    return data


def load_settings(config_dir: Path | None = None) -> dict[str, Any]:
    """Defaults merged with settings.yaml. Cached per file until reload_settings()."""
    path = settings_path(config_dir)
    cached = _cache.get(path)
    if cached is not None:
        return cached
    result = _deep_merge(get_default_settings(), _read_overlay(path))
    _cache[path] = result
    return result
