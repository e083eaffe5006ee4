"""Logging for the extension host.

Runtime modules log under exthost.*. Every extension gets its own logger
under ext.<extension id>, so extension output can be filtered or turned down
without touching the runtime's own records.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Any

EXTENSION_LOGGER_PREFIX = "ext"

# Libraries whose per-request INFO lines would otherwise flood the log on every extension fetch.
_NOISY_LOGGERS = ("httpx", "httpcore")

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def extension_logger(extension_id: str) -> logging.Logger:
    return logging.getLogger(f"{EXTENSION_LOGGER_PREFIX}.{extension_id or 'anonymous'}")


def _level(value: Any, fallback: int) -> int:
    if value is None:
        return fallback
    resolved = logging.getLevelName(str(value).upper())
    return resolved if isinstance(resolved, int) else fallback


def _rotating_handler(project_root: Path, cfg: dict[str, Any]) -> logging.Handler:
    log_path = project_root / cfg.get("file", "logs/exthost.log")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=int(cfg.get("max_bytes", 10 * 1024 * 1024)),
        backupCount=int(cfg.get("backup_count", 3)),
        encoding="utf-8",
    )


def setup_logging(project_root: Path, settings: dict[str, Any]) -> None:
    """Configure the root logger from the logging: settings section.

    Keys: file, level, log_to_console, max_bytes, backup_count,
    extensions_level (level of the ext.* loggers, defaults to level) and
    http_client_level (httpx/httpcore, defaults to WARNING).
    Previously installed root handlers are closed and replaced.
    """
    cfg = settings.get("logging", {}) or {}
    level = _level(cfg.get("level"), logging.INFO)
    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()

    handlers = [_rotating_handler(project_root, cfg)]
    if cfg.get("log_to_console", False):
        handlers.append(logging.StreamHandler())
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(formatter)
        root.addHandler(h)

    logging.getLogger(EXTENSION_LOGGER_PREFIX).setLevel(_level(cfg.get("extensions_level"), level))
    client_level = _level(cfg.get("http_client_level"), logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(client_level)
