"""
Request Context and Configuration State for Logging.

The request ID lives in a ContextVar so it follows each asyncio task:
a generation request and the background persistence task it spawns
both log under the same ID (tasks copy the context at creation).

Environment Variables:
    - TTS_SAAS_LOG_LEVEL: Override log level (1-4 or name)
    - TTS_SAAS_LOG_DIR: Directory for JSONL log files
    - TTS_SAAS_JSONL_FILE: JSONL filename
    - TTS_SAAS_LOG_ROTATE_BYTES: Max file size before rotation
    - TTS_SAAS_LOG_ROTATE_BACKUP: Number of backup files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

from .levels import LEVEL_NAMES, LogLevel

# "-" outside of any request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Get the request ID for the current context, or "-" if not set."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Set the request ID used by every log line in this context."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def read_logging_config() -> Dict[str, Any]:
    """
    Read logging configuration from the settings file and environment.

    Priority (highest first):
        1. TTS_SAAS_LOG_* environment variables
        2. settings.yaml logging section
        3. Defaults
    """
    cfg: Dict[str, Any] = {}

    try:
        from tts_saas.core.config import load_settings
        settings = load_settings()
        cfg.update(settings.raw.get("logging", {}) or {})
    except (FileNotFoundError, OSError, ValueError):
        # Missing or unreadable settings file: run on defaults
        pass

    if os.getenv("TTS_SAAS_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_SAAS_LOG_LEVEL"]
    if os.getenv("TTS_SAAS_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_SAAS_LOG_DIR"]
    if os.getenv("TTS_SAAS_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_SAAS_JSONL_FILE"]
    if os.getenv("TTS_SAAS_LOG_ROTATE_BYTES"):
        try:
            cfg["rotate_max_bytes"] = int(os.environ["TTS_SAAS_LOG_ROTATE_BYTES"])
        except ValueError:
            pass
    if os.getenv("TTS_SAAS_LOG_ROTATE_BACKUP"):
        try:
            cfg["rotate_backup_count"] = int(os.environ["TTS_SAAS_LOG_ROTATE_BACKUP"])
        except ValueError:
            pass

    return cfg
