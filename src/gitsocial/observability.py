"""Structured logging for gitsocial.

Every module logs through the ``gitsocial`` logger. Handlers are installed
once, either explicitly with :func:`configure_logging` (the CLI passes the
``[logging]`` table of the loaded config) or lazily on first use from the
``GITSOCIAL_LOG_*`` environment variables.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from .config_schema import LoggingConfig


LOGGER_NAME = "gitsocial"

ENV_LOG_DIR = "GITSOCIAL_LOG_DIR"
ENV_LOG_LEVEL = "GITSOCIAL_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "GITSOCIAL_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "GITSOCIAL_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "GITSOCIAL_LOG_DISABLE_FILE"

DEFAULT_LOG_DIR = Path.home() / ".gitsocial" / "logs"

_FORMAT = "[%(levelname)s %(asctime)s] %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_logger_initialized = False
_session_start: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _level_name(raw: Optional[str]) -> str:
    name = (raw or "INFO").upper()
    return name if name in ("DEBUG", "INFO", "WARNING", "ERROR") else "INFO"


def _env_int(name: str, default: int) -> int:
    try:
        return max(0, int(os.environ[name]))
    except (KeyError, ValueError):
        return default


def settings_from_env() -> LoggingConfig:
    """Build logging settings from ``GITSOCIAL_LOG_*`` alone.

    Unlike the config loader, bad values fall back to defaults instead of
    raising, since logging must come up before configuration is validated.
    """
    defaults = LoggingConfig()
    return LoggingConfig(
        level=_level_name(os.getenv(ENV_LOG_LEVEL)),
        dir=os.getenv(ENV_LOG_DIR, ""),
        max_bytes=_env_int(ENV_LOG_MAX_BYTES, defaults.max_bytes),
        backup_count=_env_int(ENV_LOG_BACKUP_COUNT, defaults.backup_count),
        disable_file=os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"),
    )


def log_file_path(settings: LoggingConfig) -> Optional[Path]:
    """Session log file for ``settings``, or None when file logging is off.

    The directory is created on demand. One file per process:
    ``gitsocial_2025-01-15_143022.log``.
    """
    global _session_start
    if settings.disable_file:
        return None

    log_dir = Path(settings.dir).expanduser() if settings.dir else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    if _session_start is None:
        _session_start = _utcnow().strftime("%Y-%m-%d_%H%M%S")
    return log_dir / f"gitsocial_{_session_start}.log"


def configure_logging(settings: Optional[LoggingConfig] = None) -> logging.Logger:
    """(Re)install the gitsocial handlers.

    The file handler rotates at ``max_bytes``; stderr only ever carries
    warnings and errors.
    """
    global _logger_initialized
    settings = settings or settings_from_env()
    level = getattr(logging, settings.level)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    log_file = log_file_path(settings)
    if log_file is not None:
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(max(level, logging.WARNING))
    logger.addHandler(stream_handler)

    _logger_initialized = True
    return logger


def _get_logger() -> logging.Logger:
    if not _logger_initialized:
        return configure_logging()
    return logging.getLogger(LOGGER_NAME)


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    **fields: Any,
) -> None:
    """Emit one JSON line describing an action.

    Args:
        action: Dotted action name (``storage.fetch``)
        outcome: "ok", "error", "skipped", ...
        duration_ms: Elapsed time, rounded to two decimals
        **fields: Extra keys; non-JSON values are rendered with ``str()``
    """
    payload: Dict[str, Any] = {
        "ts": _utcnow().strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_with_fields(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    _get_logger().warning(_with_fields(message, fields))


def log_error(message: str, **fields: Any) -> None:
    _get_logger().error(_with_fields(message, fields))


@contextmanager
def timeit(action: str, **fields: Any):
    """Time a block and log it with :func:`log_action` on exit.

    Exceptions are logged with ``outcome="error"`` and re-raised. Keys put
    into the yielded dict (``outcome`` included) land in the log line.
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
    except Exception:
        log_action(action, outcome="error", duration_ms=(time.perf_counter() - start) * 1000.0, **fields)
        raise
    outcome = result_info.pop("outcome", "ok")
    log_action(
        action,
        outcome=outcome,
        duration_ms=(time.perf_counter() - start) * 1000.0,
        **{**fields, **result_info},
    )
