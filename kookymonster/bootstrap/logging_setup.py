"""Logging configuration utilities for the answer server."""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from kookymonster.domain.request_context import (
    ROOT_LOGGER_NAME,
    ComponentLoggerAdapter,
)

LOG_FORMAT = (
    "%(asctime)s kookymonster: %(levelname)s [%(request_id)s] "
    "%(name)s :: %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

EXTRA_KEYS = (
    "client",
    "route",
    "method",
    "status",
    "host",
    "port",
    "listen_addr",
    "config_path",
    "log_path",
    "error",
    "error_type",
    "signal",
    "active_workers",
    "grace_seconds",
    "state",
)


class RequestIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Ensure request_id field exists in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter with stable key ordering for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "request_id": getattr(record, "request_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        if hasattr(record, "event"):
            log_data["event"] = record.event
        for key in EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    """Translate text level names into logging module numeric levels."""
    level = getattr(logging, level_name.upper(), None)
    if isinstance(level, int):
        return level
    return logging.INFO


def _build_formatter(use_json: bool) -> logging.Formatter:
    if use_json:
        return JsonFormatter(datefmt=DATE_FORMAT)
    return logging.Formatter(LOG_FORMAT, DATE_FORMAT)


def _build_handlers(
    log_path: Optional[Path], level: int, use_json: bool
) -> list[logging.Handler]:
    """Create the append-only file handler and the stdout handler."""
    handlers: list[logging.Handler] = []
    if log_path is not None:
        # Opened eagerly so an unwritable location fails here, not on first write.
        handlers.append(
            RotatingFileHandler(
                log_path,
                mode="a",
                maxBytes=MAX_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
        )
    handlers.append(logging.StreamHandler(sys.stdout))

    formatter = _build_formatter(use_json)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
    return handlers


def configure_logging(
    level: str = "INFO", log_path: Optional[Union[str, Path]] = None, use_json: bool = False
) -> ComponentLoggerAdapter:
    """Configure the project logger to write to log_path and stdout.

    Raises OSError when the log file cannot be opened.
    """
    numeric_level = _resolve_level(level)
    handlers = _build_handlers(
        Path(log_path) if log_path is not None else None, numeric_level, use_json
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)

    adapter = ComponentLoggerAdapter(logger, {})
    adapter.debug(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "log_path": str(log_path) if log_path is not None else None,
        },
    )
    return adapter
