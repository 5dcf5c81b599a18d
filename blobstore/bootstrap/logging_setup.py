"""Structured logging for the blob store process."""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from blobstore.bootstrap.config import LOG_FORMATS
from blobstore.domain.correlation_id import CorrelationLoggerAdapter

LOGGER_NAME = "blobstore"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5
REDACTED = "[REDACTED]"

# Credentials only ever arrive through Basic auth or the users mapping.
SENSITIVE_PATTERNS = (
    re.compile(r"(?i)\b(authorization|password|passwd|secret|token)\b"),
    re.compile(r"(?i)\bbasic\s+[A-Za-z0-9+/]+=*"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{32,}={0,2}"),
)

# Fields copied from ``extra`` into the JSON line, in addition to ``event``.
EXTRA_KEYS = (
    "client",
    "method",
    "location",
    "route",
    "path",
    "redirect",
    "user",
    "status_code",
    "bytes_in",
    "bytes_out",
    "duration_ms",
    "error_type",
    "errno",
    "host",
    "port",
    "blobs_path",
    "public_read",
    "log_destination",
    "log_level",
    "log_format",
    "tls",
    "socket_timeout",
    "shutdown_grace_seconds",
    "signal",
    "remaining_workers",
)

# Blob names are frequently content digests, which look like tokens.
UNREDACTED_KEYS = frozenset({"location", "route", "path", "blobs_path"})


def redact_sensitive(value: str) -> str:
    """Return ``value`` unless it looks like it carries a credential."""
    if value and any(pattern.search(value) for pattern in SENSITIVE_PATTERNS):
        return REDACTED
    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Give records logged outside a request a placeholder correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key in EXTRA_KEYS:
        if not hasattr(record, key):
            continue
        value = getattr(record, key)
        if isinstance(value, str) and key not in UNREDACTED_KEYS:
            value = redact_sensitive(value)
        fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record, keys sorted so lines diff cleanly."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        if hasattr(record, "event"):
            log_data["event"] = record.event
        log_data.update(_extra_fields(record))
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    level = getattr(logging, level_name.upper(), None)
    return level if isinstance(level, int) else logging.INFO


def _open_destination(destination: Optional[str]) -> logging.Handler:
    if not destination or destination.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    target_path = Path(destination)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT)


def _build_handler(
    destination: Optional[str], level: int, log_format: str
) -> logging.Handler:
    if log_format not in LOG_FORMATS:
        raise ValueError(f"unknown log format: {log_format!r}")
    handler = _open_destination(destination)
    handler.setLevel(level)
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, DATE_FORMAT))
    else:
        handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, log_format: str = "json"
) -> logging.Logger:
    """Route the ``blobstore`` logger tree to a single stdout or file handler.

    Calling it again replaces the previous handler.
    """
    numeric_level = _resolve_level(level)
    new_handler = _build_handler(destination, numeric_level, log_format)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.addHandler(new_handler)

    CorrelationLoggerAdapter(logger, {}).info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "log_level": logging.getLevelName(numeric_level),
            "log_destination": destination or "stdout",
            "log_format": log_format,
        },
    )
    return logger
