"""Logging setup for applications embedding synckit.

Two formatters are provided:
- ``SynckitJSONFormatter``: one JSON object per line for log shippers
- ``SynckitTextFormatter``: human-readable single-line records

Attributes passed via ``extra=`` (for example the ``event``/``duration_ms``
fields emitted by ``TimedOperation``) are collected into an ``extra`` object
in JSON output and appended as ``key=value`` pairs in text output.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone

from synckit.config import settings

SERVICE_NAME = "synckit"

# Attributes every LogRecord carries; anything else came from ``extra=``.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "taskName"}


def _record_extras(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class SynckitJSONFormatter(logging.Formatter):
    """Format records as JSON objects."""

    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "thread": record.threadName,
        }
        extras = _record_extras(record)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SynckitTextFormatter(logging.Formatter):
    """Format records as ``time level [thread] logger: message k=v ...``."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s",
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = _record_extras(record)
        if extras:
            message += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        return message


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def setup_logging(level: str | None = None, log_format: str | None = None) -> logging.Handler:
    """Install a single stream handler on the root logger.

    Calling again replaces the handler installed by the previous call
    instead of stacking a second one.
    """
    global _handler

    level_name = (level or settings.log_level or "INFO").upper()
    fmt = (log_format or settings.log_format or "text").lower()

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(SynckitJSONFormatter())
    else:
        handler.setFormatter(SynckitTextFormatter())

    root = logging.getLogger()
    with _setup_lock:
        if _handler is not None and _handler in root.handlers:
            root.removeHandler(_handler)
        root.addHandler(handler)
        root.setLevel(getattr(logging, level_name, logging.INFO))
        _handler = handler

    logging.getLogger(__name__).debug(f"Logging configured (level={level_name}, format={fmt})")
    return handler
