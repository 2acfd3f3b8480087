"""
Structured JSON logging configuration.

Every log line carries the id of the scan that produced it, so the lines of
concurrently running trigger scans can be told apart.
"""

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone

# Context variable for the current scan run id
_scan_id_var: ContextVar[str] = ContextVar("scan_id", default="")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_scan_id() -> str:
    """Get the current scan id from context."""
    return _scan_id_var.get()


@contextmanager
def scan_context(scan_id: str):
    token = _scan_id_var.set(scan_id)
    try:
        yield scan_id
    finally:
        _scan_id_var.reset(token)


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "scan_id": get_scan_id(),
        }

        if hasattr(record, "trigger_id"):
            log_entry["trigger_id"] = record.trigger_id
        if hasattr(record, "duration_ms"):
            log_entry["duration_ms"] = record.duration_ms

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(log_level: str = "INFO", log_format: str = "json"):
    """Replace the root logger's handlers with a JSON or plain-text one."""
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
