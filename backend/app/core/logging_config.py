"""
Structured logging configuration.

Provides:
    • JSON lines in production, coloured console lines in development
    • Request context (request_id, client_ip, endpoint, alert_id) set by
      the middleware and stamped onto every record of that request
    • Capture fields (alert_id, session_id, kind, state, category) passed
      through ``extra=`` and lifted into the output

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Recorder active", extra={"session_id": "MS-1A2B", "kind": "video"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Extra attributes lifted from LogRecord into the JSON payload
STRUCTURED_FIELDS = (
    "alert_id", "session_id", "kind", "state", "category",
    "duration_ms", "status_code", "endpoint",
)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def set_request_context(**kwargs: Any) -> None:
    """Replace the context for the current request (middleware only)."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


class RequestContextFilter(logging.Filter):
    """Copies the request's alert_id onto records that did not pass one."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_request_context()
        if ctx.get("alert_id") and getattr(record, "alert_id", None) is None:
            record.alert_id = ctx["alert_id"]
        return True


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        ctx = get_request_context()
        if ctx:
            entry["context"] = ctx

        entry.update({
            key: getattr(record, key)
            for key in STRUCTURED_FIELDS
            if getattr(record, key, None) is not None
        })

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "trace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured one-liners: time, level, [request alert kind] logger: message."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")

        tags = []
        request_id = get_request_context().get("request_id")
        if request_id:
            tags.append(request_id[:8])
        for key in ("alert_id", "kind"):
            value = getattr(record, key, None)
            if value:
                tags.append(str(value))
        tag_str = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{tag_str} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ── Setup ──

def setup_logging(level: Optional[str] = None, *, json_output: Optional[bool] = None) -> None:
    """
    Install one stdout handler on the root logger.

    Defaults come from settings: LOG_LEVEL, and JSON output only in
    production.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    if json_output is None:
        json_output = settings.is_production

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else PrettyFormatter())
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
