"""Logger configuration utilities with correlation ID support."""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

import contextvars

_CORRELATION_ID = contextvars.ContextVar("correlation_id", default="-")
_URL_CREDENTIALS = re.compile(r"//[^/@\s]+@")


class CorrelationIdFilter(logging.Filter):
    """Inject the active correlation ID into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - delegation
        record.correlation_id = _CORRELATION_ID.get()
        return True


class StructuredFormatter(logging.Formatter):
    """Emit structured JSON log records."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(level: str = "INFO", *, structured: bool = False) -> None:
    """Configure root logging for the worker."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)s | cid=%(correlation_id)s | %(message)s"
        )
        handler.setFormatter(formatter)
    root.addHandler(handler)


def set_correlation_id(value: Optional[str]) -> None:
    """Set the active correlation ID for subsequent log records."""
    _CORRELATION_ID.set(value or "-")


def get_correlation_id() -> str:
    """Return the active correlation ID for the current context."""
    return _CORRELATION_ID.get()


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Retrieve a module-level logger."""
    return logging.getLogger(name if name else "ai_mem_agent")


def mask_url(url: str) -> str:
    """Hide ``user:password@`` style credentials embedded in a URL."""
    return _URL_CREDENTIALS.sub("//***@", url or "")


def redact(text: str, secrets: Iterable[Optional[str]]) -> str:
    """Replace every occurrence of the given secrets and URL credentials in ``text``."""
    redacted = mask_url(text or "")
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "***")
    return redacted


__all__ = [
    "configure_logging",
    "get_logger",
    "get_correlation_id",
    "mask_url",
    "redact",
    "set_correlation_id",
]
