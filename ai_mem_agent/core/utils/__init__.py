"""Convenience exports for common utility helpers."""
from __future__ import annotations

from .cancellation import AbortSignal, CancellationError
from .logger import (
    configure_logging,
    get_correlation_id,
    get_logger,
    mask_url,
    redact,
    set_correlation_id,
)

__all__ = [
    "AbortSignal",
    "CancellationError",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
    "mask_url",
    "redact",
    "set_correlation_id",
]
