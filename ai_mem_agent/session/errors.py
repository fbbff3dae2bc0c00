"""Errors raised while driving a session."""
from __future__ import annotations


class SessionError(RuntimeError):
    """Base class for session-level failures."""


class PreconditionError(SessionError):
    """Raised before a provider call whose result could not be stored."""


class ResponseProcessingError(SessionError):
    """Raised when model output could not be persisted; the event stays unconfirmed."""


class SessionBusyError(SessionError):
    """Raised when a second runner is requested for a session that already has one."""


__all__ = [
    "PreconditionError",
    "ResponseProcessingError",
    "SessionBusyError",
    "SessionError",
]
