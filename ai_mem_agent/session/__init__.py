"""Session state, lifecycle and the runner that drains a session's queue."""
from __future__ import annotations

from .errors import PreconditionError, ResponseProcessingError, SessionBusyError, SessionError
from .manager import SessionManager
from .models import ActiveSession
from .response_processor import ResponseProcessor, StoringResponseProcessor
from .runner import RunnerState, RunOutcome, SessionRunner

__all__ = [
    "ActiveSession",
    "PreconditionError",
    "ResponseProcessingError",
    "ResponseProcessor",
    "RunOutcome",
    "RunnerState",
    "SessionBusyError",
    "SessionError",
    "SessionManager",
    "SessionRunner",
    "StoringResponseProcessor",
]
