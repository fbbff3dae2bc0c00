"""SQLite persistence for sessions, queued events and model output."""
from __future__ import annotations

from .database import Database
from .observations import ObservationStore, StoredResponse
from .pending import (
    KIND_OBSERVATION,
    KIND_SUMMARIZE,
    PendingMessageStore,
    QueueEvent,
)
from .sessions import SessionRecord, SessionStore

__all__ = [
    "Database",
    "KIND_OBSERVATION",
    "KIND_SUMMARIZE",
    "ObservationStore",
    "PendingMessageStore",
    "QueueEvent",
    "SessionRecord",
    "SessionStore",
    "StoredResponse",
]
