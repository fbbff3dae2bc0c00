"""Hand-off point between the session runner and durable storage."""
from __future__ import annotations

import sqlite3
from typing import Optional, Protocol

from ai_mem_agent.core.utils.logger import get_logger
from ai_mem_agent.storage.observations import ObservationStore
from ai_mem_agent.storage.pending import PendingMessageStore
from ai_mem_agent.storage.sessions import SessionStore

from .errors import ResponseProcessingError
from .models import ActiveSession

LOGGER = get_logger(__name__)


class ResponseProcessor(Protocol):
    """Consumes model output for a session.

    Implementations must persist the output idempotently per originating event
    id, update the session counters, and confirm the in-flight events only
    after persistence succeeded. Failures are raised, never confirmed.
    """

    def process(
        self,
        text: str,
        session: ActiveSession,
        tokens_used: int,
        original_timestamp: Optional[int],
        provider_tag: str,
        last_cwd: Optional[str],
    ) -> None:
        ...


class StoringResponseProcessor:
    """Stores raw model output keyed by event id, then confirms the events.

    Parsing the observation markup is left to downstream consumers of the
    stored rows.
    """

    def __init__(
        self,
        sessions: SessionStore,
        observations: ObservationStore,
        queue: PendingMessageStore,
    ) -> None:
        self.sessions = sessions
        self.observations = observations
        self.queue = queue

    def process(
        self,
        text: str,
        session: ActiveSession,
        tokens_used: int,
        original_timestamp: Optional[int],
        provider_tag: str,
        last_cwd: Optional[str],
    ) -> None:
        with session.lock:
            message_ids = list(session.processing_message_ids)

        try:
            if text:
                for source_id in message_ids or [None]:
                    stored = self.observations.save(
                        source_message_id=source_id,
                        session_db_id=session.session_db_id,
                        memory_session_id=session.memory_session_id,
                        text=text,
                        tokens_used=tokens_used,
                        provider=provider_tag,
                        cwd=last_cwd,
                        original_timestamp_epoch=original_timestamp,
                    )
                    if not stored:
                        LOGGER.info(
                            "Response for event %s already stored; skipping duplicate", source_id
                        )
            else:
                LOGGER.warning(
                    "Empty response from %s for session %s; confirming %s event(s) without output",
                    provider_tag,
                    session.session_db_id,
                    len(message_ids),
                )
            self.sessions.set_token_usage(
                session.session_db_id,
                session.cumulative_input_tokens,
                session.cumulative_output_tokens,
            )
        except sqlite3.Error as exc:
            raise ResponseProcessingError(
                f"Failed to persist response for session {session.session_db_id}: {exc}"
            ) from exc

        try:
            for message_id in message_ids:
                self.queue.confirm(message_id)
        except sqlite3.Error as exc:
            raise ResponseProcessingError(
                f"Stored response for session {session.session_db_id} but confirm failed: {exc}"
            ) from exc
        with session.lock:
            session.processing_message_ids = [
                message_id for message_id in session.processing_message_ids if message_id not in message_ids
            ]
            session.earliest_pending_timestamp = None


__all__ = ["ResponseProcessor", "StoringResponseProcessor"]
