"""Durable per-session message queue with claim/confirm delivery.

Events move ``pending -> processing -> processed``. A claimed event stays in
``processing`` until its consumer confirms it, so a crash between claim and
confirm leaves it recoverable: an expired lease, or an explicit release when
the session is picked up again, returns it to ``pending`` for redelivery.
"""
from __future__ import annotations

import json
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ai_mem_agent.core.utils.constants import DEFAULT_LEASE_SECONDS
from ai_mem_agent.core.utils.logger import get_logger

from .database import Database

LOGGER = get_logger(__name__)

KIND_OBSERVATION = "observation"
KIND_SUMMARIZE = "summarize"
EVENT_KINDS = (KIND_OBSERVATION, KIND_SUMMARIZE)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"


def now_epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class QueueEvent:
    """One unit of work for a session."""

    persistent_id: int
    session_db_id: int
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    enqueued_at_epoch: int = 0
    status: str = STATUS_PENDING
    claimed_at_epoch: Optional[int] = None
    retry_count: int = 0

    @property
    def cwd(self) -> Optional[str]:
        return self.payload.get("cwd")

    @property
    def prompt_number(self) -> Optional[int]:
        return self.payload.get("prompt_number")

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "QueueEvent":
        return cls(
            persistent_id=row["id"],
            session_db_id=row["session_db_id"],
            kind=row["message_type"],
            payload=json.loads(row["payload"]),
            enqueued_at_epoch=row["created_at_epoch"],
            status=row["status"],
            claimed_at_epoch=row["claimed_at_epoch"],
            retry_count=row["retry_count"],
        )


class PendingMessageStore:
    """SQLite-backed claim/confirm queue.

    ``claim_next`` returns ``None`` as the end-of-stream marker. It also
    returns ``None`` while the session already has an event under a live
    lease, which serializes consumers of one session and preserves FIFO
    order after a crash. Different sessions never block each other.
    """

    def __init__(self, db: Database, *, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> None:
        self.db = db
        self.lease_seconds = lease_seconds

    def enqueue(self, session_db_id: int, kind: str, payload: Dict[str, Any] | None = None) -> QueueEvent:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind '{kind}'; expected one of {', '.join(EVENT_KINDS)}")
        created = now_epoch_ms()
        body = json.dumps(payload or {}, default=str)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO pending_messages (session_db_id, message_type, payload, status, created_at_epoch)
                VALUES (?, ?, ?, ?, ?)""",
                (session_db_id, kind, body, STATUS_PENDING, created),
            )
            event_id = cursor.lastrowid
        LOGGER.debug("Enqueued %s event %s for session %s", kind, event_id, session_db_id)
        return QueueEvent(
            persistent_id=event_id,
            session_db_id=session_db_id,
            kind=kind,
            payload=json.loads(body),
            enqueued_at_epoch=created,
        )

    def claim_next(self, session_db_id: int) -> Optional[QueueEvent]:
        """Move the oldest pending event of the session to ``processing`` and return it."""
        now = now_epoch_ms()
        with self.db.transaction() as conn:
            self._requeue_expired(conn, now, session_db_id)
            busy = conn.execute(
                "SELECT id FROM pending_messages WHERE session_db_id = ? AND status = ? LIMIT 1",
                (session_db_id, STATUS_PROCESSING),
            ).fetchone()
            if busy is not None:
                LOGGER.debug(
                    "Session %s has event %s under an active lease; not claiming",
                    session_db_id,
                    busy["id"],
                )
                return None
            row = conn.execute(
                """SELECT * FROM pending_messages
                WHERE session_db_id = ? AND status = ?
                ORDER BY id LIMIT 1""",
                (session_db_id, STATUS_PENDING),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE pending_messages SET status = ?, claimed_at_epoch = ? WHERE id = ?",
                (STATUS_PROCESSING, now, row["id"]),
            )
            claimed = conn.execute("SELECT * FROM pending_messages WHERE id = ?", (row["id"],)).fetchone()
        return QueueEvent.from_row(claimed)

    def confirm(self, persistent_id: int) -> bool:
        """Mark an event processed. Returns ``False`` when it already was (or does not exist)."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE pending_messages SET status = ?, completed_at_epoch = ?
                WHERE id = ? AND status != ?""",
                (STATUS_PROCESSED, now_epoch_ms(), persistent_id, STATUS_PROCESSED),
            )
            confirmed = cursor.rowcount > 0
        if not confirmed:
            LOGGER.debug("Confirm for event %s was a no-op", persistent_id)
        return confirmed

    def release_session(self, session_db_id: int) -> int:
        """Return every ``processing`` event of a session to ``pending``."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE pending_messages
                SET status = ?, claimed_at_epoch = NULL, retry_count = retry_count + 1
                WHERE session_db_id = ? AND status = ?""",
                (STATUS_PENDING, session_db_id, STATUS_PROCESSING),
            )
            released = cursor.rowcount
        if released:
            LOGGER.info("Released %s in-flight event(s) of session %s for redelivery", released, session_db_id)
        return released

    def release_stale(self, lease_seconds: Optional[int] = None) -> int:
        """Return events whose lease expired to ``pending``, across all sessions."""
        with self.db.transaction() as conn:
            released = self._requeue_expired(conn, now_epoch_ms(), None, lease_seconds)
        if released:
            LOGGER.info("Released %s stale event(s) for redelivery", released)
        return released

    def _requeue_expired(
        self,
        conn: sqlite3.Connection,
        now: int,
        session_db_id: Optional[int],
        lease_seconds: Optional[int] = None,
    ) -> int:
        lease = self.lease_seconds if lease_seconds is None else lease_seconds
        cutoff = now - lease * 1000
        query = """UPDATE pending_messages
            SET status = ?, claimed_at_epoch = NULL, retry_count = retry_count + 1
            WHERE status = ? AND claimed_at_epoch < ?"""
        params: list[Any] = [STATUS_PENDING, STATUS_PROCESSING, cutoff]
        if session_db_id is not None:
            query += " AND session_db_id = ?"
            params.append(session_db_id)
        return conn.execute(query, params).rowcount

    def get(self, persistent_id: int) -> Optional[QueueEvent]:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM pending_messages WHERE id = ?", (persistent_id,)).fetchone()
        return QueueEvent.from_row(row) if row else None

    def pending_count(self, session_db_id: int) -> int:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM pending_messages WHERE session_db_id = ? AND status = ?",
                (session_db_id, STATUS_PENDING),
            ).fetchone()
        return row["n"]

    def stats(self, session_db_id: Optional[int] = None) -> Dict[str, int]:
        """Count events per status, optionally for one session."""
        query = "SELECT status, COUNT(*) AS n FROM pending_messages"
        params: tuple[Any, ...] = ()
        if session_db_id is not None:
            query += " WHERE session_db_id = ?"
            params = (session_db_id,)
        query += " GROUP BY status"
        counts = {STATUS_PENDING: 0, STATUS_PROCESSING: 0, STATUS_PROCESSED: 0}
        with self.db.connection() as conn:
            for row in conn.execute(query, params):
                counts[row["status"]] = row["n"]
        return counts

    def purge_processed(self, older_than_seconds: int) -> int:
        """Delete processed events completed more than ``older_than_seconds`` ago."""
        cutoff = now_epoch_ms() - older_than_seconds * 1000
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_messages WHERE status = ? AND completed_at_epoch <= ?",
                (STATUS_PROCESSED, cutoff),
            )
            return cursor.rowcount


__all__ = [
    "EVENT_KINDS",
    "KIND_OBSERVATION",
    "KIND_SUMMARIZE",
    "PendingMessageStore",
    "QueueEvent",
    "STATUS_PENDING",
    "STATUS_PROCESSED",
    "STATUS_PROCESSING",
    "now_epoch_ms",
]
