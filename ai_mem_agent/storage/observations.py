"""Stored model output, keyed by the queue event that produced it."""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from .database import Database
from .pending import now_epoch_ms


@dataclass
class StoredResponse:
    id: int
    source_message_id: Optional[int]
    session_db_id: int
    memory_session_id: Optional[str]
    text: str
    tokens_used: int
    provider: str
    cwd: Optional[str]
    original_timestamp_epoch: Optional[int]
    created_at_epoch: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StoredResponse":
        return cls(**{key: row[key] for key in row.keys()})


class ObservationStore:
    """Idempotent sink for responses: one row per source event at most."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def save(
        self,
        *,
        source_message_id: Optional[int],
        session_db_id: int,
        memory_session_id: Optional[str],
        text: str,
        tokens_used: int,
        provider: str,
        cwd: Optional[str] = None,
        original_timestamp_epoch: Optional[int] = None,
    ) -> bool:
        """Insert a response; return ``False`` if this source event was already stored."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO agent_responses
                (source_message_id, session_db_id, memory_session_id, text, tokens_used, provider, cwd,
                 original_timestamp_epoch, created_at_epoch)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    source_message_id,
                    session_db_id,
                    memory_session_id,
                    text,
                    tokens_used,
                    provider,
                    cwd,
                    original_timestamp_epoch,
                    now_epoch_ms(),
                ),
            )
            return cursor.rowcount > 0

    def for_session(self, session_db_id: int) -> List[StoredResponse]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM agent_responses WHERE session_db_id = ? ORDER BY id", (session_db_id,)
            ).fetchall()
        return [StoredResponse.from_row(row) for row in rows]

    def for_message(self, source_message_id: int) -> List[StoredResponse]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM agent_responses WHERE source_message_id = ?", (source_message_id,)
            ).fetchall()
        return [StoredResponse.from_row(row) for row in rows]


__all__ = ["ObservationStore", "StoredResponse"]
