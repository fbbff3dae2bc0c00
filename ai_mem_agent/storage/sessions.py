"""Durable session rows."""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from ai_mem_agent.core.utils.logger import get_logger

from .database import Database
from .pending import now_epoch_ms

LOGGER = get_logger(__name__)

SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"


@dataclass
class SessionRecord:
    id: int
    content_session_id: str
    memory_session_id: Optional[str]
    project: str
    user_prompt: str
    last_prompt_number: int
    input_tokens: int
    output_tokens: int
    status: str
    started_at_epoch: int
    completed_at_epoch: Optional[int] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SessionRecord":
        return cls(**{key: row[key] for key in row.keys()})


class SessionStore:
    """SQLite-backed session storage."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_or_get(
        self,
        content_session_id: str,
        *,
        project: str = "",
        user_prompt: str = "",
    ) -> SessionRecord:
        """Return the session for ``content_session_id``, creating it on first sight."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE content_session_id = ?", (content_session_id,)
            ).fetchone()
            if row is None:
                conn.execute(
                    """INSERT INTO sessions (content_session_id, project, user_prompt, status, started_at_epoch)
                    VALUES (?, ?, ?, ?, ?)""",
                    (content_session_id, project, user_prompt, SESSION_ACTIVE, now_epoch_ms()),
                )
                row = conn.execute(
                    "SELECT * FROM sessions WHERE content_session_id = ?", (content_session_id,)
                ).fetchone()
                LOGGER.info("Created session %s for content session %s", row["id"], content_session_id)
        return SessionRecord.from_row(row)

    def get(self, session_db_id: int) -> Optional[SessionRecord]:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_db_id,)).fetchone()
        return SessionRecord.from_row(row) if row else None

    def get_by_content_id(self, content_session_id: str) -> Optional[SessionRecord]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE content_session_id = ?", (content_session_id,)
            ).fetchone()
        return SessionRecord.from_row(row) if row else None

    def list_active(self) -> List[SessionRecord]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE status = ? ORDER BY id", (SESSION_ACTIVE,)
            ).fetchall()
        return [SessionRecord.from_row(row) for row in rows]

    def update_memory_session_id(self, session_db_id: int, memory_session_id: str) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE sessions SET memory_session_id = ? WHERE id = ?",
                (memory_session_id, session_db_id),
            )

    def update_prompt(self, session_db_id: int, prompt_number: int, user_prompt: Optional[str] = None) -> None:
        with self.db.transaction() as conn:
            if user_prompt is None:
                conn.execute(
                    "UPDATE sessions SET last_prompt_number = ? WHERE id = ?",
                    (prompt_number, session_db_id),
                )
            else:
                conn.execute(
                    "UPDATE sessions SET last_prompt_number = ?, user_prompt = ? WHERE id = ?",
                    (prompt_number, user_prompt, session_db_id),
                )

    def set_token_usage(self, session_db_id: int, input_tokens: int, output_tokens: int) -> None:
        """Store the cumulative token counters of a session."""
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE sessions SET input_tokens = ?, output_tokens = ? WHERE id = ?",
                (input_tokens, output_tokens, session_db_id),
            )

    def mark_completed(self, session_db_id: int) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE sessions SET status = ?, completed_at_epoch = ? WHERE id = ?",
                (SESSION_COMPLETED, now_epoch_ms(), session_db_id),
            )


__all__ = ["SESSION_ACTIVE", "SESSION_COMPLETED", "SessionRecord", "SessionStore"]
