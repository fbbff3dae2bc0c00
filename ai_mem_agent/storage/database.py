"""Shared SQLite connection for sessions, the pending queue and stored responses."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ai_mem_agent.core.utils.logger import get_logger

LOGGER = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content_session_id TEXT NOT NULL UNIQUE,
    memory_session_id TEXT,
    project TEXT NOT NULL DEFAULT '',
    user_prompt TEXT NOT NULL DEFAULT '',
    last_prompt_number INTEGER NOT NULL DEFAULT 0,
    input_tokens INTEGER NOT NULL DEFAULT 0,
    output_tokens INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    started_at_epoch INTEGER NOT NULL,
    completed_at_epoch INTEGER
);

CREATE TABLE IF NOT EXISTS pending_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_db_id INTEGER NOT NULL REFERENCES sessions(id),
    message_type TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'pending',
    retry_count INTEGER NOT NULL DEFAULT 0,
    created_at_epoch INTEGER NOT NULL,
    claimed_at_epoch INTEGER,
    completed_at_epoch INTEGER
);

CREATE INDEX IF NOT EXISTS idx_pending_session_status
    ON pending_messages(session_db_id, status, id);

CREATE TABLE IF NOT EXISTS agent_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_message_id INTEGER UNIQUE,
    session_db_id INTEGER NOT NULL REFERENCES sessions(id),
    memory_session_id TEXT,
    text TEXT NOT NULL,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    provider TEXT NOT NULL,
    cwd TEXT,
    original_timestamp_epoch INTEGER,
    created_at_epoch INTEGER NOT NULL
);
"""


class Database:
    """Thread-safe wrapper around one SQLite connection.

    All statements are serialized through a lock; ``transaction()`` opens a
    ``BEGIN IMMEDIATE`` transaction so read-then-write sequences are atomic
    even across processes sharing the file.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._closed = False

    def _get_conn(self) -> sqlite3.Connection:
        if self._closed:
            raise sqlite3.ProgrammingError(f"Database {self.path} is closed")
        if self._conn is None:
            if str(self.path) != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.path),
                check_same_thread=False,
                isolation_level=None,
                timeout=30.0,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if str(self.path) != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
            LOGGER.debug("Opened database at %s", self.path)
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._get_conn()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection for single autocommit statements."""
        with self._lock:
            yield self._get_conn()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._conn:
                self._conn.close()
                self._conn = None


__all__ = ["Database", "SCHEMA"]
