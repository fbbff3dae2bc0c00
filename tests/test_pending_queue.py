import sqlite3
import threading

import pytest

from ai_mem_agent.storage import Database, PendingMessageStore, SessionStore
from ai_mem_agent.storage.pending import (
    KIND_OBSERVATION,
    KIND_SUMMARIZE,
    STATUS_PENDING,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
)


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "queue.db")
    yield database
    database.close()


@pytest.fixture
def session_id(db):
    return SessionStore(db).create_or_get("content-1", project="demo", user_prompt="fix bug").id


def _age_claim(db, event_id, seconds):
    with db.transaction() as conn:
        conn.execute(
            "UPDATE pending_messages SET claimed_at_epoch = claimed_at_epoch - ? WHERE id = ?",
            (seconds * 1000, event_id),
        )


def test_claims_are_fifo_and_serialized(db, session_id):
    queue = PendingMessageStore(db)
    first = queue.enqueue(session_id, KIND_OBSERVATION, {"tool_name": "Read", "cwd": "/repo"})
    second = queue.enqueue(session_id, KIND_SUMMARIZE, {"last_assistant_message": "done"})

    claimed = queue.claim_next(session_id)
    assert claimed.persistent_id == first.persistent_id
    assert claimed.status == STATUS_PROCESSING
    assert claimed.cwd == "/repo"
    assert queue.claim_next(session_id) is None

    assert queue.confirm(first.persistent_id) is True
    claimed = queue.claim_next(session_id)
    assert claimed.persistent_id == second.persistent_id
    assert claimed.kind == KIND_SUMMARIZE
    queue.confirm(second.persistent_id)
    assert queue.claim_next(session_id) is None


def test_confirm_is_idempotent(db, session_id):
    queue = PendingMessageStore(db)
    event = queue.enqueue(session_id, KIND_OBSERVATION, {"tool_name": "Bash"})
    queue.claim_next(session_id)

    assert queue.confirm(event.persistent_id) is True
    assert queue.confirm(event.persistent_id) is False
    assert queue.confirm(9999) is False
    assert queue.get(event.persistent_id).status == STATUS_PROCESSED


def test_unknown_kind_rejected(db, session_id):
    with pytest.raises(ValueError):
        PendingMessageStore(db).enqueue(session_id, "telemetry", {})


def test_unconfirmed_claim_is_redelivered_after_crash(tmp_path):
    path = tmp_path / "queue.db"
    first_process = Database(path)
    session_db_id = SessionStore(first_process).create_or_get("content-1").id
    queue = PendingMessageStore(first_process)
    event = queue.enqueue(session_db_id, KIND_OBSERVATION, {"tool_name": "Edit"})
    queue.enqueue(session_db_id, KIND_OBSERVATION, {"tool_name": "Read"})
    assert queue.claim_next(session_db_id).persistent_id == event.persistent_id
    first_process.close()

    restarted = Database(path)
    queue = PendingMessageStore(restarted)
    assert queue.claim_next(session_db_id) is None
    assert queue.release_session(session_db_id) == 1

    redelivered = queue.claim_next(session_db_id)
    assert redelivered.persistent_id == event.persistent_id
    assert redelivered.retry_count == 1
    restarted.close()


def test_expired_lease_is_reclaimed(db, session_id):
    queue = PendingMessageStore(db, lease_seconds=60)
    event = queue.enqueue(session_id, KIND_OBSERVATION, {"tool_name": "Grep"})
    queue.claim_next(session_id)
    _age_claim(db, event.persistent_id, 120)

    reclaimed = queue.claim_next(session_id)

    assert reclaimed.persistent_id == event.persistent_id
    assert reclaimed.retry_count == 1


def test_release_stale_spans_sessions(db, session_id):
    other = SessionStore(db).create_or_get("content-2").id
    queue = PendingMessageStore(db, lease_seconds=60)
    stale = queue.enqueue(session_id, KIND_OBSERVATION, {})
    fresh = queue.enqueue(other, KIND_OBSERVATION, {})
    queue.claim_next(session_id)
    queue.claim_next(other)
    _age_claim(db, stale.persistent_id, 120)

    assert queue.release_stale() == 1
    assert queue.get(stale.persistent_id).status == STATUS_PENDING
    assert queue.get(fresh.persistent_id).status == STATUS_PROCESSING


def test_stats_and_purge(db, session_id):
    queue = PendingMessageStore(db)
    done = queue.enqueue(session_id, KIND_OBSERVATION, {})
    queue.enqueue(session_id, KIND_OBSERVATION, {})
    queue.claim_next(session_id)
    queue.confirm(done.persistent_id)

    assert queue.stats() == {STATUS_PENDING: 1, STATUS_PROCESSING: 0, STATUS_PROCESSED: 1}
    assert queue.pending_count(session_id) == 1
    assert queue.purge_processed(older_than_seconds=3600) == 0
    assert queue.purge_processed(older_than_seconds=0) == 1
    assert queue.get(done.persistent_id) is None


def test_concurrent_claims_deliver_each_event_once(tmp_path):
    path = tmp_path / "queue.db"
    setup = Database(path)
    sessions = SessionStore(setup)
    session_ids = [sessions.create_or_get(f"content-{index}").id for index in range(4)]
    queue = PendingMessageStore(setup)
    for session_db_id in session_ids:
        for _ in range(5):
            queue.enqueue(session_db_id, KIND_OBSERVATION, {})

    claimed = []
    lock = threading.Lock()

    def worker():
        database = Database(path)
        store = PendingMessageStore(database)
        try:
            for session_db_id in session_ids:
                while True:
                    event = store.claim_next(session_db_id)
                    if event is None:
                        break
                    with lock:
                        claimed.append(event.persistent_id)
                    store.confirm(event.persistent_id)
        finally:
            database.close()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # A worker may see a sibling's live lease and move on, so drain the rest here.
    for session_db_id in session_ids:
        while True:
            event = queue.claim_next(session_db_id)
            if event is None:
                break
            claimed.append(event.persistent_id)
            queue.confirm(event.persistent_id)

    assert len(claimed) == 20
    assert len(set(claimed)) == 20
    setup.close()


def test_closed_database_refuses_to_reopen(tmp_path):
    database = Database(tmp_path / "queue.db")
    session_db_id = SessionStore(database).create_or_get("content-1").id
    queue = PendingMessageStore(database)
    database.close()

    with pytest.raises(sqlite3.ProgrammingError, match="closed"):
        queue.enqueue(session_db_id, KIND_OBSERVATION, {"tool_name": "Edit"})

    database.close()
    assert PendingMessageStore(Database(tmp_path / "queue.db")).stats() == {
        "pending": 0,
        "processing": 0,
        "processed": 0,
    }
