"""Session lifecycle management for the memory worker."""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from threading import RLock
from typing import Any, Dict, List, Optional

from ai_mem_agent.core.utils.cancellation import AbortSignal
from ai_mem_agent.core.utils.config import Settings, resolve_provider_configs
from ai_mem_agent.core.utils.constants import DEFAULT_LEASE_SECONDS, DEFAULT_MAX_WORKERS
from ai_mem_agent.core.utils.logger import get_logger
from ai_mem_agent.providers.orchestrator import create_orchestrator
from ai_mem_agent.storage.database import Database
from ai_mem_agent.storage.observations import ObservationStore
from ai_mem_agent.storage.pending import (
    KIND_OBSERVATION,
    KIND_SUMMARIZE,
    PendingMessageStore,
    QueueEvent,
)
from ai_mem_agent.storage.sessions import SessionStore

from .errors import SessionBusyError
from .models import ActiveSession
from .response_processor import ResponseProcessor, StoringResponseProcessor
from .runner import OrchestratorFactory, RunOutcome, SessionRunner

LOGGER = get_logger(__name__)


class SessionManager:
    """Tracks active sessions and guarantees at most one runner per session."""

    def __init__(
        self,
        db: Database,
        *,
        orchestrator_factory: OrchestratorFactory,
        processor: Optional[ResponseProcessor] = None,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.db = db
        self.sessions = SessionStore(db)
        self.observations = ObservationStore(db)
        self.queue = PendingMessageStore(db, lease_seconds=lease_seconds)
        self.processor = processor or StoringResponseProcessor(self.sessions, self.observations, self.queue)
        self._orchestrator_factory = orchestrator_factory
        self._sessions: Dict[int, ActiveSession] = {}
        self._runners: Dict[int, Future] = {}
        self._lock = RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="session-runner")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionManager":
        """Build a manager wired to the configured database and providers."""
        configs = resolve_provider_configs(settings)
        settings.ensure_database_dir()

        def factory():
            return create_orchestrator(
                configs,
                remote_mode=settings.remote_mode,
                max_failovers=settings.max_failovers,
            )

        return cls(
            Database(settings.database_path),
            orchestrator_factory=factory,
            lease_seconds=settings.lease_seconds,
            max_workers=settings.max_workers,
        )

    # ------------------------------------------------------------------
    # Session registry
    # ------------------------------------------------------------------

    def initialize_session(
        self,
        content_session_id: str,
        *,
        project: str = "",
        user_prompt: str = "",
        prompt_number: Optional[int] = None,
    ) -> ActiveSession:
        """Return the active session for ``content_session_id``.

        A session missing from memory is rebuilt from its durable row. Events
        it left in ``processing`` belong to a dead runner and are released.
        """
        record = self.sessions.create_or_get(content_session_id, project=project, user_prompt=user_prompt)
        if prompt_number is not None and prompt_number > record.last_prompt_number:
            self.sessions.update_prompt(record.id, prompt_number, user_prompt or None)
            record.last_prompt_number = prompt_number
            if user_prompt:
                record.user_prompt = user_prompt

        with self._lock:
            session = self._sessions.get(record.id)
            if session is not None:
                with session.lock:
                    session.last_prompt_number = max(session.last_prompt_number, record.last_prompt_number)
                    if user_prompt:
                        session.user_prompt = user_prompt
                return session

            session = ActiveSession.from_record(record)
            self._sessions[record.id] = session
        if not self._is_running(record.id):
            self.queue.release_session(record.id)
        LOGGER.info(
            "Session %s active (content=%s, prompt #%s)",
            record.id,
            content_session_id,
            record.last_prompt_number,
        )
        return session

    def has_session(self, session_db_id: int) -> bool:
        with self._lock:
            return session_db_id in self._sessions

    def get_session(self, session_db_id: int) -> ActiveSession:
        with self._lock:
            if session_db_id not in self._sessions:
                raise KeyError(f"Session '{session_db_id}' is not active")
            return self._sessions[session_db_id]

    def list_sessions(self) -> List[int]:
        with self._lock:
            return list(self._sessions.keys())

    def evict(self, session_db_id: int) -> Optional[ActiveSession]:
        """Drop a session from memory. Its durable row and queue are untouched."""
        with self._lock:
            self._runners.pop(session_db_id, None)
            return self._sessions.pop(session_db_id, None)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def queue_observation(
        self,
        session_db_id: int,
        *,
        tool_name: str,
        tool_input: Any = None,
        tool_response: Any = None,
        cwd: Optional[str] = None,
        prompt_number: Optional[int] = None,
    ) -> QueueEvent:
        payload: Dict[str, Any] = {
            "tool_name": tool_name,
            "tool_input": tool_input,
            "tool_response": tool_response,
        }
        if cwd:
            payload["cwd"] = cwd
        if prompt_number is not None:
            payload["prompt_number"] = prompt_number
        return self.queue.enqueue(session_db_id, KIND_OBSERVATION, payload)

    def queue_summarize(self, session_db_id: int, *, last_assistant_message: str = "") -> QueueEvent:
        return self.queue.enqueue(
            session_db_id,
            KIND_SUMMARIZE,
            {"last_assistant_message": last_assistant_message},
        )

    # ------------------------------------------------------------------
    # Runners
    # ------------------------------------------------------------------

    def _is_running(self, session_db_id: int) -> bool:
        with self._lock:
            future = self._runners.get(session_db_id)
            return future is not None and not future.done()

    def _prepare_runner(self, session_db_id: int) -> SessionRunner:
        session = self.get_session(session_db_id)
        if self._is_running(session_db_id):
            raise SessionBusyError(f"Session {session_db_id} already has a running runner")
        if session.abort.aborted:
            session.abort = AbortSignal()
        with session.lock:
            session.processing_message_ids = []
            session.earliest_pending_timestamp = None
        self.queue.release_session(session_db_id)
        return SessionRunner(
            session,
            queue=self.queue,
            sessions=self.sessions,
            processor=self.processor,
            orchestrator_factory=self._orchestrator_factory,
        )

    def start_runner(self, session_db_id: int) -> "Future[RunOutcome]":
        """Run the session on the worker pool. Raises :class:`SessionBusyError` if one is already running."""
        with self._lock:
            runner = self._prepare_runner(session_db_id)
            future = self._executor.submit(runner.run)
            self._runners[session_db_id] = future
        future.add_done_callback(lambda done: self._on_runner_done(session_db_id, done))
        return future

    def run_session(self, session_db_id: int) -> RunOutcome:
        """Run the session on the calling thread."""
        with self._lock:
            runner = self._prepare_runner(session_db_id)
            future: Future = Future()
            future.set_running_or_notify_cancel()
            self._runners[session_db_id] = future
        try:
            outcome = runner.run()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        future.set_result(outcome)
        return outcome

    def _on_runner_done(self, session_db_id: int, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            LOGGER.debug("Runner for session %s ended with %s", session_db_id, type(error).__name__)

    def abort(self, session_db_id: int, reason: str = "aborted") -> bool:
        """Signal the session's runner to stop. Returns ``False`` for unknown sessions."""
        with self._lock:
            session = self._sessions.get(session_db_id)
        if session is None:
            return False
        session.abort.abort(reason)
        LOGGER.info("Abort requested for session %s: %s", session_db_id, reason)
        return True

    def complete_session(self, session_db_id: int) -> None:
        """Mark the session completed and drop it from memory."""
        self.abort(session_db_id, "session completed")
        self.sessions.mark_completed(session_db_id)
        self.evict(session_db_id)
        LOGGER.info("Session %s completed", session_db_id)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            session_ids = list(self._sessions.keys())
        for session_db_id in session_ids:
            self.abort(session_db_id, "worker shutting down")
        self._executor.shutdown(wait=wait)
        self.db.close()


__all__ = ["SessionManager"]
