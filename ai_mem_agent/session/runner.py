"""Control loop that drives one session from init prompt to an empty queue."""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ai_mem_agent.core.utils.cancellation import CancellationError
from ai_mem_agent.core.utils.constants import INPUT_TOKEN_SHARE, OUTPUT_TOKEN_SHARE
from ai_mem_agent.core.utils.logger import get_logger, set_correlation_id
from ai_mem_agent.providers.llm.base import ConfigurationError
from ai_mem_agent.providers.orchestrator import ProviderOrchestrator, error_kind
from ai_mem_agent.storage.pending import (
    KIND_OBSERVATION,
    KIND_SUMMARIZE,
    PendingMessageStore,
    QueueEvent,
    now_epoch_ms,
)
from ai_mem_agent.storage.sessions import SessionStore

from .errors import PreconditionError
from .models import ActiveSession
from .prompt_builder import (
    build_continuation_prompt,
    build_init_prompt,
    build_observation_prompt,
    build_summary_prompt,
)
from .response_processor import ResponseProcessor

LOGGER = get_logger(__name__)

OrchestratorFactory = Callable[[], ProviderOrchestrator]


class RunnerState(str, Enum):
    INITIALIZING = "initializing"
    DRAINING = "draining"
    FALLING_BACK = "falling_back"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class RunOutcome:
    state: RunnerState
    turns: int = 0
    events_processed: int = 0
    duration_seconds: float = 0.0
    error: Optional[BaseException] = None


def split_token_usage(tokens_used: int) -> tuple[int, int]:
    """Estimate the input/output split of a total token count."""
    return int(tokens_used * INPUT_TOKEN_SHARE), int(tokens_used * OUTPUT_TOKEN_SHARE)


class SessionRunner:
    """Drive one session: init prompt, then every queued event in order.

    The runner owns ``session.conversation_history`` while it runs. Provider
    failover is delegated to the orchestrator; the runner only records the
    transient ``falling_back`` state.
    """

    def __init__(
        self,
        session: ActiveSession,
        *,
        queue: PendingMessageStore,
        sessions: SessionStore,
        processor: ResponseProcessor,
        orchestrator_factory: OrchestratorFactory,
    ) -> None:
        self.session = session
        self.queue = queue
        self.sessions = sessions
        self.processor = processor
        self._orchestrator_factory = orchestrator_factory
        self._orchestrator: Optional[ProviderOrchestrator] = None
        self._active_provider: Optional[str] = None
        self.state = RunnerState.INITIALIZING
        self._draining_state = RunnerState.INITIALIZING
        self.turns = 0
        self.events_processed = 0

    @property
    def provider_tag(self) -> str:
        return self._orchestrator.provider_tag if self._orchestrator is not None else "unknown"

    @property
    def active_provider(self) -> str:
        """Provider that served, or last failed, the current exchange."""
        return self._active_provider or self.provider_tag

    def run(self) -> RunOutcome:
        session = self.session
        set_correlation_id(f"session-{session.session_db_id}")
        started = time.time()
        try:
            self._orchestrator = self._orchestrator_factory()
            self._ensure_memory_session_id()
            self._send_init_prompt()
            self._drain()
        except CancellationError as exc:
            self.state = RunnerState.ABORTED
            LOGGER.warning(
                "Session %s aborted (%s); in-flight events stay unconfirmed",
                session.session_db_id,
                exc,
            )
            return self._outcome(started, exc)
        except (ConfigurationError, PreconditionError) as exc:
            self.state = RunnerState.FAILED
            LOGGER.error(
                "Session %s stopped: provider=%s error_kind=%s: %s",
                session.session_db_id,
                self.active_provider,
                error_kind(exc) if isinstance(exc, ConfigurationError) else "precondition",
                exc,
            )
            return self._outcome(started, exc)
        except Exception as exc:
            self.state = RunnerState.FAILED
            LOGGER.error(
                "Session %s failed: provider=%s error_kind=%s: %s",
                session.session_db_id,
                self.active_provider,
                error_kind(exc),
                exc,
            )
            raise
        else:
            self.state = RunnerState.COMPLETED
            outcome = self._outcome(started)
            LOGGER.info(
                "Session %s completed in %.1fs: turns=%s events=%s history=%s provider=%s",
                session.session_db_id,
                outcome.duration_seconds,
                outcome.turns,
                outcome.events_processed,
                len(session.conversation_history),
                self.provider_tag,
            )
            return outcome
        finally:
            if self._orchestrator is not None:
                self._orchestrator.close()
            set_correlation_id(None)

    def _outcome(self, started: float, error: Optional[BaseException] = None) -> RunOutcome:
        return RunOutcome(
            state=self.state,
            turns=self.turns,
            events_processed=self.events_processed,
            duration_seconds=time.time() - started,
            error=error,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _ensure_memory_session_id(self) -> None:
        session = self.session
        if session.memory_session_id:
            return
        memory_session_id = f"{self.provider_tag}-{session.content_session_id}-{now_epoch_ms()}"
        self.sessions.update_memory_session_id(session.session_db_id, memory_session_id)
        session.memory_session_id = memory_session_id
        LOGGER.info(
            "Generated memory session id for session %s (provider=%s)",
            session.session_db_id,
            self.provider_tag,
        )

    def _send_init_prompt(self) -> None:
        session = self.session
        if session.last_prompt_number <= 1:
            prompt = build_init_prompt(session.project, session.content_session_id, session.user_prompt)
        else:
            prompt = build_continuation_prompt(
                session.user_prompt, session.last_prompt_number, session.content_session_id
            )
        self._exchange(prompt, original_timestamp=None, last_cwd=None, context="init")

    def _drain(self) -> None:
        session = self.session
        self.state = self._draining_state = RunnerState.DRAINING
        last_cwd = session.last_cwd
        while True:
            session.abort.raise_if_aborted()
            event = self.queue.claim_next(session.session_db_id)
            if event is None:
                break

            with session.lock:
                session.processing_message_ids.append(event.persistent_id)
                if session.earliest_pending_timestamp is None:
                    session.earliest_pending_timestamp = event.enqueued_at_epoch
            if event.cwd:
                last_cwd = session.last_cwd = event.cwd
            original_timestamp = session.earliest_pending_timestamp

            prompt = self._prompt_for(event, original_timestamp)
            self._exchange(prompt, original_timestamp=original_timestamp, last_cwd=last_cwd, context=event.kind)
            self.events_processed += 1

    def _prompt_for(self, event: QueueEvent, original_timestamp: Optional[int]) -> str:
        session = self.session
        payload = event.payload
        if event.kind == KIND_OBSERVATION:
            if event.prompt_number is not None and event.prompt_number != session.last_prompt_number:
                session.last_prompt_number = event.prompt_number
                self.sessions.update_prompt(session.session_db_id, event.prompt_number)
            self._require_memory_session_id("observations")
            return build_observation_prompt(
                tool_name=payload.get("tool_name", ""),
                tool_input=payload.get("tool_input"),
                tool_output=payload.get("tool_response"),
                created_at_epoch=original_timestamp or now_epoch_ms(),
                cwd=event.cwd,
            )
        if event.kind == KIND_SUMMARIZE:
            self._require_memory_session_id("summary")
            return build_summary_prompt(
                session_db_id=session.session_db_id,
                memory_session_id=session.memory_session_id or "",
                project=session.project,
                user_prompt=session.user_prompt,
                last_assistant_message=payload.get("last_assistant_message") or "",
            )
        raise PreconditionError(f"Unknown event kind '{event.kind}' for event {event.persistent_id}")

    def _require_memory_session_id(self, what: str) -> None:
        if not self.session.memory_session_id:
            raise PreconditionError(
                f"Cannot process {what}: memory session id not yet captured. "
                "This session may need to be reinitialized."
            )

    # ------------------------------------------------------------------
    # One provider round trip
    # ------------------------------------------------------------------

    def _exchange(
        self,
        prompt: str,
        *,
        original_timestamp: Optional[int],
        last_cwd: Optional[str],
        context: str,
    ) -> None:
        session = self.session
        assert self._orchestrator is not None
        session.add_user_message(prompt)
        self._active_provider = self._orchestrator.provider_tag
        result =self._orchestrator.complete(
            session.conversation_history,
            abort=session.abort,
            on_failover=self._on_failover,
        )
        self.state = self._draining_state
        self.turns += 1

        tokens_used = 0
        if result.text:
            tokens_used = result.tokens_used
            input_tokens, output_tokens = split_token_usage(tokens_used)
            with session.lock:
                session.cumulative_input_tokens += input_tokens
                session.cumulative_output_tokens += output_tokens
            session.add_assistant_message(result.text)
        else:
            LOGGER.error(
                "Empty %s response from %s for session %s",
                context,
                result.provider_tag,
                session.session_db_id,
            )

        self.processor.process(
            result.text,
            session,
            tokens_used,
            original_timestamp,
            result.provider_tag,
            last_cwd,
        )

    def _on_failover(self, failed: str, fallback: str, error: Exception) -> None:
        self.state = RunnerState.FALLING_BACK
        self._active_provider = fallback
        LOGGER.warning(
            "Session %s falling back from %s to %s (%s)",
            self.session.session_db_id,
            failed,
            fallback,
            error_kind(error),
        )


__all__ = ["RunOutcome", "RunnerState", "SessionRunner", "split_token_usage"]
