import logging
import sqlite3

import pytest

from ai_mem_agent.core.utils.cancellation import CancellationError
from ai_mem_agent.providers.llm.base import (
    ConfigurationError,
    LLMConnectionError,
    ProviderConfig,
    ProviderResult,
)
from ai_mem_agent.providers.orchestrator import ProviderOrchestrator
from ai_mem_agent.session import PreconditionError, ResponseProcessingError, RunnerState, SessionManager, SessionRunner
from ai_mem_agent.storage import Database
from ai_mem_agent.storage.pending import STATUS_PENDING, STATUS_PROCESSED, STATUS_PROCESSING


class ScriptedAdapter:
    """Adapter that replays a list of outcomes; the last one repeats."""

    def __init__(self, name, *outcomes, max_context_messages=20):
        self.config = ProviderConfig(
            name=name,
            endpoint=f"https://{name}.example.com",
            credential="k",
            model="m",
            max_context_messages=max_context_messages,
        )
        self.outcomes = list(outcomes)
        self.calls = []

    @property
    def provider_name(self):
        return self.config.name

    def complete(self, messages, *, abort=None):
        self.calls.append(list(messages))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if callable(outcome):
            outcome = outcome(messages, abort)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _ok(text="<observation>noted</observation>", tokens=100):
    return ProviderResult(text=text, tokens_used=tokens)


@pytest.fixture
def make_manager(tmp_path):
    managers = []

    def factory(*adapters, **kwargs):
        manager = SessionManager(
            Database(tmp_path / "worker.db"),
            orchestrator_factory=lambda: ProviderOrchestrator(list(adapters)),
            **kwargs,
        )
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.shutdown()


def _seed(manager, observations=2, summarize=True):
    session = manager.initialize_session("content-1", project="demo", user_prompt="fix the bug", prompt_number=1)
    events = [
        manager.queue_observation(
            session.session_db_id,
            tool_name="Read",
            tool_input={"path": f"file{index}.py"},
            tool_response="contents",
            cwd="/repo",
            prompt_number=1,
        )
        for index in range(observations)
    ]
    if summarize:
        events.append(manager.queue_summarize(session.session_db_id, last_assistant_message="All done"))
    return session, events


def test_drains_queue_in_order_and_stores_each_event(make_manager):
    adapter = ScriptedAdapter("primary", _ok())
    manager = make_manager(adapter)
    session, events = _seed(manager)

    outcome = manager.run_session(session.session_db_id)

    assert outcome.state is RunnerState.COMPLETED
    assert outcome.turns == 4
    assert outcome.events_processed == 3
    assert len(session.conversation_history) == 8
    assert session.memory_session_id.startswith("primary-content-1-")
    assert manager.sessions.get(session.session_db_id).memory_session_id == session.memory_session_id
    assert all(manager.queue.get(event.persistent_id).status == STATUS_PROCESSED for event in events)

    stored = manager.observations.for_session(session.session_db_id)
    assert [row.source_message_id for row in stored] == [None] + [event.persistent_id for event in events]
    assert stored[1].cwd == "/repo"
    assert stored[1].provider == "primary"
    assert "fix the bug" in adapter.calls[0][0].content
    assert "<summary>" in adapter.calls[-1][-1].content


def test_token_counters_use_fixed_split(make_manager):
    manager = make_manager(ScriptedAdapter("primary", _ok(tokens=60_000)))
    session, _ = _seed(manager, observations=1, summarize=False)

    manager.run_session(session.session_db_id)

    assert session.cumulative_input_tokens == 2 * 42_000
    assert session.cumulative_output_tokens == 2 * 18_000
    record = manager.sessions.get(session.session_db_id)
    assert (record.input_tokens, record.output_tokens) == (84_000, 36_000)


def test_continuation_prompt_for_later_prompts(make_manager):
    adapter = ScriptedAdapter("primary", _ok())
    manager = make_manager(adapter)
    session = manager.initialize_session("content-1", user_prompt="second ask", prompt_number=3)

    manager.run_session(session.session_db_id)

    assert "prompt #3" in adapter.calls[0][0].content


def test_failover_is_recorded_on_stored_rows(make_manager):
    primary = ScriptedAdapter("primary", LLMConnectionError("down"))
    fallback = ScriptedAdapter("fallback", _ok())
    manager = make_manager(primary, fallback)
    session, events = _seed(manager, observations=1, summarize=False)

    outcome = manager.run_session(session.session_db_id)

    assert outcome.state is RunnerState.COMPLETED
    stored = manager.observations.for_message(events[0].persistent_id)
    assert stored[0].provider == "fallback"
    assert len(fallback.calls[-1]) == len(primary.calls[-1])


def test_empty_response_confirms_without_storing(make_manager):
    manager = make_manager(ScriptedAdapter("primary", _ok(), ProviderResult(text="")))
    session, events = _seed(manager, observations=1, summarize=False)

    outcome = manager.run_session(session.session_db_id)

    assert outcome.state is RunnerState.COMPLETED
    assert manager.queue.get(events[0].persistent_id).status == STATUS_PROCESSED
    assert manager.observations.for_message(events[0].persistent_id) == []
    assert [message.role for message in session.conversation_history] == ["user", "assistant", "user"]


def test_abort_leaves_inflight_event_for_redelivery(make_manager):
    def abort_midway(messages, abort):
        abort.abort("worker shutting down")
        return CancellationError("worker shutting down")

    adapter = ScriptedAdapter("primary", _ok(), abort_midway, _ok())
    manager = make_manager(adapter)
    session, events = _seed(manager, observations=2, summarize=False)

    outcome = manager.run_session(session.session_db_id)

    assert outcome.state is RunnerState.ABORTED
    assert manager.queue.get(events[0].persistent_id).status == STATUS_PROCESSING
    assert manager.queue.get(events[1].persistent_id).status == STATUS_PENDING
    assert manager.observations.for_message(events[0].persistent_id) == []

    outcome = manager.run_session(session.session_db_id)

    assert outcome.state is RunnerState.COMPLETED
    assert outcome.events_processed == 2
    assert all(manager.queue.get(event.persistent_id).status == STATUS_PROCESSED for event in events)
    assert manager.queue.get(events[0].persistent_id).retry_count == 1


def test_configuration_error_fails_without_touching_queue(make_manager):
    manager = make_manager(ScriptedAdapter("primary", ConfigurationError("no key")))
    session, events = _seed(manager, observations=1, summarize=False)

    outcome = manager.run_session(session.session_db_id)

    assert outcome.state is RunnerState.FAILED
    assert isinstance(outcome.error, ConfigurationError)
    assert manager.queue.get(events[0].persistent_id).status == STATUS_PENDING


def test_storage_failure_propagates_and_keeps_event_unconfirmed(make_manager, monkeypatch):
    manager = make_manager(ScriptedAdapter("primary", _ok()))
    session, events = _seed(manager, observations=1, summarize=False)
    original_save = manager.observations.save

    def failing_save(**kwargs):
        if kwargs["source_message_id"] is not None:
            raise sqlite3.OperationalError("disk I/O error")
        return original_save(**kwargs)

    monkeypatch.setattr(manager.observations, "save", failing_save)

    with pytest.raises(ResponseProcessingError):
        manager.run_session(session.session_db_id)

    assert manager.queue.get(events[0].persistent_id).status == STATUS_PROCESSING


def test_missing_memory_session_id_is_a_precondition_failure(make_manager):
    manager = make_manager(ScriptedAdapter("primary", _ok()))
    session, _ = _seed(manager, observations=1, summarize=False)
    runner = SessionRunner(
        session,
        queue=manager.queue,
        sessions=manager.sessions,
        processor=manager.processor,
        orchestrator_factory=lambda: None,
    )
    event = manager.queue.claim_next(session.session_db_id)

    with pytest.raises(PreconditionError, match="memory session id"):
        runner._prompt_for(event, None)


def test_both_providers_failing_keeps_event_unconfirmed(make_manager):
    primary = ScriptedAdapter("primary", _ok(), LLMConnectionError("primary down"))
    fallback = ScriptedAdapter("fallback", LLMConnectionError("fallback down"))
    manager = make_manager(primary, fallback)
    session, events = _seed(manager, observations=1, summarize=False)

    with pytest.raises(LLMConnectionError, match="fallback down"):
        manager.run_session(session.session_db_id)

    assert manager.queue.get(events[0].persistent_id).status == STATUS_PROCESSING
    assert manager.observations.for_message(events[0].persistent_id) == []
    assert len(primary.calls) == 2
    assert len(fallback.calls) == 1


def test_failed_run_logs_one_error_naming_last_provider(make_manager, caplog):
    primary = ScriptedAdapter("primary", _ok(), LLMConnectionError("primary down"))
    fallback = ScriptedAdapter("fallback", LLMConnectionError("fallback down"))
    manager = make_manager(primary, fallback)
    session, _ = _seed(manager, observations=1, summarize=False)

    with caplog.at_level(logging.ERROR):
        future = manager.start_runner(session.session_db_id)
        with pytest.raises(LLMConnectionError):
            future.result(timeout=5)
        manager.shutdown()

    errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
    assert len(errors) == 1
    assert "provider=fallback" in errors[0].getMessage()
