import logging

import pytest

from ai_mem_agent.core.utils.cancellation import AbortSignal, CancellationError
from ai_mem_agent.providers.llm.base import (
    ConfigurationError,
    LLMConnectionError,
    LLMRateLimitError,
    Message,
    ProviderBodyError,
    ProviderConfig,
    ProviderResult,
)
from ai_mem_agent.providers.orchestrator import (
    ProviderOrchestrator,
    create_orchestrator,
    error_kind,
    is_fallback_eligible,
)


class FakeAdapter:
    def __init__(self, name, outcome, *, max_context_messages=20):
        self.config = ProviderConfig(
            name=name,
            endpoint=f"https://{name}.example.com",
            credential="k",
            model="m",
            max_context_messages=max_context_messages,
        )
        self.outcome = outcome
        self.calls = []

    @property
    def provider_name(self):
        return self.config.name

    def complete(self, messages, *, abort=None):
        self.calls.append(list(messages))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _history(count):
    return [Message("user" if index % 2 == 0 else "assistant", f"turn {index}") for index in range(count)]


def test_primary_success_does_not_touch_fallback():
    primary = FakeAdapter("primary", ProviderResult(text="ok", tokens_used=10))
    fallback = FakeAdapter("fallback", ProviderResult(text="unused"))

    result = ProviderOrchestrator([primary, fallback]).complete(_history(3))

    assert result.text == "ok"
    assert result.provider_tag == "primary"
    assert result.failed_over is False
    assert fallback.calls == []


def test_failover_reuses_full_history_with_fallback_limits(caplog):
    history = _history(25)
    primary = FakeAdapter("primary", LLMRateLimitError("429", status_code=429), max_context_messages=20)
    fallback = FakeAdapter("fallback", ProviderResult(text="<observation/>", tokens_used=40), max_context_messages=10)
    switches = []

    with caplog.at_level(logging.WARNING):
        result = ProviderOrchestrator([primary, fallback]).complete(
            history, on_failover=lambda failed, to, exc: switches.append((failed, to, type(exc)))
        )

    assert result.provider_tag == "fallback"
    assert result.failed_over is True
    assert primary.calls[0] == history[5:]
    assert fallback.calls[0] == history[15:]
    assert len(history) == 25
    assert switches == [("primary", "fallback", LLMRateLimitError)]
    assert any("falling back to fallback" in record.getMessage() for record in caplog.records)


def test_body_error_is_eligible_for_fallback():
    primary = FakeAdapter("primary", ProviderBodyError("quota", code="insufficient_quota"))
    fallback = FakeAdapter("fallback", ProviderResult(text="ok"))

    result = ProviderOrchestrator([primary, fallback]).complete(_history(1))

    assert result.provider_tag == "fallback"


def test_without_fallback_error_propagates():
    primary = FakeAdapter("primary", LLMConnectionError("down"))

    with pytest.raises(LLMConnectionError):
        ProviderOrchestrator([primary]).complete(_history(1))


def test_remote_mode_never_falls_back(caplog):
    primary = FakeAdapter("primary", LLMConnectionError("down"))
    fallback = FakeAdapter("fallback", ProviderResult(text="ok"))

    with caplog.at_level(logging.ERROR), pytest.raises(LLMConnectionError):
        ProviderOrchestrator([primary, fallback], fallback_enabled=False).complete(_history(1))

    assert fallback.calls == []
    assert any("fallback is disabled" in record.getMessage() for record in caplog.records)


@pytest.mark.parametrize("error", [CancellationError("stop"), ConfigurationError("no key")])
def test_cancellation_and_configuration_never_fail_over(error):
    primary = FakeAdapter("primary", error)
    fallback = FakeAdapter("fallback", ProviderResult(text="ok"))

    with pytest.raises(type(error)):
        ProviderOrchestrator([primary, fallback]).complete(_history(1))

    assert fallback.calls == []


def test_failover_chain_is_bounded():
    first = FakeAdapter("first", LLMConnectionError("down"))
    second = FakeAdapter("second", LLMConnectionError("down too"))
    third = FakeAdapter("third", ProviderResult(text="never"))

    with pytest.raises(LLMConnectionError, match="down too"):
        ProviderOrchestrator([first, second, third], max_failovers=1).complete(_history(1))

    assert third.calls == []


def test_aborted_signal_stops_before_call():
    primary = FakeAdapter("primary", ProviderResult(text="ok"))
    abort = AbortSignal()
    abort.abort("shutdown")

    with pytest.raises(CancellationError):
        ProviderOrchestrator([primary]).complete(_history(1), abort=abort)

    assert primary.calls == []


def test_error_classification():
    assert is_fallback_eligible(LLMRateLimitError("x"))
    assert not is_fallback_eligible(ValueError("x"))
    assert error_kind(ProviderBodyError("x")) == "provider_body"
    assert error_kind(CancellationError("x")) == "cancelled"


def test_create_orchestrator_builds_adapters():
    configs = [
        ProviderConfig(name="primary", endpoint="https://api.example.com/v1", credential="a", model="m"),
        ProviderConfig(name="fallback", endpoint="https://api.anthropic.com", credential="b", model="m"),
    ]

    orchestrator = create_orchestrator(configs, remote_mode=True)

    assert orchestrator.provider_tag == "primary"
    assert orchestrator.has_fallback is True
    assert orchestrator.fallback_enabled is False
    with pytest.raises(ConfigurationError):
        ProviderOrchestrator([])
