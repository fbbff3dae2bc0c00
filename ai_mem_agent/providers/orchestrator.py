"""Primary/fallback orchestration over provider adapters."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ai_mem_agent.core.utils.cancellation import AbortSignal, CancellationError
from ai_mem_agent.core.utils.context_budget import ContextBudgetConfig, truncate_history
from ai_mem_agent.core.utils.logger import get_logger

from .llm import (
    ConfigurationError,
    LLMTransportError,
    Message,
    ProviderAdapter,
    ProviderBodyError,
    ProviderConfig,
    create_adapter,
)

LOGGER = get_logger(__name__)

FailoverCallback = Callable[[str, str, Exception], None]


@dataclass(frozen=True)
class OrchestratedResult:
    """Reply from whichever adapter served the call."""

    text: str
    tokens_used: int
    provider_tag: str
    failed_over: bool = False


def is_fallback_eligible(error: BaseException) -> bool:
    """Return whether ``error`` may be retried against a fallback provider.

    Cancellation and configuration problems are never eligible; transport
    failures and error bodies are.
    """
    if isinstance(error, (CancellationError, ConfigurationError)):
        return False
    return isinstance(error, (LLMTransportError, ProviderBodyError))


def error_kind(error: BaseException) -> str:
    if isinstance(error, CancellationError):
        return "cancelled"
    if isinstance(error, ConfigurationError):
        return "configuration"
    if isinstance(error, ProviderBodyError):
        return "provider_body"
    if isinstance(error, LLMTransportError):
        return "transport"
    return type(error).__name__


class ProviderOrchestrator:
    """Drive an ordered, non-cyclic list of adapters: primary first, then fallbacks.

    Every attempt reads the same history list; each adapter bounds its own
    copy with its configured context limits.
    """

    def __init__(
        self,
        adapters: Sequence[ProviderAdapter],
        *,
        fallback_enabled: bool = True,
        max_failovers: int = 1,
    ) -> None:
        if not adapters:
            raise ConfigurationError("At least one provider adapter is required")
        self._adapters: List[ProviderAdapter] = list(adapters)
        self.fallback_enabled = fallback_enabled
        self.max_failovers = max(0, max_failovers)

    @property
    def primary(self) -> ProviderAdapter:
        return self._adapters[0]

    @property
    def provider_tag(self) -> str:
        return self.primary.provider_name

    @property
    def has_fallback(self) -> bool:
        return len(self._adapters) > 1 and self.max_failovers > 0

    def complete(
        self,
        history: Sequence[Message],
        *,
        abort: AbortSignal | None = None,
        on_failover: Optional[FailoverCallback] = None,
    ) -> OrchestratedResult:
        attempts = self._adapters[: self.max_failovers + 1] if self.fallback_enabled else self._adapters[:1]
        for index, adapter in enumerate(attempts):
            if abort is not None:
                abort.raise_if_aborted()
            config = adapter.config
            bounded = truncate_history(
                history,
                ContextBudgetConfig(
                    max_messages=config.max_context_messages,
                    max_tokens=config.max_estimated_tokens,
                    pin_first_turn=config.pin_first_turn,
                ),
            )
            try:
                result = adapter.complete(bounded, abort=abort)
            except Exception as exc:
                is_last = index == len(attempts) - 1
                if not is_fallback_eligible(exc) or is_last:
                    if is_fallback_eligible(exc) and self.has_fallback and not self.fallback_enabled:
                        LOGGER.error(
                            "%s failed and fallback is disabled in this deployment mode: %s",
                            adapter.provider_name,
                            exc,
                        )
                    raise
                next_adapter = attempts[index + 1]
                LOGGER.warning(
                    "%s failed (%s), falling back to %s with %s turns of history: %s",
                    adapter.provider_name,
                    error_kind(exc),
                    next_adapter.provider_name,
                    len(history),
                    exc,
                )
                if on_failover is not None:
                    on_failover(adapter.provider_name, next_adapter.provider_name, exc)
                continue
            return OrchestratedResult(
                text=result.text,
                tokens_used=result.tokens_used,
                provider_tag=adapter.provider_name,
                failed_over=index > 0,
            )
        raise ConfigurationError("No provider adapter attempted")  # pragma: no cover - attempts is never empty

    def close(self) -> None:
        for adapter in self._adapters:
            close = getattr(adapter, "close", None)
            if close is not None:
                close()


def create_orchestrator(
    configs: Sequence[ProviderConfig],
    *,
    remote_mode: bool = False,
    max_failovers: int = 1,
) -> ProviderOrchestrator:
    """Build an orchestrator from resolved provider configs (primary first)."""
    adapters = [create_adapter(config) for config in configs]
    return ProviderOrchestrator(
        adapters,
        fallback_enabled=not remote_mode,
        max_failovers=max_failovers,
    )


__all__ = [
    "OrchestratedResult",
    "ProviderOrchestrator",
    "create_orchestrator",
    "error_kind",
    "is_fallback_eligible",
]
