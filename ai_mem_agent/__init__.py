"""Public package interface for the memory worker."""
from __future__ import annotations

from importlib import metadata as _metadata

try:
    __version__ = _metadata.version("ai-mem-agent")
except _metadata.PackageNotFoundError:  # pragma: no cover - not installed
    __version__ = "0.1.0"

from .core.utils import AbortSignal, CancellationError, configure_logging, get_logger
from .core.utils.config import Settings, load_settings, resolve_provider_configs
from .core.utils.context_budget import ContextBudgetConfig, ContextBudgetError, truncate_history
from .providers.llm import (
    ConfigurationError,
    LLMError,
    Message,
    ProviderBodyError,
    ProviderConfig,
    ProviderResult,
    create_adapter,
)
from .providers.orchestrator import OrchestratedResult, ProviderOrchestrator, create_orchestrator
from .session import ActiveSession, RunnerState, RunOutcome, SessionManager, SessionRunner
from .storage import Database, PendingMessageStore, QueueEvent

__all__ = [
    "__version__",
    "AbortSignal",
    "ActiveSession",
    "CancellationError",
    "ConfigurationError",
    "ContextBudgetConfig",
    "ContextBudgetError",
    "Database",
    "LLMError",
    "Message",
    "OrchestratedResult",
    "PendingMessageStore",
    "ProviderBodyError",
    "ProviderConfig",
    "ProviderOrchestrator",
    "ProviderResult",
    "QueueEvent",
    "RunOutcome",
    "RunnerState",
    "SessionManager",
    "SessionRunner",
    "Settings",
    "configure_logging",
    "create_adapter",
    "create_orchestrator",
    "get_logger",
    "load_settings",
    "resolve_provider_configs",
    "truncate_history",
]
