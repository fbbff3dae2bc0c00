"""External service provider integrations.

Import the orchestrator from :mod:`ai_mem_agent.providers.orchestrator`.
"""
from __future__ import annotations

from . import llm
from .llm import (
    ConfigurationError,
    LLMError,
    LLMTransportError,
    Message,
    ProviderBodyError,
    ProviderConfig,
    ProviderResult,
    create_adapter,
)

__all__ = [
    "ConfigurationError",
    "LLMError",
    "LLMTransportError",
    "Message",
    "ProviderBodyError",
    "ProviderConfig",
    "ProviderResult",
    "create_adapter",
    "llm",
]
