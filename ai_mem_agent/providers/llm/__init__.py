"""Factory helpers for LLM provider adapters."""
from __future__ import annotations

from .anthropic import AnthropicMessagesAdapter
from .base import (
    ConfigurationError,
    HTTPProviderAdapter,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMResponseError,
    LLMRetryExhaustedError,
    LLMTimeoutError,
    LLMTransportError,
    Message,
    ProviderAdapter,
    ProviderBodyError,
    ProviderConfig,
    ProviderResult,
    RetryConfig,
    WIRE_FORMAT_ANTHROPIC,
    WIRE_FORMAT_OPENAI,
)
from .formats import detect_wire_format, normalize_endpoint
from .openai_compat import OpenAICompatibleAdapter

_ADAPTER_MAP = {
    WIRE_FORMAT_OPENAI: OpenAICompatibleAdapter,
    WIRE_FORMAT_ANTHROPIC: AnthropicMessagesAdapter,
}


def create_adapter(config: ProviderConfig, *, retry_config: RetryConfig | None = None) -> HTTPProviderAdapter:
    """Build the adapter matching ``config``'s wire format and normalized endpoint."""
    wire_format = detect_wire_format(config.endpoint, config.wire_format)
    try:
        adapter_cls = _ADAPTER_MAP[wire_format]
    except KeyError as exc:
        raise ConfigurationError(f"Unsupported API format: {wire_format}") from exc
    endpoint = normalize_endpoint(config.endpoint, wire_format)
    return adapter_cls(config, endpoint=endpoint, retry_config=retry_config)


__all__ = [
    "AnthropicMessagesAdapter",
    "ConfigurationError",
    "HTTPProviderAdapter",
    "LLMConnectionError",
    "LLMError",
    "LLMRateLimitError",
    "LLMResponseError",
    "LLMRetryExhaustedError",
    "LLMTimeoutError",
    "LLMTransportError",
    "Message",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "ProviderBodyError",
    "ProviderConfig",
    "ProviderResult",
    "RetryConfig",
    "create_adapter",
    "detect_wire_format",
    "normalize_endpoint",
]
