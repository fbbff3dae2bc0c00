"""Wire-format detection and endpoint normalization."""
from __future__ import annotations

from urllib.parse import urlparse

from ai_mem_agent.core.utils.logger import get_logger, mask_url

from .base import (
    ConfigurationError,
    WIRE_FORMAT_ANTHROPIC,
    WIRE_FORMAT_AUTO,
    WIRE_FORMAT_OPENAI,
)

LOGGER = get_logger(__name__)

ANTHROPIC_DOMAIN = "anthropic.com"
CHAT_COMPLETIONS_SUFFIX = "/chat/completions"
MESSAGES_SUFFIX = "/v1/messages"
MESSAGES_SUFFIXES = ("/v1/messages", "/messages")
RECOGNIZED_SUFFIXES = ("/chat/completions", "/completions", *MESSAGES_SUFFIXES)


def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def detect_wire_format(endpoint: str, configured: str = WIRE_FORMAT_AUTO) -> str:
    """Return ``openai`` or ``anthropic`` for ``endpoint``.

    An explicit ``configured`` format wins. Otherwise the first-party domain or
    a messages-style path selects the Anthropic shape; anything else is treated
    as an OpenAI-compatible chat-completions endpoint.
    """
    configured = (configured or WIRE_FORMAT_AUTO).lower()
    if configured in {WIRE_FORMAT_OPENAI, WIRE_FORMAT_ANTHROPIC}:
        return configured
    if configured != WIRE_FORMAT_AUTO:
        raise ConfigurationError(f"Unsupported API format: {configured}")

    host = _host(endpoint)
    if host == ANTHROPIC_DOMAIN or host.endswith("." + ANTHROPIC_DOMAIN):
        return WIRE_FORMAT_ANTHROPIC
    path = endpoint.rstrip("/")
    if path.endswith(MESSAGES_SUFFIXES):
        return WIRE_FORMAT_ANTHROPIC
    return WIRE_FORMAT_OPENAI


def normalize_endpoint(endpoint: str, wire_format: str) -> str:
    """Append the canonical completion path unless one is already present."""
    if endpoint.endswith(RECOGNIZED_SUFFIXES):
        return endpoint
    base = endpoint.rstrip("/")
    if base.endswith(RECOGNIZED_SUFFIXES):
        return base
    suffix = MESSAGES_SUFFIX if wire_format == WIRE_FORMAT_ANTHROPIC else CHAT_COMPLETIONS_SUFFIX
    normalized = f"{base}{suffix}"
    LOGGER.debug("Auto-appended %s to API URL: %s", suffix, mask_url(normalized))
    return normalized


__all__ = [
    "RECOGNIZED_SUFFIXES",
    "detect_wire_format",
    "normalize_endpoint",
]
