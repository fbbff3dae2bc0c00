"""Anthropic Messages API adapter."""
from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ai_mem_agent.core.utils.constants import ANTHROPIC_API_VERSION

from .base import (
    HTTPProviderAdapter,
    Message,
    ProviderBodyError,
    ProviderResult,
    WIRE_FORMAT_ANTHROPIC,
)
from .responses import MessagesResponse, ProviderErrorBody


def extract_system_prompt(messages: Sequence[Message]) -> str:
    """Return the first user turn, which carries the session instructions."""
    for message in messages:
        if message.role == "user":
            return message.content
    return ""


def to_alternating_turns(messages: Sequence[Message]) -> List[Dict[str, str]]:
    """Map history onto the user-first turn list the Messages API accepts.

    Assistant turns that precede the first user turn are dropped.
    """
    turns: List[Dict[str, str]] = []
    for message in messages:
        if message.role == "user":
            turns.append({"role": "user", "content": message.content})
        elif message.role == "assistant" and turns:
            turns.append({"role": "assistant", "content": message.content})
    return turns


class AnthropicMessagesAdapter(HTTPProviderAdapter):
    """Client for ``/v1/messages`` style endpoints."""

    wire_format = WIRE_FORMAT_ANTHROPIC
    _response_model = MessagesResponse

    def _build_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.credential,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }

    def _prepare_payload(self, messages: Sequence[Message]) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "system": extract_system_prompt(messages),
            "messages": to_alternating_turns(messages),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_output_tokens,
        }

    def _raise_for_body_error(self, data: Dict[str, Any]) -> None:
        if not data.get("error"):
            return
        error = ProviderErrorBody.from_raw(data["error"])
        raise ProviderBodyError(
            self._redact(f"{self.provider_name} API error: {error.type} - {error.message}"),
            code=error.type,
        )

    def _to_result(self, response: MessagesResponse) -> ProviderResult:  # type: ignore[override]
        text = response.first_text()
        usage = response.usage
        if usage is None:
            return ProviderResult(text=text)
        input_tokens = usage.input_tokens or 0
        output_tokens = usage.output_tokens or 0
        return ProviderResult(
            text=text,
            tokens_used=input_tokens + output_tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


__all__ = ["AnthropicMessagesAdapter", "extract_system_prompt", "to_alternating_turns"]
