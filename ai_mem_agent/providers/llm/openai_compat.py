"""OpenAI-compatible chat-completions adapter."""
from __future__ import annotations

from typing import Any, Dict, Sequence

from .base import (
    HTTPProviderAdapter,
    Message,
    ProviderBodyError,
    ProviderResult,
    WIRE_FORMAT_OPENAI,
)
from .responses import ChatCompletionResponse, ProviderErrorBody


class OpenAICompatibleAdapter(HTTPProviderAdapter):
    """Chat-completions client for any OpenAI-compatible endpoint."""

    wire_format = WIRE_FORMAT_OPENAI
    _response_model = ChatCompletionResponse

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.credential}",
            "Content-Type": "application/json",
        }

    def _prepare_payload(self, messages: Sequence[Message]) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {
                    "role": "assistant" if message.role == "assistant" else "user",
                    "content": message.content,
                }
                for message in messages
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_output_tokens,
        }

    def _raise_for_body_error(self, data: Dict[str, Any]) -> None:
        if not data.get("error"):
            return
        error = ProviderErrorBody.from_raw(data["error"])
        code = error.type or (str(error.code) if error.code is not None else None)
        raise ProviderBodyError(
            self._redact(f"{self.provider_name} API error: {code} - {error.message}"),
            code=code,
        )

    def _to_result(self, response: ChatCompletionResponse) -> ProviderResult:  # type: ignore[override]
        text = response.first_content()
        usage = response.usage
        if usage is None:
            return ProviderResult(text=text)
        return ProviderResult(
            text=text,
            tokens_used=usage.total_tokens or 0,
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
        )


__all__ = ["OpenAICompatibleAdapter"]
