"""Typed response bodies for the supported wire formats.

Each format has one success shape and one error shape. Bodies that match
neither are rejected by validation instead of being read field by field.
"""
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


class ProviderErrorBody(_Lenient):
    """``error`` object embedded in a response body by either format."""

    message: Optional[str] = None
    code: Optional[str | int] = None
    type: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "ProviderErrorBody":
        if isinstance(raw, dict):
            try:
                return cls.model_validate(raw)
            except ValidationError:
                kind = raw.get("type")
                code = raw.get("code")
                return cls(
                    message=str(raw.get("message", raw)),
                    code=code if isinstance(code, (str, int)) else None,
                    type=kind if isinstance(kind, str) else None,
                )
        return cls(message=str(raw))


# ----------------------------------------------------------------------
# Chat-completions shape
# ----------------------------------------------------------------------


class ChatMessage(_Lenient):
    role: Optional[str] = None
    content: Optional[str] = None


class ChatChoice(_Lenient):
    message: Optional[ChatMessage] = None
    finish_reason: Optional[str] = None


class ChatUsage(_Lenient):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class ChatCompletionResponse(_Lenient):
    """Success body of ``POST /chat/completions``."""

    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None

    def first_content(self) -> str:
        if not self.choices:
            return ""
        message = self.choices[0].message
        if message is None or not message.content:
            return ""
        return message.content


# ----------------------------------------------------------------------
# Messages shape
# ----------------------------------------------------------------------


class ContentBlock(_Lenient):
    type: str
    text: Optional[str] = None


class MessagesUsage(_Lenient):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class MessagesResponse(_Lenient):
    """Success body of ``POST /v1/messages``."""

    id: Optional[str] = None
    content: List[ContentBlock]
    stop_reason: Optional[str] = None
    usage: Optional[MessagesUsage] = None

    def first_text(self) -> str:
        for block in self.content:
            if block.type == "text":
                return block.text or ""
        return ""


__all__ = [
    "ChatCompletionResponse",
    "ContentBlock",
    "MessagesResponse",
    "ProviderErrorBody",
]
