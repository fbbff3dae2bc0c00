"""Keep outgoing LLM conversations within a message-count and token budget.

Token counts here are estimates: a fixed ratio of characters per token with
no tokenizer involved. They are deliberately conservative for English text
and code, but are not exact.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

from ai_mem_agent.providers.llm.base import ConfigurationError, Message

from .constants import (
    CHARS_PER_TOKEN_ESTIMATE,
    DEFAULT_MAX_CONTEXT_MESSAGES,
    DEFAULT_MAX_ESTIMATED_TOKENS,
)
from .logger import get_logger

LOGGER = get_logger(__name__)


class ContextBudgetError(ConfigurationError):
    """Raised when not even the newest turn fits the configured budget."""


@dataclass(frozen=True)
class ContextBudgetConfig:
    """Limits applied to the history sent with each request."""

    max_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES
    max_tokens: int = DEFAULT_MAX_ESTIMATED_TOKENS
    pin_first_turn: bool = False


def estimate_text_tokens(text: str) -> int:
    """Estimate tokens for ``text`` (characters / 4, rounded up)."""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN_ESTIMATE)


def estimate_tokens(messages: Sequence[Message]) -> int:
    """Estimate token usage for a list of messages."""
    return sum(estimate_text_tokens(message.content) for message in messages)


def truncate_history(messages: Sequence[Message], config: ContextBudgetConfig) -> List[Message]:
    """Return the slice of ``messages`` that fits ``config``.

    The input is never modified. When both limits hold the full history is
    returned as a new list; otherwise a sliding window is taken from the newest
    turn backward, stopping at the first turn that would break either limit.
    With ``pin_first_turn`` the first turn is reserved before the window is
    filled.
    """

    history = list(messages)
    if not history:
        return []

    if len(history) <= config.max_messages and estimate_tokens(history) <= config.max_tokens:
        return history

    pinned: List[Message] = []
    candidates = history
    max_messages = config.max_messages
    token_budget = config.max_tokens
    if config.pin_first_turn and len(history) > 1:
        first_tokens = estimate_text_tokens(history[0].content)
        if first_tokens <= token_budget and max_messages > 1:
            pinned = [history[0]]
            candidates = history[1:]
            max_messages -= 1
            token_budget -= first_tokens

    window: List[Message] = []
    token_count = 0
    for message in reversed(candidates):
        message_tokens = estimate_text_tokens(message.content)
        if len(window) >= max_messages or token_count + message_tokens > token_budget:
            break
        window.append(message)
        token_count += message_tokens
    window.reverse()

    if not window:
        raise ContextBudgetError(
            f"Newest turn ({estimate_text_tokens(history[-1].content)} estimated tokens) exceeds "
            f"the context budget of {config.max_tokens} tokens / {config.max_messages} messages"
        )

    kept = pinned + window
    LOGGER.warning(
        "Context window truncated to prevent runaway costs: original=%s kept=%s dropped=%s "
        "estimated_tokens=%s token_limit=%s",
        len(history),
        len(kept),
        len(history) - len(kept),
        token_count + sum(estimate_text_tokens(message.content) for message in pinned),
        config.max_tokens,
    )
    return kept


__all__ = [
    "ContextBudgetConfig",
    "ContextBudgetError",
    "estimate_text_tokens",
    "estimate_tokens",
    "truncate_history",
]
