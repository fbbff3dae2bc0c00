"""Prompt templates sent to the observer model."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

_OBSERVER_ROLE = (
    "You are a memory observer for a coding session. You do not take part in the "
    "session; you watch the tools the primary assistant uses and record what was "
    "learned, built, fixed or decided so it can be recalled in later sessions."
)

_OUTPUT_RULES = (
    "Reply only with observation markup. Record one <observation> block per "
    "meaningful finding and skip routine operations (listing files, re-reading the "
    "same file, empty results). If nothing is worth recording, reply with an empty string."
)


def _format_epoch(epoch_ms: Optional[int]) -> str:
    if not epoch_ms:
        return "unknown"
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def build_init_prompt(project: str, content_session_id: str, user_prompt: str) -> str:
    """First-turn instructions for a new session."""
    return "\n\n".join(
        [
            _OBSERVER_ROLE,
            f"Project: {project or 'unknown'}\nSession: {content_session_id}",
            f"The user asked:\n<user_request>\n{user_prompt}\n</user_request>",
            _OUTPUT_RULES,
        ]
    )


def build_continuation_prompt(user_prompt: str, prompt_number: int, content_session_id: str) -> str:
    """Instructions for a later prompt in an existing session."""
    return "\n\n".join(
        [
            _OBSERVER_ROLE,
            f"Session {content_session_id} continues with prompt #{prompt_number}.",
            f"The user now asked:\n<user_request>\n{user_prompt}\n</user_request>",
            _OUTPUT_RULES,
        ]
    )


def build_observation_prompt(
    *,
    tool_name: str,
    tool_input: Any,
    tool_output: Any,
    created_at_epoch: Optional[int],
    cwd: Optional[str] = None,
) -> str:
    """Describe one tool invocation for the observer."""
    lines = [
        "<tool_used>",
        f"  <tool_name>{tool_name}</tool_name>",
        f"  <occurred_at>{_format_epoch(created_at_epoch)}</occurred_at>",
    ]
    if cwd:
        lines.append(f"  <working_directory>{cwd}</working_directory>")
    lines.extend(
        [
            f"  <parameters>{_as_text(tool_input)}</parameters>",
            f"  <outcome>{_as_text(tool_output)}</outcome>",
            "</tool_used>",
        ]
    )
    return "\n".join(lines)


def build_summary_prompt(
    *,
    session_db_id: int,
    memory_session_id: str,
    project: str,
    user_prompt: str,
    last_assistant_message: str,
) -> str:
    """Ask for an end-of-prompt summary of the session."""
    return "\n\n".join(
        [
            "The primary assistant has finished responding. Write a progress summary of "
            "this session inside one <summary> block: what was requested, what was "
            "investigated, what was learned, what was completed and what comes next.",
            f"Session: {session_db_id} ({memory_session_id})\nProject: {project or 'unknown'}",
            f"<user_request>\n{user_prompt}\n</user_request>",
            f"<last_assistant_message>\n{last_assistant_message}\n</last_assistant_message>",
        ]
    )


__all__ = [
    "build_continuation_prompt",
    "build_init_prompt",
    "build_observation_prompt",
    "build_summary_prompt",
]
