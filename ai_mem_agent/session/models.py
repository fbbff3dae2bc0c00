"""Core data structures for observed coding sessions."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import RLock
from typing import List, Optional

from ai_mem_agent.core.utils.cancellation import AbortSignal
from ai_mem_agent.providers.llm.base import Message
from ai_mem_agent.storage.sessions import SessionRecord


@dataclass
class ActiveSession:
    """In-memory working copy of a session, owned by one runner at a time.

    Everything except the conversation history and the abort signal can be
    rebuilt from the durable session row.
    """

    session_db_id: int
    content_session_id: str
    memory_session_id: Optional[str] = None
    project: str = ""
    user_prompt: str = ""
    last_prompt_number: int = 0
    cumulative_input_tokens: int = 0
    cumulative_output_tokens: int = 0
    start_time: float = field(default_factory=time.time)
    last_cwd: Optional[str] = None
    earliest_pending_timestamp: Optional[int] = None
    conversation_history: List[Message] = field(default_factory=list)
    processing_message_ids: List[int] = field(default_factory=list)
    abort: AbortSignal = field(default_factory=AbortSignal)
    lock: RLock = field(default_factory=RLock, repr=False)

    @classmethod
    def from_record(cls, record: SessionRecord) -> "ActiveSession":
        return cls(
            session_db_id=record.id,
            content_session_id=record.content_session_id,
            memory_session_id=record.memory_session_id,
            project=record.project,
            user_prompt=record.user_prompt,
            last_prompt_number=record.last_prompt_number,
            cumulative_input_tokens=record.input_tokens,
            cumulative_output_tokens=record.output_tokens,
        )

    def add_user_message(self, content: str) -> Message:
        message = Message(role="user", content=content)
        with self.lock:
            self.conversation_history.append(message)
        return message

    def add_assistant_message(self, content: str) -> Message:
        message = Message(role="assistant", content=content)
        with self.lock:
            self.conversation_history.append(message)
        return message
