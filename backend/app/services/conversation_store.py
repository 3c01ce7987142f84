"""In-memory conversation history and the shared progress log."""
from __future__ import annotations

import logging
import secrets
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from app.core.clock import local_now
from app.services.complex_input import DEFAULT_COMPLEX_INPUT_POLICY, ComplexInputPolicy

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    id: str
    role: MessageRole
    content: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata or None,
        }


@dataclass
class _Session:
    session_id: str
    messages: Deque[ChatMessage]
    created_at: datetime
    updated_at: datetime


def new_session_id() -> str:
    return f"session_{secrets.token_hex(8)}"


class ConversationStore:
    """Per-session message logs.

    Each session keeps its most recent ``max_messages`` messages and the store
    keeps the ``max_sessions`` most recently used sessions. Timestamps within a
    session are strictly increasing.
    """

    def __init__(
        self,
        *,
        max_messages: int = 100,
        max_sessions: int = 50,
        complex_policy: ComplexInputPolicy = DEFAULT_COMPLEX_INPUT_POLICY,
    ) -> None:
        if max_messages < 1 or max_sessions < 1:
            raise ValueError("conversation bounds must be positive")
        self.max_messages = max_messages
        self.max_sessions = max_sessions
        self.complex_policy = complex_policy
        self._sessions: "OrderedDict[str, _Session]" = OrderedDict()
        self._lock = threading.Lock()

    def append(
        self,
        session_id: str,
        role: MessageRole | str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        role = MessageRole(role)
        with self._lock:
            session = self._touch(session_id)
            timestamp = datetime.now(timezone.utc)
            if session.messages and timestamp <= session.messages[-1].timestamp:
                timestamp = session.messages[-1].timestamp + timedelta(microseconds=1)
            message = ChatMessage(
                id=f"{session_id}_{int(timestamp.timestamp() * 1000)}_{secrets.token_hex(4)}",
                role=role,
                content=content,
                timestamp=timestamp,
                metadata=dict(metadata or {}),
            )
            session.messages.append(message)
            session.updated_at = timestamp
        logger.debug("Appended %s message to %s: %.50s", role.value, session_id, content)
        return message

    def recent(self, session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            messages = list(session.messages)
        if limit is not None:
            return messages[-limit:] if limit > 0 else []
        return messages

    def find_recent_complex_input(self, session_id: str) -> Optional[str]:
        """Newest user message in the session that reads as a multi-step request."""
        for message in reversed(self.recent(session_id)):
            if message.role is MessageRole.USER and self.complex_policy.matches(message.content):
                return message.content
        return None

    def find_recent_task_analysis(self, session_id: str) -> Optional[ChatMessage]:
        for message in reversed(self.recent(session_id)):
            if message.role is MessageRole.ASSISTANT and message.metadata.get("task_analysis"):
                return message
        return None

    def find_pending_task_analysis(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Task analysis still awaiting a reply, i.e. carried by the latest assistant message."""
        found = self.find_recent_task_analysis(session_id)
        if found is None:
            return None
        for message in reversed(self.recent(session_id)):
            if message.role is MessageRole.ASSISTANT:
                return found.metadata["task_analysis"] if message is found else None
        return None

    def clear(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Cleared conversation %s", session_id)
        return removed

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def stats(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            messages = list(session.messages)
            created_at, updated_at = session.created_at, session.updated_at
        user_count = sum(1 for m in messages if m.role is MessageRole.USER)
        return {
            "message_count": len(messages),
            "user_messages": user_count,
            "assistant_messages": len(messages) - user_count,
            "created_at": created_at.isoformat(),
            "updated_at": updated_at.isoformat(),
        }

    def _touch(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
            return session
        now = datetime.now(timezone.utc)
        session = _Session(
            session_id=session_id,
            messages=deque(maxlen=self.max_messages),
            created_at=now,
            updated_at=now,
        )
        self._sessions[session_id] = session
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info("Evicted conversation %s", evicted)
        return session


class ProgressLog:
    """Bounded, process-wide log of processing steps shown while a request runs."""

    def __init__(self, max_entries: int = 200) -> None:
        self._entries: Deque[str] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def add(self, message: str) -> str:
        entry = f"{local_now().strftime('%H:%M:%S')}: {message}"
        with self._lock:
            self._entries.append(entry)
        logger.debug("Progress: %s", message)
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def replace(self, messages: List[str]) -> None:
        stamp = local_now().strftime("%H:%M:%S")
        with self._lock:
            self._entries.clear()
            self._entries.extend(f"{stamp}: {message}" for message in messages)

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def recent(self, count: int = 10) -> List[str]:
        entries = self.snapshot()
        return entries[-count:] if count > 0 else []
