"""Resolve short affirmative replies back to the request they confirm."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from app.services.complex_input import DEFAULT_COMPLEX_INPUT_POLICY, ComplexInputPolicy
from app.services.conversation_store import ChatMessage, ConversationStore, MessageRole

logger = logging.getLogger(__name__)

DEFAULT_AFFIRMATIVE_KEYWORDS: Tuple[str, ...] = (
    "确认",
    "好的",
    "可以",
    "同意",
    "没问题",
    "行",
    "对的",
    "confirm",
    "okay",
    "ok",
    "sure",
    "agreed",
    "yes",
)


@dataclass(frozen=True)
class ConfirmationPolicy:
    """Affirmative keywords for short replies.

    ASCII keywords match whole words, others match anywhere. Replies longer than
    ``max_length`` characters are never treated as a confirmation.
    """

    keywords: Tuple[str, ...] = DEFAULT_AFFIRMATIVE_KEYWORDS
    max_length: int = 10

    def is_affirmative(self, text: str | None) -> bool:
        if not text:
            return False
        lowered = text.strip().lower()
        if not lowered or len(lowered) > self.max_length:
            return False
        for keyword in self.keywords:
            keyword = keyword.lower()
            if keyword.isascii():
                if re.search(rf"\b{re.escape(keyword)}\b", lowered):
                    return True
            elif keyword in lowered:
                return True
        return False


@dataclass
class ConfirmationOutcome:
    is_confirmation: bool
    original_input: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.is_confirmation and bool(self.original_input)


def _message_parts(item: Any) -> Tuple[str, str, Dict[str, Any]]:
    if isinstance(item, ChatMessage):
        return item.role.value, item.content, item.metadata
    if isinstance(item, dict):
        return str(item.get("role", "")), str(item.get("content") or ""), item.get("metadata") or {}
    return (
        str(getattr(item, "role", "")),
        str(getattr(item, "content", "") or ""),
        getattr(item, "metadata", None) or {},
    )


class ConfirmationResolver:
    """Maps a short affirmative reply to the request whose task analysis awaits confirmation.

    A reply only counts as a confirmation while the latest assistant message
    carries a task analysis. The confirmed text is the analysis' original input,
    or else the newest multi-step user message found through the complex-input
    policy of the conversation store.
    """

    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        *,
        policy: ConfirmationPolicy = ConfirmationPolicy(),
        complex_policy: Optional[ComplexInputPolicy] = None,
    ) -> None:
        self.store = store
        self.policy = policy
        if complex_policy is None:
            complex_policy = store.complex_policy if store is not None else DEFAULT_COMPLEX_INPUT_POLICY
        self.complex_policy = complex_policy

    def is_affirmative(self, text: str | None) -> bool:
        return self.policy.is_affirmative(text)

    def resolve(
        self,
        utterance: str,
        *,
        session_id: Optional[str] = None,
        history: Optional[Sequence[Any]] = None,
    ) -> ConfirmationOutcome:
        """Find the multi-step request an affirmative reply refers to.

        The conversation store is consulted first when a session id is given,
        then the supplied history, newest message first.
        """
        if not self.is_affirmative(utterance):
            return ConfirmationOutcome(is_confirmation=False)

        use_store = self.store is not None and bool(session_id) and bool(self.store.recent(session_id))
        if use_store:
            analysis = self.store.find_pending_task_analysis(session_id)
        else:
            analysis = self._pending_in_history(history or [])
        if analysis is None:
            logger.info("Affirmative reply without a pending task analysis; not a confirmation")
            return ConfirmationOutcome(is_confirmation=False)

        original = analysis.get("original_input") or None
        if not original and use_store:
            original = self.store.find_recent_complex_input(session_id)
        if not original and history:
            original = self._search(history, skip_latest=utterance)
        if original:
            logger.info("Confirmation resolved for session %s", session_id)
        else:
            logger.info("Affirmative reply with no multi-step request to confirm")
        return ConfirmationOutcome(is_confirmation=True, original_input=original)

    @staticmethod
    def _pending_in_history(messages: Sequence[Any]) -> Optional[Dict[str, Any]]:
        for item in reversed(list(messages)):
            role, _, metadata = _message_parts(item)
            if role == MessageRole.ASSISTANT.value:
                return metadata.get("task_analysis") or None
        return None

    def _search(self, messages: Iterable[Any], *, skip_latest: str) -> Optional[str]:
        for item in reversed(list(messages)):
            role, content, _ = _message_parts(item)
            if role != MessageRole.USER.value or content == skip_latest:
                continue
            if self.complex_policy.matches(content):
                return content
        return None
