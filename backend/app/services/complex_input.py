"""Heuristics that recognise multi-step procedural requests."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Tuple

DEFAULT_ACTION_VERBS: Tuple[str, ...] = ("填写", "提交", "打印", "签署", "登录", "申报", "生成", "点击")
DEFAULT_TIME_PATTERN = r"\d+月\d+日|\d+:\d+|截止|之前|需于"


@dataclass(frozen=True)
class ComplexInputPolicy:
    """A message is complex when it names enough actions, a time and is long enough."""

    action_verbs: Tuple[str, ...] = DEFAULT_ACTION_VERBS
    time_pattern: str = DEFAULT_TIME_PATTERN
    min_action_verbs: int = 2
    min_length: int = 50
    _time_re: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_time_re", re.compile(self.time_pattern))

    def action_verb_count(self, text: str) -> int:
        return sum(1 for verb in self.action_verbs if verb in text)

    def has_time_reference(self, text: str) -> bool:
        return bool(self._time_re.search(text))

    def matches(self, text: str | None) -> bool:
        if not text:
            return False
        return (
            self.action_verb_count(text) >= self.min_action_verbs
            and self.has_time_reference(text)
            and len(text) > self.min_length
        )


DEFAULT_COMPLEX_INPUT_POLICY = ComplexInputPolicy()


def looks_like_complex_input(text: str | None, policy: ComplexInputPolicy = DEFAULT_COMPLEX_INPUT_POLICY) -> bool:
    return policy.matches(text)
