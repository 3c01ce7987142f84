"""Error types shared by the scheduling services."""
from __future__ import annotations


class DayWeaverError(Exception):
    """Base class for recoverable service errors."""


class CompletionError(DayWeaverError):
    """The text-completion collaborator could not be reached or returned nothing."""


class MalformedOutputError(DayWeaverError):
    """Completion text did not match the expected schema."""

    def __init__(self, message: str, *, field: str = "<root>") -> None:
        super().__init__(message)
        self.field = field


class TaskStoreError(DayWeaverError):
    """A task store read or write failed."""
