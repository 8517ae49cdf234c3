"""Domain models for supervisor runtime state."""

from .lifecycle import (
    InvalidTransitionError,
    MissingFeedbackError,
    TaskNotFoundError,
    VALID_TRANSITIONS,
)
from .models import Config, HistoryEntry, Task, TaskStatus

__all__ = [
    "Task",
    "TaskStatus",
    "HistoryEntry",
    "Config",
    "VALID_TRANSITIONS",
    "InvalidTransitionError",
    "MissingFeedbackError",
    "TaskNotFoundError",
]
