"""Task lifecycle states, the transition table and its guards."""

from __future__ import annotations

from typing import Optional, cast

from .models import HistoryEntry, Task, TaskStatus


TASK_STATES: tuple[TaskStatus, ...] = ("pending", "running", "review", "question", "completed")

# (from, to) -> trigger
VALID_TRANSITIONS: dict[tuple[str, str], str] = {
    ("pending", "running"): "dispatch",
    ("running", "review"): "worker_finished",
    ("running", "question"): "worker_asked",
    ("review", "completed"): "approve",
    ("review", "pending"): "reject",
    ("question", "pending"): "answer",
}

# Transitions whose trigger is a user decision rather than the supervisor.
USER_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {("review", "completed"), ("review", "pending"), ("question", "pending")}
)
_FEEDBACK_REQUIRED: frozenset[tuple[str, str]] = frozenset({("review", "pending"), ("question", "pending")})


class InvalidTransitionError(ValueError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot transition from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class MissingFeedbackError(ValueError):
    """Raised when a reject/answer transition arrives without feedback text."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__("feedback is required when rejecting or answering")
        self.current = current
        self.requested = requested


class TaskNotFoundError(LookupError):
    """Raised for operations addressing an unknown task identifier."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


def is_valid_transition(current: str, requested: str) -> bool:
    return (current, requested) in VALID_TRANSITIONS


def check_transition(current: str, requested: str, feedback: Optional[str] = None) -> None:
    """Validate a transition request without touching any task.

    Raises:
        InvalidTransitionError: If ``current -> requested`` is not in the table.
        MissingFeedbackError: If the transition needs feedback and none was given.
    """
    if not is_valid_transition(current, requested):
        raise InvalidTransitionError(current, requested)
    if (current, requested) in _FEEDBACK_REQUIRED and not (feedback or "").strip():
        raise MissingFeedbackError(current, requested)


def apply_user_transition(task: Task, requested: str, feedback: Optional[str] = None) -> Task:
    """Apply a user decision (approve, reject, answer) to ``task`` in place.

    Supervisor-owned transitions (dispatch and worker completion) are rejected
    here even though they are in the table, so API callers cannot forge them.
    The task is only mutated after every check has passed.
    """
    current = task.status
    if (current, requested) not in USER_TRANSITIONS:
        raise InvalidTransitionError(current, requested)
    check_transition(current, requested, feedback)
    if requested == "pending":
        text = (feedback or "").strip()
        task.feedback = text
        task.history.append(HistoryEntry(role="user", content=text))
        task.question = None
    task.status = cast(TaskStatus, requested)
    task.touch()
    return task
