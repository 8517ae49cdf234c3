from __future__ import annotations

import itertools

import pytest

from grindbot.runtime.domain.lifecycle import (
    TASK_STATES,
    VALID_TRANSITIONS,
    InvalidTransitionError,
    MissingFeedbackError,
    apply_user_transition,
    check_transition,
    is_valid_transition,
)
from grindbot.runtime.domain.models import HistoryEntry, Task


EXPECTED = {
    ("pending", "running"),
    ("running", "review"),
    ("running", "question"),
    ("review", "completed"),
    ("review", "pending"),
    ("question", "pending"),
}


def test_transition_table_is_exact() -> None:
    assert set(VALID_TRANSITIONS) == EXPECTED
    for current, requested in itertools.product(TASK_STATES, repeat=2):
        assert is_valid_transition(current, requested) == ((current, requested) in EXPECTED)


def test_completed_is_terminal() -> None:
    for requested in TASK_STATES:
        with pytest.raises(InvalidTransitionError):
            check_transition("completed", requested, "feedback")


def test_reject_and_answer_require_feedback() -> None:
    for current in ("review", "question"):
        for feedback in (None, "", "   "):
            with pytest.raises(MissingFeedbackError):
                check_transition(current, "pending", feedback)
        check_transition(current, "pending", "try again")


def test_invalid_transition_message_names_both_states() -> None:
    with pytest.raises(InvalidTransitionError) as excinfo:
        check_transition("pending", "completed")
    assert excinfo.value.current == "pending"
    assert excinfo.value.requested == "completed"
    assert "pending" in str(excinfo.value) and "completed" in str(excinfo.value)


def test_approve_moves_review_to_completed() -> None:
    task = Task(title="t", status="review", output="done.")
    apply_user_transition(task, "completed")
    assert task.status == "completed"
    assert task.history == []


def test_reject_records_feedback_in_history() -> None:
    task = Task(title="t", status="review", history=[HistoryEntry(role="worker", content="attempt 1")])
    apply_user_transition(task, "pending", "  use the staging db  ")
    assert task.status == "pending"
    assert task.feedback == "use the staging db"
    assert [entry.role for entry in task.history] == ["worker", "user"]
    assert task.history[-1].content == "use the staging db"


def test_answer_clears_question() -> None:
    task = Task(title="t", status="question", question="which env?")
    apply_user_transition(task, "pending", "prod")
    assert task.status == "pending"
    assert task.question is None


def test_supervisor_transitions_cannot_be_requested_by_users() -> None:
    for current, requested in [("pending", "running"), ("running", "review"), ("running", "question")]:
        task = Task(title="t", status=current)
        with pytest.raises(InvalidTransitionError):
            apply_user_transition(task, requested)
        assert task.status == current


def test_failed_transition_does_not_mutate_task() -> None:
    task = Task(title="t", status="review")
    before = task.to_dict()
    with pytest.raises(MissingFeedbackError):
        apply_user_transition(task, "pending", "")
    assert task.to_dict() == before
