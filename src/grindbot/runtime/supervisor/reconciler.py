"""Fold a finished worker invocation back into its task."""

from __future__ import annotations

import logging
import re
from typing import Optional

from ..domain.models import HistoryEntry, Task
from .sanitize import MAX_OUTPUT_CHARS, sanitize, truncate_tail

logger = logging.getLogger(__name__)

NO_OUTPUT_PLACEHOLDER = "(no output)"
UNSUPERVISED_PLACEHOLDER = "(session ended while unsupervised; no output was recovered)"

QUESTION_RE = re.compile(r"^\[QUESTION\]:[ \t]*(\S.*)$", re.MULTILINE)


def clean_output(raw: Optional[str], max_len: int = MAX_OUTPUT_CHARS) -> str:
    """Sanitize, trim and tail-bound raw worker output."""
    if raw is None:
        return NO_OUTPUT_PLACEHOLDER
    text = truncate_tail(sanitize(raw).strip(), max_len)
    return text or NO_OUTPUT_PLACEHOLDER


def extract_question(output: str) -> Optional[str]:
    match = QUESTION_RE.search(output)
    if not match:
        return None
    return match.group(1).strip() or None


def reconcile(task: Task, raw_output: Optional[str]) -> bool:
    """Classify a finished run and record it on ``task``.

    Returns ``False`` without touching the task unless it is ``running``, so a
    late exit callback racing a tick cannot reconcile the same run twice.
    """
    if task.status != "running":
        return False
    output = clean_output(raw_output)
    question = extract_question(output)
    if question:
        task.status = "question"
        task.question = question
    else:
        task.status = "review"
        task.question = None
    task.output = output
    task.history.append(HistoryEntry(role="worker", content=output))
    task.pid = None
    task.feedback = None
    task.touch()
    logger.info("Task %s finished -> %s", task.id, task.status)
    return True


def fail_dispatch(task: Task, message: str) -> None:
    """Record a worker that could not be started as a completed run awaiting review."""
    output = truncate_tail(sanitize(message).strip() or NO_OUTPUT_PLACEHOLDER)
    task.status = "review"
    task.question = None
    task.output = output
    task.history.append(HistoryEntry(role="worker", content=output))
    task.pid = None
    task.feedback = None
    task.touch()
    logger.warning("Task %s could not be dispatched: %s", task.id, output)
