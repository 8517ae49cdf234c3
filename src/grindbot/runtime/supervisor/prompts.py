"""Prompt assembly for worker invocations."""

from __future__ import annotations

from ..domain.models import Task

QUESTION_MARKER = "[QUESTION]:"

_QUESTION_INSTRUCTION = (
    "IMPORTANT: If you need clarification or have a question for the user, start a line with "
    f'"{QUESTION_MARKER}" followed by your question. Otherwise, complete the task.'
)

_ROLE_LABELS = {"worker": "Assistant", "user": "User"}


def build_prompt(task: Task) -> str:
    """Render the full prompt for one dispatch of ``task``.

    Later rounds carry the whole worker/user transcript so the worker can pick
    up after a rejection or an answered question.
    """
    parts = [f"Task: {task.title}", f"Description: {task.description}"]

    if task.history:
        transcript = ["--- Previous conversation ---"]
        for entry in task.history:
            transcript.append(f"{_ROLE_LABELS.get(entry.role, 'User')}: {entry.content}")
        transcript.append("--- End previous conversation ---")
        parts.append("\n\n".join(transcript))

    if task.feedback:
        parts.append(f"User feedback on previous attempt: {task.feedback}")

    parts.append(_QUESTION_INSTRUCTION)
    return "\n\n".join(parts)
