"""Domain model dataclasses and normalization helpers."""

from __future__ import annotations

import math
import shlex
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional, cast


TaskStatus = Literal["pending", "running", "review", "question", "completed"]
HistoryRole = Literal["worker", "user"]

TASK_RECORD_VERSION = 1
DEFAULT_POLLING_INTERVAL = 30.0
DEFAULT_WORKING_DIRECTORY = "."
DEFAULT_WORKER_COMMAND = ("claude",)

_VALID_TASK_STATUSES = {"pending", "running", "review", "question", "completed"}
# Records written before the worker role was generalized used the CLI's name.
_ROLE_ALIASES = {"claude": "worker", "assistant": "worker"}


def now_iso() -> str:
    """Get the current UTC timestamp formatted as ISO-8601 text."""
    return datetime.now(timezone.utc).isoformat()


def _short_id() -> str:
    return uuid.uuid4().hex[:8]


def _optional_text(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class HistoryEntry:
    """One turn of the worker/user transcript kept on a task."""
    role: HistoryRole = "worker"
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        raw_role = str(data.get("role") or "worker")
        role = _ROLE_ALIASES.get(raw_role, raw_role)
        if role not in {"worker", "user"}:
            role = "worker"
        return cls(role=cast(HistoryRole, role), content=str(data.get("content") or ""))


@dataclass
class Task:
    """Unit of work handed to the worker CLI, together with its result."""
    id: str = field(default_factory=_short_id)
    title: str = ""
    description: str = ""
    status: TaskStatus = "pending"
    output: Optional[str] = None
    question: Optional[str] = None
    feedback: Optional[str] = None
    history: list[HistoryEntry] = field(default_factory=list)
    pid: Optional[int] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    version: int = TASK_RECORD_VERSION

    def touch(self) -> None:
        self.updated_at = now_iso()

    def to_dict(self) -> dict[str, Any]:
        """Serialize a task to a dictionary payload."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "output": self.output,
            "question": self.question,
            "feedback": self.feedback,
            "history": [entry.to_dict() for entry in self.history],
            "pid": self.pid,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize and normalize a task from persisted data.

        Accepts both the snake_case keys written by this package and the
        camelCase timestamps of older ``tasks.json`` exports.
        """
        status = str(data.get("status") or "pending")
        if status not in _VALID_TASK_STATUSES:
            status = "pending"
        raw_pid = data.get("pid")
        try:
            pid = int(raw_pid) if raw_pid is not None else None
        except (TypeError, ValueError):
            pid = None
        history = [HistoryEntry.from_dict(item) for item in list(data.get("history") or []) if isinstance(item, dict)]
        created_at = data.get("created_at") or data.get("createdAt") or now_iso()
        updated_at = data.get("updated_at") or data.get("updatedAt") or created_at
        return cls(
            id=str(data.get("id") or _short_id()),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            status=cast(TaskStatus, status),
            output=_optional_text(data.get("output")),
            question=(str(data.get("question")) if data.get("question") else None),
            feedback=(str(data.get("feedback")) if data.get("feedback") else None),
            history=history,
            pid=pid,
            created_at=str(created_at),
            updated_at=str(updated_at),
            version=TASK_RECORD_VERSION,
        )


@dataclass
class Config:
    """Process-wide runtime settings persisted next to the task store."""
    polling_interval: float = DEFAULT_POLLING_INTERVAL
    working_directory: str = DEFAULT_WORKING_DIRECTORY
    worker_command: list[str] = field(default_factory=lambda: list(DEFAULT_WORKER_COMMAND))

    def to_dict(self) -> dict[str, Any]:
        return {
            "polling_interval": self.polling_interval,
            "working_directory": self.working_directory,
            "worker_command": list(self.worker_command),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Coerce a raw config mapping, falling back to defaults for bad values."""
        raw_interval = data.get("polling_interval", data.get("pollingInterval"))
        try:
            interval = float(raw_interval) if raw_interval is not None else DEFAULT_POLLING_INTERVAL
        except (TypeError, ValueError):
            interval = DEFAULT_POLLING_INTERVAL
        if not math.isfinite(interval) or interval <= 0:
            interval = DEFAULT_POLLING_INTERVAL
        working_directory = data.get("working_directory", data.get("workingDirectory"))
        raw_command = data.get("worker_command")
        if isinstance(raw_command, str):
            command = shlex.split(raw_command)
        elif isinstance(raw_command, list):
            command = [str(part) for part in raw_command if str(part).strip()]
        else:
            command = []
        return cls(
            polling_interval=interval,
            working_directory=str(working_directory or DEFAULT_WORKING_DIRECTORY),
            worker_command=command or list(DEFAULT_WORKER_COMMAND),
        )
