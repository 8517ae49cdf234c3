"""In-memory map of task ids to their live worker handles."""

from __future__ import annotations

import threading
from typing import Optional

from .handles import WorkerHandle


class HandleRegistry:
    """Task id -> live handle. Never persisted; empty after every restart."""
    def __init__(self) -> None:
        self._handles: dict[str, WorkerHandle] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str, handle: WorkerHandle) -> None:
        with self._lock:
            self._handles[task_id] = handle

    def get(self, task_id: str) -> Optional[WorkerHandle]:
        with self._lock:
            return self._handles.get(task_id)

    def remove(self, task_id: str) -> Optional[WorkerHandle]:
        with self._lock:
            return self._handles.pop(task_id, None)

    def drain(self) -> list[tuple[str, WorkerHandle]]:
        """Remove and return every entry."""
        with self._lock:
            items = list(self._handles.items())
            self._handles.clear()
        return items

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
