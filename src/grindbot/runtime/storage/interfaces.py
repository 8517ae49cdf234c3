"""Repository interfaces for runtime persistence abstractions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..domain.models import Config, Task


class TaskRepository(ABC):
    """Persistence contract for the task set.

    The supervisor works on whole snapshots: it loads every task, mutates the
    ones a tick touches, and writes the set back in one batch.
    """
    @abstractmethod
    def load_all(self) -> List[Task]:
        """Load every persisted task, in insertion order.

        Returns:
            List[Task]: All task records currently stored for the project.
        """
        raise NotImplementedError

    @abstractmethod
    def save_all(self, tasks: List[Task]) -> None:
        """Replace the persisted task set with ``tasks``.

        Args:
            tasks (List[Task]): Full task set to persist.
        """
        raise NotImplementedError

    def get(self, task_id: str) -> Optional[Task]:
        """Fetch a task by id, or ``None`` when no record exists.

        Args:
            task_id (str): Identifier for the target task.

        Returns:
            Optional[Task]: Requested value when available; otherwise `None`.
        """
        for task in self.load_all():
            if task.id == task_id:
                return task
        return None


class ConfigRepository(ABC):
    """Persistence contract for runtime configuration."""
    @abstractmethod
    def load(self) -> Config:
        """Load configuration, filling defaults for missing values."""
        raise NotImplementedError

    @abstractmethod
    def save(self, config: Config) -> Config:
        """Persist configuration and return what was saved."""
        raise NotImplementedError
