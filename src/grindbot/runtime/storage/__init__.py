"""Storage exports for the supervisor runtime."""

from .container import Container
from .file_repos import FileConfigRepository, FileTaskRepository
from .interfaces import ConfigRepository, TaskRepository

__all__ = [
    "Container",
    "ConfigRepository",
    "TaskRepository",
    "FileConfigRepository",
    "FileTaskRepository",
]
