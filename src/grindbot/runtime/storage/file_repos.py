"""File-backed repository implementations for runtime state."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, List

import yaml

from ...io_utils import FileLock
from ..domain.models import Config, Task
from .interfaces import ConfigRepository, TaskRepository


STORE_VERSION = 1


def _atomic_yaml_dump(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def _yaml_load(path: Path) -> Any:
    if not path.exists():
        return None
    return yaml.safe_load(path.read_text(encoding="utf-8"))


class FileTaskRepository(TaskRepository):
    """YAML-backed task repository with coarse file/process locking."""
    def __init__(self, path: Path, lock_path: Path) -> None:
        """Initialize the FileTaskRepository.

        Args:
            path (Path): YAML file path for task records.
            lock_path (Path): Lock file path used while reading or writing tasks.
        """
        self._path = path
        self._lock = FileLock(lock_path)
        self._thread_lock = threading.RLock()

    def load_all(self) -> List[Task]:
        """Load all persisted tasks.

        Unreadable or malformed files load as an empty set rather than failing
        the caller.

        Returns:
            List[Task]: All persisted task records.
        """
        with self._thread_lock:
            with self._lock:
                try:
                    raw = _yaml_load(self._path)
                except (OSError, yaml.YAMLError):
                    return []
        if isinstance(raw, list):
            items = raw
        elif isinstance(raw, dict):
            items = raw.get("tasks", [])
        else:
            return []
        if not isinstance(items, list):
            return []
        return [Task.from_dict(item) for item in items if isinstance(item, dict)]

    def save_all(self, tasks: List[Task]) -> None:
        """Persist the full task set atomically.

        Args:
            tasks (List[Task]): Task records to write, in order.
        """
        payload = {"version": STORE_VERSION, "tasks": [task.to_dict() for task in tasks]}
        with self._thread_lock:
            with self._lock:
                _atomic_yaml_dump(self._path, payload)


class FileConfigRepository(ConfigRepository):
    """YAML-backed repository for runtime configuration."""
    def __init__(self, path: Path, lock_path: Path) -> None:
        """Initialize the FileConfigRepository.

        Args:
            path (Path): YAML file path for runtime configuration.
            lock_path (Path): Lock file path used while reading or writing config.
        """
        self._path = path
        self._lock = FileLock(lock_path)
        self._thread_lock = threading.RLock()

    def load_raw(self) -> dict[str, Any]:
        with self._thread_lock:
            with self._lock:
                try:
                    raw = _yaml_load(self._path)
                except (OSError, yaml.YAMLError):
                    return {}
        return raw if isinstance(raw, dict) else {}

    def load(self) -> Config:
        """Load configuration from disk.

        Returns:
            Config: Stored configuration, defaults where values are missing or invalid.
        """
        return Config.from_dict(self.load_raw())

    def save(self, config: Config) -> Config:
        """Persist configuration to disk atomically.

        Args:
            config (Config): Configuration to persist.

        Returns:
            Config: Saved configuration.
        """
        payload = {"version": STORE_VERSION, **config.to_dict()}
        with self._thread_lock:
            with self._lock:
                _atomic_yaml_dump(self._path, payload)
        return config
