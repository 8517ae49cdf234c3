"""Supervisor service: the operations the API layer calls."""

from __future__ import annotations

import logging
import math
from typing import Any, Optional, Sequence

from ..domain.lifecycle import TaskNotFoundError, apply_user_transition
from ..domain.models import Config, Task
from ..events.bus import EventBus
from ..storage.container import Container
from .handles import BackendName, SessionHandle, WorkerBackend, create_backend
from .registry import HandleRegistry
from .sanitize import sanitize, truncate_tail
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class SessionUnavailableError(RuntimeError):
    """Raised when a task has no live tmux session to attach to."""


def _find(tasks: list[Task], task_id: str) -> Task:
    for task in tasks:
        if task.id == task_id:
            return task
    raise TaskNotFoundError(task_id)


class SupervisorService:
    """Own the scheduler, its handle registry and every task mutation."""

    def __init__(
        self,
        container: Container,
        bus: EventBus,
        *,
        backend: WorkerBackend | None = None,
        backend_name: Optional[BackendName] = None,
    ) -> None:
        """Initialize the SupervisorService.

        Args:
            container (Container): Repositories for tasks and config.
            bus (EventBus): Sink for task-change notifications.
            backend (WorkerBackend | None): Worker backend to use; detected
                from the host (tmux or not) when omitted.
            backend_name (Optional[BackendName]): Force ``"process"`` or
                ``"session"`` instead of detecting.
        """
        self.container = container
        self.bus = bus
        self.backend = backend or create_backend(
            backend_name,
            self._worker_command,
            scratch_dir=container.state_root / "sessions",
        )
        self.registry = HandleRegistry()
        self.scheduler = Scheduler(
            repository=container.tasks,
            backend=self.backend,
            registry=self.registry,
            work_dir_resolver=container.resolve_working_directory,
            interval_provider=lambda: container.config.load().polling_interval,
            on_change=self._publish,
        )

    def _worker_command(self) -> list[str]:
        return self.container.config.load().worker_command

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def snapshot_event(self) -> dict[str, Any]:
        """Full task list in the shape pushed to UI clients."""
        return {
            "channel": "tasks",
            "type": "tasks.changed",
            "project_id": self.container.project_id,
            "payload": {"tasks": [task.to_dict() for task in self.container.tasks.load_all()]},
        }

    def _publish(self, tasks: list[Task]) -> None:
        self.bus.emit(
            channel="tasks",
            event_type="tasks.changed",
            entity_id=self.container.project_id,
            payload={"tasks": [task.to_dict() for task in tasks]},
        )

    def _save(self, tasks: list[Task]) -> None:
        self.container.tasks.save_all(tasks)
        self._publish(tasks)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def list_tasks(self) -> list[Task]:
        return self.container.tasks.load_all()

    def get_task(self, task_id: str) -> Task:
        task = self.container.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def create_task(self, title: str, description: str = "") -> Task:
        """Add a new ``pending`` task; the next tick dispatches it.

        Raises:
            ValueError: If ``title`` is blank.
        """
        if not (title or "").strip():
            raise ValueError("title is required")
        task = Task(title=title.strip(), description=description or "")

        def _create() -> Task:
            tasks = self.container.tasks.load_all()
            tasks.append(task)
            self._save(tasks)
            return task

        created = self.scheduler.run_serialized(_create)
        logger.info("Created task %s", created.id)
        return created

    def update_task(self, task_id: str, *, title: Optional[str] = None, description: Optional[str] = None) -> Task:
        """Edit a task's title and/or description; status is untouched."""
        if title is not None and not title.strip():
            raise ValueError("title cannot be empty")

        def _update() -> Task:
            tasks = self.container.tasks.load_all()
            task = _find(tasks, task_id)
            if title is not None:
                task.title = title.strip()
            if description is not None:
                task.description = description
            task.touch()
            self._save(tasks)
            return task

        return self.scheduler.run_serialized(_update)

    def request_transition(self, task_id: str, status: str, feedback: Optional[str] = None) -> Task:
        """Apply a user decision: approve (``completed``), reject or answer (``pending``).

        Raises:
            TaskNotFoundError: If the task does not exist.
            InvalidTransitionError: If the move is not a user transition from the current state.
            MissingFeedbackError: If rejecting or answering without feedback.
        """

        def _transition() -> Task:
            tasks = self.container.tasks.load_all()
            task = _find(tasks, task_id)
            previous = task.status
            apply_user_transition(task, status, feedback)
            self._save(tasks)
            logger.info("Task %s: %s -> %s", task.id, previous, task.status)
            return task

        return self.scheduler.run_serialized(_transition)

    def delete_task(self, task_id: str) -> None:
        """Remove a task, tearing down its worker first."""

        def _delete() -> None:
            tasks = self.container.tasks.load_all()
            _find(tasks, task_id)
            if self.scheduler.release(task_id):
                logger.info("Terminated worker for deleted task %s", task_id)
            elif self.backend.name == "session":
                # Not dispatched by this supervisor; its session may still be live.
                orphan = self.backend.reattach(task_id)
                if orphan is not None:
                    orphan.terminate()
                    logger.info("Terminated unsupervised session for deleted task %s", task_id)
            self._save([task for task in tasks if task.id != task_id])

        self.scheduler.run_serialized(_delete)

    # ------------------------------------------------------------------
    # Live output
    # ------------------------------------------------------------------

    def peek_output(self, task_id: str) -> str:
        """Current output of a task.

        A running tmux-backed task returns its cleaned, bounded log so far;
        everything else returns the stored ``output``.
        """
        task = self.get_task(task_id)
        if task.status == "running":
            handle = self.registry.get(task_id)
            if isinstance(handle, SessionHandle):
                return truncate_tail(sanitize(handle.capture_output() or ""))
        return task.output or ""

    def attach_command(self, task_id: str) -> list[str]:
        """Command a user can run to watch a running task's tmux session.

        Raises:
            SessionUnavailableError: If the task is not running in a live session.
        """
        task = self.get_task(task_id)
        if task.status != "running":
            raise SessionUnavailableError("task is not running")
        handle = self.registry.get(task_id)
        if not isinstance(handle, SessionHandle) or not handle.is_alive(refresh=True):
            raise SessionUnavailableError("tmux session not found")
        return handle.attach_command()

    # ------------------------------------------------------------------
    # Scheduler and config
    # ------------------------------------------------------------------

    def start_scheduler(self) -> None:
        self.scheduler.start()
        self._publish_scheduler_state()

    def stop_scheduler(self) -> None:
        self.scheduler.stop()
        self._publish_scheduler_state()

    def scheduler_status(self) -> bool:
        return self.scheduler.is_running

    def _publish_scheduler_state(self) -> None:
        self.bus.emit(
            channel="scheduler",
            event_type="scheduler.changed",
            entity_id=self.container.project_id,
            payload={"active": self.scheduler.is_running, "backend": self.backend.name},
        )

    def tick(self) -> bool:
        return self.scheduler.tick()

    def get_config(self) -> Config:
        return self.container.config.load()

    def update_config(
        self,
        *,
        polling_interval: Optional[float] = None,
        working_directory: Optional[str] = None,
        worker_command: Optional[Sequence[str]] = None,
    ) -> Config:
        """Apply a partial config update, restarting the timer on interval changes.

        Raises:
            ValueError: If a supplied value is invalid.
        """
        config = self.container.config.load()
        interval_changed = False
        if polling_interval is not None:
            interval = float(polling_interval)
            if not math.isfinite(interval) or interval <= 0:
                raise ValueError("pollingInterval must be a finite number greater than 0")
            interval_changed = interval != config.polling_interval
            config.polling_interval = interval
        if working_directory is not None:
            if not working_directory.strip():
                raise ValueError("workingDirectory cannot be empty")
            config.working_directory = working_directory
        if worker_command is not None:
            command = [str(part) for part in worker_command if str(part).strip()]
            if not command:
                raise ValueError("workerCommand cannot be empty")
            config.worker_command = command
        self.container.config.save(config)
        if interval_changed and self.scheduler.is_running:
            self.scheduler.restart()
        return config

    def shutdown(self, *, kill_sessions: bool = False) -> None:
        self.scheduler.shutdown(kill_sessions=kill_sessions)
