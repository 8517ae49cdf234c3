"""Poll loop that dispatches pending tasks and reconciles finished workers."""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from ..domain.models import Task
from ..storage.interfaces import TaskRepository
from .handles import DispatchError, WorkerBackend, WorkerHandle
from .prompts import build_prompt
from .reconciler import UNSUPERVISED_PLACEHOLDER, fail_dispatch, reconcile
from .registry import HandleRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")
ChangeSink = Callable[[list[Task]], None]


class Scheduler:
    """Drive ticks on a fixed interval over one serialized execution queue.

    Ticks, worker exit callbacks and API mutations all run on a single worker
    thread, so the task store is only ever read-modify-written by one of them
    at a time. The timer thread just enqueues ticks.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        backend: WorkerBackend,
        work_dir_resolver: Callable[[], Path],
        interval_provider: Callable[[], float],
        on_change: Optional[ChangeSink] = None,
        registry: Optional[HandleRegistry] = None,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.registry = registry or HandleRegistry()
        self._work_dir_resolver = work_dir_resolver
        self._interval_provider = interval_provider
        self._on_change = on_change
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="grindbot-supervisor")
        self._local = threading.local()
        self._state_lock = threading.RLock()
        self._running = False
        self._interval: Optional[float] = None
        self._timer_stop = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._queued_tick: Optional[Future[bool]] = None
        self._closing = False

    # ------------------------------------------------------------------
    # Serialized execution
    # ------------------------------------------------------------------

    def _enter(self, fn: Callable[..., T], args: tuple[Any, ...], kwargs: dict[str, Any]) -> T:
        self._local.active = True
        try:
            return fn(*args, **kwargs)
        finally:
            self._local.active = False

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """Enqueue ``fn`` on the serialized queue without waiting for it."""
        return self._executor.submit(self._enter, fn, args, kwargs)

    def run_serialized(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` on the serialized queue and wait for its result.

        Calls made from the queue itself run inline instead of deadlocking.
        """
        if getattr(self._local, "active", False):
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result()

    def drain(self) -> None:
        """Wait until everything queued so far has run."""
        self.run_serialized(lambda: None)

    # ------------------------------------------------------------------
    # Timer control
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def interval(self) -> Optional[float]:
        return self._interval

    def start(self) -> None:
        """Tick immediately, then once per configured interval. No-op when running."""
        with self._state_lock:
            if self._running or self._closing:
                return
            interval = float(self._interval_provider())
            if not math.isfinite(interval) or interval <= 0:
                raise ValueError(f"Polling interval must be a finite positive number, got {interval}")
            self._running = True
            self._interval = interval
            stop = threading.Event()
            self._timer_stop = stop
            self._timer_thread = threading.Thread(
                target=self._timer_loop,
                args=(stop, interval),
                daemon=True,
                name="grindbot-scheduler",
            )
            self._timer_thread.start()
        logger.info("Scheduler started (interval=%ss, backend=%s)", interval, self.backend.name)

    def stop(self) -> None:
        """Cancel the timer. Ticks already queued still run. Idempotent."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._timer_stop.set()
            thread = self._timer_thread
            self._timer_thread = None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        logger.info("Scheduler stopped")

    def restart(self) -> None:
        """Pick up a new interval immediately when the scheduler is active."""
        with self._state_lock:
            if not self._running:
                return
            self.stop()
            self.start()

    def _timer_loop(self, stop: threading.Event, interval: float) -> None:
        self._enqueue_tick()
        while not stop.wait(interval):
            self._enqueue_tick()

    def _enqueue_tick(self) -> None:
        # Coalesce: a tick still waiting in the queue covers this one too.
        queued = self._queued_tick
        if queued is not None and not queued.running() and not queued.done():
            return
        try:
            future = self.submit(self._tick)
        except RuntimeError:
            logger.debug("Executor closed; dropping tick", exc_info=True)
            return
        future.add_done_callback(self._log_tick_failure)
        self._queued_tick = future

    @staticmethod
    def _log_tick_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Scheduled tick failed", exc_info=exc)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """Run one tick synchronously and report whether any task changed."""
        return self.run_serialized(self._tick)

    def _tick(self) -> bool:
        tasks = self.repository.load_all()
        changed = False
        for task in tasks:
            try:
                if task.status == "pending":
                    self._dispatch(task)
                    changed = True
                elif task.status == "running":
                    changed = self._check_running(task) or changed
            except Exception:
                logger.exception("Failed to process task %s during tick", task.id)
        if changed:
            self._persist(tasks)
        return changed

    def _dispatch(self, task: Task) -> None:
        work_dir = self._work_dir_resolver()
        if not work_dir.is_dir():
            fail_dispatch(task, f"Working directory does not exist: {work_dir}")
            return
        stale = self.registry.remove(task.id)
        if stale is not None:
            # A dispatch whose status never reached the store; stop it first.
            logger.warning("Task %s already had a worker; terminating it before redispatch", task.id)
            stale.terminate()
        handle = self.backend.create(task.id, on_exit=self._on_handle_exit)
        try:
            handle.start(build_prompt(task), work_dir)
        except DispatchError as exc:
            fail_dispatch(task, str(exc))
            return
        self.registry.register(task.id, handle)
        task.status = "running"
        task.pid = handle.pid
        task.touch()
        logger.info("Dispatched task %s (%s backend)", task.id, handle.backend)

    def _check_running(self, task: Task) -> bool:
        handle = self.registry.get(task.id)
        if handle is None:
            return self._recover(task)
        if handle.is_alive():
            return False
        self.registry.remove(task.id)
        return self._finish(task, handle, handle.capture_output())

    def _recover(self, task: Task) -> bool:
        """Handle a ``running`` task that this process never dispatched."""
        handle = self.backend.reattach(task.id)
        if handle is None:
            # Child processes die with (or are orphaned by) the old supervisor;
            # run the task again from scratch.
            task.status = "pending"
            task.pid = None
            task.touch()
            logger.info("Task %s was running under a previous supervisor; re-queued", task.id)
            return True
        if handle.is_alive():
            self.registry.register(task.id, handle)
            logger.info("Reattached to running worker for task %s", task.id)
            return False
        output = handle.capture_output()
        if output is None:
            output = UNSUPERVISED_PLACEHOLDER
        logger.info("Worker for task %s finished while unsupervised", task.id)
        return self._finish(task, handle, output)

    def _finish(self, task: Task, handle: WorkerHandle, output: Optional[str]) -> bool:
        changed = reconcile(task, output)
        try:
            handle.terminate()
        except Exception:
            logger.debug("Failed to release handle for task %s", task.id, exc_info=True)
        return changed

    def _persist(self, tasks: list[Task]) -> None:
        self.repository.save_all(tasks)
        if self._on_change is not None:
            try:
                self._on_change(tasks)
            except Exception:
                logger.exception("Change notification failed")

    # ------------------------------------------------------------------
    # Exit callbacks
    # ------------------------------------------------------------------

    def _on_handle_exit(self, task_id: str) -> None:
        if self._closing:
            return
        try:
            self.submit(self._reconcile_exited, task_id)
        except RuntimeError:
            logger.debug("Executor closed; exit of task %s left to the next start", task_id, exc_info=True)

    def _reconcile_exited(self, task_id: str) -> bool:
        handle = self.registry.get(task_id)
        if handle is None:
            # Already reconciled by a tick, or the task was deleted.
            return False
        if handle.is_alive():
            # The exited worker was replaced by a redispatch.
            return False
        self.registry.remove(task_id)
        tasks = self.repository.load_all()
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            return False
        changed = self._finish(task, handle, handle.capture_output())
        if changed:
            self._persist(tasks)
        return changed

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def release(self, task_id: str) -> bool:
        """Terminate and unregister the handle for ``task_id``, if there is one."""
        handle = self.registry.remove(task_id)
        if handle is None:
            return False
        handle.terminate()
        return True

    def shutdown(self, *, kill_sessions: bool = False) -> None:
        """Stop ticking, let go of every handle, and close the queue.

        Sessions are left running unless ``kill_sessions`` so the next
        supervisor can reattach to them; child processes are always killed.
        """
        self.stop()
        self._closing = True

        def _release_all() -> None:
            for task_id, handle in self.registry.drain():
                try:
                    if kill_sessions:
                        handle.terminate()
                    else:
                        handle.detach()
                except Exception:
                    logger.debug("Failed to release handle for task %s", task_id, exc_info=True)

        try:
            self.run_serialized(_release_all)
        except RuntimeError:
            logger.debug("Executor already closed during shutdown", exc_info=True)
        self._executor.shutdown(wait=True)
