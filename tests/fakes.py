"""In-memory worker handles and backends for supervisor tests."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from grindbot.runtime.supervisor.handles import BackendName, DispatchError, ExitCallback, WorkerBackend


class FakeHandle:
    """Worker handle whose lifetime the test controls."""

    def __init__(
        self,
        task_id: str,
        backend: BackendName = "process",
        on_exit: Optional[ExitCallback] = None,
        *,
        alive: bool = True,
        output: Optional[str] = None,
        fail_start: Optional[str] = None,
    ) -> None:
        self.task_id = task_id
        self.backend = backend
        self._on_exit = on_exit
        self.alive = alive
        self.output = output
        self.fail_start = fail_start
        self.prompt: Optional[str] = None
        self.work_dir: Optional[Path] = None
        self.terminated = False
        self.detached = False

    @property
    def pid(self) -> Optional[int]:
        return 4242 if self.backend == "process" and self.prompt is not None else None

    def start(self, prompt: str, work_dir: Path) -> None:
        if self.fail_start:
            raise DispatchError(self.fail_start)
        self.prompt = prompt
        self.work_dir = work_dir

    def is_alive(self) -> bool:
        return self.alive

    def capture_output(self) -> Optional[str]:
        return self.output

    def terminate(self) -> None:
        self.terminated = True
        self.alive = False

    def detach(self) -> None:
        self.detached = True

    def finish(self, output: Optional[str], *, notify: bool = True) -> None:
        """Simulate the worker exiting, optionally firing the exit callback."""
        self.output = output
        self.alive = False
        if notify and self._on_exit is not None:
            self._on_exit(self.task_id)


class FakeBackend(WorkerBackend):
    """Backend that hands out ``FakeHandle`` objects and records them."""

    def __init__(self, name: BackendName = "process") -> None:
        super().__init__(lambda: ["fake-worker"])
        self.name = name
        self.handles: dict[str, FakeHandle] = {}
        self.reattachable: dict[str, FakeHandle] = {}
        self.fail_start: dict[str, str] = {}
        self.explode: set[str] = set()

    def create(self, task_id: str, on_exit: Optional[ExitCallback] = None) -> FakeHandle:
        if task_id in self.explode:
            raise RuntimeError(f"backend blew up for {task_id}")
        handle = FakeHandle(task_id, self.name, on_exit, fail_start=self.fail_start.get(task_id))
        self.handles[task_id] = handle
        return handle

    def reattach(self, task_id: str) -> Optional[FakeHandle]:
        if self.name != "session":
            return None
        return self.reattachable.get(task_id)
