"""Worker handles: one in-flight worker invocation, behind either backend.

``DirectProcessHandle`` runs the worker as a child process and learns about
completion from the process exit. ``SessionHandle`` runs it detached inside a
tmux session that ends when the worker ends, and infers completion by polling
``tmux has-session``. Sessions outlive the supervisor, so a restarted
supervisor can reattach to them; child processes cannot be reattached.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Callable, Literal, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

BackendName = Literal["process", "session"]
ExitCallback = Callable[[str], None]
CommandProvider = Callable[[], Sequence[str]]

SESSION_PREFIX = "grindbot-"
LIVENESS_POLL_SECONDS = 3.0
TMUX_TIMEOUT_SECONDS = 10.0
SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"
# Set by the worker CLI in its own environment; a nested invocation that sees
# it refuses to start.
NESTED_GUARD_ENV = "CLAUDECODE"
_READ_CHUNK_BYTES = 8192


class DispatchError(RuntimeError):
    """The worker could not be started at all."""


class SessionCreationError(DispatchError):
    """tmux refused to create or wire up the worker session."""


class WorkerHandle(Protocol):
    """Capabilities every backend offers for one worker invocation."""
    task_id: str
    backend: BackendName

    @property
    def pid(self) -> Optional[int]:
        ...

    def start(self, prompt: str, work_dir: Path) -> None:
        ...

    def is_alive(self) -> bool:
        ...

    def capture_output(self) -> Optional[str]:
        ...

    def terminate(self) -> None:
        ...

    def detach(self) -> None:
        """Let go of the worker when the supervisor exits."""
        ...


def worker_env() -> dict[str, str]:
    env = dict(os.environ)
    env.pop(NESTED_GUARD_ENV, None)
    return env


# ---------------------------------------------------------------------------
# Direct child process
# ---------------------------------------------------------------------------


class DirectProcessHandle:
    """Worker running as a child process with stdout/stderr buffered in memory."""

    backend: BackendName = "process"

    def __init__(self, task_id: str, command: Sequence[str], on_exit: Optional[ExitCallback] = None) -> None:
        self.task_id = task_id
        self._command = list(command)
        self._on_exit = on_exit
        self._proc: Optional[subprocess.Popen[bytes]] = None
        self._stdout: list[bytes] = []
        self._stderr: list[bytes] = []
        self._buffer_lock = threading.Lock()
        self._done = threading.Event()
        self._exit_code: Optional[int] = None

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    def start(self, prompt: str, work_dir: Path) -> None:
        """Spawn the worker non-interactively with the prompt as one argument.

        Raises:
            DispatchError: If the worker binary is missing or cannot be executed.
        """
        argv = [*self._command, "-p", prompt, SKIP_PERMISSIONS_FLAG]
        try:
            self._proc = subprocess.Popen(
                argv,
                cwd=str(work_dir),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=worker_env(),
            )
        except (OSError, ValueError) as exc:
            name = self._command[0] if self._command else "worker"
            raise DispatchError(f"Error spawning {name}: {exc}") from exc

        assert self._proc.stdout is not None and self._proc.stderr is not None
        readers = [
            threading.Thread(target=self._drain, args=(self._proc.stdout, self._stdout), daemon=True),
            threading.Thread(target=self._drain, args=(self._proc.stderr, self._stderr), daemon=True),
        ]
        for reader in readers:
            reader.start()
        threading.Thread(
            target=self._wait,
            args=(readers,),
            daemon=True,
            name=f"grindbot-worker-{self.task_id}",
        ).start()
        logger.info("Started worker pid=%s for task %s in %s", self._proc.pid, self.task_id, work_dir)

    def _drain(self, stream: BinaryIO, sink: list[bytes]) -> None:
        try:
            while True:
                chunk = stream.read1(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                with self._buffer_lock:
                    sink.append(chunk)
        except (OSError, ValueError):
            logger.debug("Worker stream for task %s closed early", self.task_id, exc_info=True)
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _wait(self, readers: list[threading.Thread]) -> None:
        assert self._proc is not None
        code = self._proc.wait()
        for reader in readers:
            reader.join()
        self._exit_code = code
        self._done.set()
        logger.info("Worker for task %s exited with code %s", self.task_id, code)
        if self._on_exit is not None:
            try:
                self._on_exit(self.task_id)
            except Exception:
                logger.exception("Exit callback failed for task %s", self.task_id)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has exited and its output is fully buffered."""
        return self._done.wait(timeout)

    def is_alive(self) -> bool:
        return self._proc is not None and not self._done.is_set()

    def _text(self, chunks: list[bytes]) -> str:
        with self._buffer_lock:
            data = b"".join(chunks)
        return data.decode("utf-8", errors="replace")

    def capture_output(self) -> Optional[str]:
        stdout = self._text(self._stdout)
        if stdout.strip():
            return stdout
        stderr = self._text(self._stderr)
        if stderr.strip():
            return stderr
        if self._exit_code not in (None, 0):
            return f"(process exited with code {self._exit_code})"
        return "(no output)"

    def terminate(self) -> None:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        logger.info("Killed worker pid=%s for task %s", proc.pid, self.task_id)

    def detach(self) -> None:
        # A later supervisor cannot adopt this child, so it must not outlive us.
        self.terminate()


# ---------------------------------------------------------------------------
# tmux session
# ---------------------------------------------------------------------------


def session_name_for(task_id: str) -> str:
    return f"{SESSION_PREFIX}{task_id}"


def _run_tmux(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["tmux", *args],
        capture_output=True,
        text=True,
        timeout=TMUX_TIMEOUT_SECONDS,
        check=False,
    )


def session_exists(session_name: str) -> bool:
    """Ask tmux whether ``session_name`` exists; any failure counts as "no"."""
    try:
        result = _run_tmux("has-session", "-t", session_name)
    except (OSError, subprocess.SubprocessError):
        logger.debug("tmux has-session failed for %s", session_name, exc_info=True)
        return False
    return result.returncode == 0


def kill_session(session_name: str) -> None:
    try:
        _run_tmux("kill-session", "-t", session_name)
    except (OSError, subprocess.SubprocessError):
        logger.debug("tmux kill-session failed for %s", session_name, exc_info=True)


class SessionHandle:
    """Worker running detached in a tmux session named after its task."""

    backend: BackendName = "session"

    def __init__(
        self,
        task_id: str,
        command: Sequence[str] = ("claude",),
        *,
        scratch_dir: Optional[Path] = None,
        poll_interval: float = LIVENESS_POLL_SECONDS,
    ) -> None:
        self.task_id = task_id
        self.session_name = session_name_for(task_id)
        self._command = list(command)
        base = Path(scratch_dir) if scratch_dir else Path(tempfile.gettempdir())
        self.prompt_path = base / f"{self.session_name}.prompt"
        self.log_path = base / f"{self.session_name}.log"
        self._poll_interval = poll_interval
        self._alive = False
        self._stop = threading.Event()
        self._poller: Optional[threading.Thread] = None

    @classmethod
    def reattach(
        cls,
        task_id: str,
        command: Sequence[str] = ("claude",),
        *,
        scratch_dir: Optional[Path] = None,
        poll_interval: float = LIVENESS_POLL_SECONDS,
    ) -> "SessionHandle":
        """Rebuild a handle for a session started by an earlier supervisor process.

        Nothing is launched; call ``exists()`` and then ``resume()`` to take
        over liveness polling of a session that is still running.
        """
        return cls(task_id, command, scratch_dir=scratch_dir, poll_interval=poll_interval)

    def _shell_command(self) -> str:
        worker = " ".join(shlex.quote(part) for part in self._command)
        prompt_file = shlex.quote(str(self.prompt_path))
        # exec: the session dies with the worker, not with a leftover shell.
        return f'exec env -u {NESTED_GUARD_ENV} {worker} {SKIP_PERMISSIONS_FLAG} "$(cat {prompt_file})"'

    def start(self, prompt: str, work_dir: Path) -> None:
        """Launch the worker in a new detached session and start liveness polling.

        Raises:
            SessionCreationError: If tmux cannot create the session or attach the log pipe,
                or its scratch files cannot be written.
        """
        try:
            self.prompt_path.parent.mkdir(parents=True, exist_ok=True)
            self.prompt_path.write_text(prompt, encoding="utf-8")
            self.log_path.unlink(missing_ok=True)
        except OSError as exc:
            self._remove_scratch_files()
            raise SessionCreationError(f"Error preparing session files: {exc}") from exc
        try:
            created = _run_tmux("new-session", "-d", "-s", self.session_name, "-c", str(work_dir), self._shell_command())
            if created.returncode != 0:
                raise SessionCreationError(
                    f"Error starting tmux session: {created.stderr.strip() or f'exit code {created.returncode}'}"
                )
            piped = _run_tmux("pipe-pane", "-o", "-t", self.session_name, f"cat >> {shlex.quote(str(self.log_path))}")
            if piped.returncode != 0:
                kill_session(self.session_name)
                raise SessionCreationError(
                    f"Error capturing tmux session output: {piped.stderr.strip() or f'exit code {piped.returncode}'}"
                )
        except (OSError, subprocess.SubprocessError) as exc:
            self._remove_scratch_files()
            raise SessionCreationError(f"Error starting tmux session: {exc}") from exc
        except SessionCreationError:
            self._remove_scratch_files()
            raise
        logger.info("Started tmux session %s for task %s in %s", self.session_name, self.task_id, work_dir)
        self.resume()

    def resume(self) -> None:
        """Mark the session live and (re)start the background liveness poll."""
        self._alive = True
        self._stop.clear()
        if self._poller and self._poller.is_alive():
            return
        self._poller = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name=f"grindbot-poll-{self.task_id}",
        )
        self._poller.start()

    def _poll_loop(self) -> None:
        while not self._stop.wait(self._poll_interval):
            self._alive = session_exists(self.session_name)
            if not self._alive:
                logger.info("tmux session %s has ended", self.session_name)
                return

    @property
    def pid(self) -> Optional[int]:
        return None

    def exists(self) -> bool:
        return session_exists(self.session_name)

    def is_alive(self, refresh: bool = False) -> bool:
        """Latest poll result, or a fresh ``has-session`` query when ``refresh``."""
        if refresh:
            self._alive = self.exists()
        return self._alive

    def capture_output(self) -> Optional[str]:
        """Return the raw session log, or ``None`` when nothing was captured."""
        try:
            return self.log_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError:
            logger.debug("Failed to read session log %s", self.log_path, exc_info=True)
            return None

    def attach_command(self) -> list[str]:
        return ["tmux", "attach", "-t", self.session_name]

    def _remove_scratch_files(self) -> None:
        for path in (self.prompt_path, self.log_path):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.debug("Failed to remove scratch file %s", path, exc_info=True)

    def terminate(self) -> None:
        """Stop polling, kill the session if it is still there, drop scratch files."""
        self._stop.set()
        self._alive = False
        kill_session(self.session_name)
        self._remove_scratch_files()

    def detach(self) -> None:
        """Stop polling but leave the session and its log for the next supervisor."""
        self._stop.set()


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


class WorkerBackend(ABC):
    """Factory for the handles of one backend kind."""

    name: BackendName

    def __init__(self, command_provider: CommandProvider) -> None:
        self._command_provider = command_provider

    def command(self) -> list[str]:
        return list(self._command_provider())

    @abstractmethod
    def create(self, task_id: str, on_exit: Optional[ExitCallback] = None) -> WorkerHandle:
        raise NotImplementedError

    def reattach(self, task_id: str) -> Optional[WorkerHandle]:
        """Rebuild a handle for work started before a restart, when the backend allows it."""
        return None


class ProcessBackend(WorkerBackend):
    name: BackendName = "process"

    def create(self, task_id: str, on_exit: Optional[ExitCallback] = None) -> WorkerHandle:
        return DirectProcessHandle(task_id, self.command(), on_exit=on_exit)


class SessionBackend(WorkerBackend):
    name: BackendName = "session"

    def __init__(
        self,
        command_provider: CommandProvider,
        *,
        scratch_dir: Optional[Path] = None,
        poll_interval: float = LIVENESS_POLL_SECONDS,
    ) -> None:
        super().__init__(command_provider)
        self._scratch_dir = scratch_dir
        self._poll_interval = poll_interval

    def create(self, task_id: str, on_exit: Optional[ExitCallback] = None) -> WorkerHandle:
        return SessionHandle(task_id, self.command(), scratch_dir=self._scratch_dir, poll_interval=self._poll_interval)

    def reattach(self, task_id: str) -> Optional[WorkerHandle]:
        """Rebuild the task's session handle; it is polling again if the session still exists."""
        handle = SessionHandle.reattach(
            task_id,
            self.command(),
            scratch_dir=self._scratch_dir,
            poll_interval=self._poll_interval,
        )
        if handle.exists():
            handle.resume()
        return handle


def tmux_available() -> bool:
    return shutil.which("tmux") is not None


def detect_backend_name() -> BackendName:
    """Pick the session backend when tmux is installed, else plain child processes."""
    if tmux_available():
        return "session"
    logger.warning("tmux not found; falling back to non-interactive worker processes")
    return "process"


def create_backend(
    name: Optional[BackendName],
    command_provider: CommandProvider,
    *,
    scratch_dir: Optional[Path] = None,
) -> WorkerBackend:
    resolved = name or detect_backend_name()
    if resolved == "session":
        return SessionBackend(command_provider, scratch_dir=scratch_dir)
    if resolved == "process":
        return ProcessBackend(command_provider)
    raise ValueError(f"Unsupported worker backend: {resolved}")
