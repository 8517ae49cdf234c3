from __future__ import annotations

import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from grindbot.runtime.supervisor import handles
from grindbot.runtime.supervisor.handles import (
    DirectProcessHandle,
    DispatchError,
    SessionBackend,
    SessionCreationError,
    SessionHandle,
    create_backend,
    detect_backend_name,
)


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _run(tmp_path: Path, code: str, prompt: str = "do it") -> DirectProcessHandle:
    handle = DirectProcessHandle("t1", _python(code))
    handle.start(prompt, tmp_path)
    assert handle.wait(15.0)
    return handle


def test_direct_process_captures_stdout(tmp_path: Path) -> None:
    exited: list[str] = []
    done = threading.Event()

    def _on_exit(task_id: str) -> None:
        exited.append(task_id)
        done.set()

    handle = DirectProcessHandle("t1", _python("print('done.')"), on_exit=_on_exit)
    handle.start("prompt", tmp_path)

    assert done.wait(15.0)
    assert exited == ["t1"]
    assert not handle.is_alive()
    assert handle.exit_code == 0
    assert handle.capture_output() == "done.\n"


def test_direct_process_passes_prompt_as_one_argument(tmp_path: Path) -> None:
    prompt = "Task: quote 'this' and \"that\"\n\n$HOME `whoami` *"
    handle = _run(tmp_path, "import sys; sys.stdout.write(sys.argv[2] + '|' + sys.argv[3])", prompt)
    assert handle.capture_output() == prompt + "|--dangerously-skip-permissions"


def test_direct_process_runs_in_work_dir(tmp_path: Path) -> None:
    handle = _run(tmp_path, "import os; print(os.getcwd())")
    output = handle.capture_output()
    assert output is not None
    assert Path(output.strip()).resolve() == tmp_path.resolve()


def test_direct_process_hides_nested_guard(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLAUDECODE", "1")
    handle = _run(tmp_path, "import os; print(os.environ.get('CLAUDECODE', 'unset'))")
    assert handle.capture_output() == "unset\n"


def test_direct_process_falls_back_to_stderr(tmp_path: Path) -> None:
    handle = _run(tmp_path, "import sys; sys.stderr.write('boom')")
    assert handle.capture_output() == "boom"


def test_direct_process_reports_exit_code_without_output(tmp_path: Path) -> None:
    handle = _run(tmp_path, "import sys; sys.exit(3)")
    assert handle.capture_output() == "(process exited with code 3)"


def test_direct_process_placeholder_for_silent_success(tmp_path: Path) -> None:
    handle = _run(tmp_path, "pass")
    assert handle.capture_output() == "(no output)"


def test_direct_process_missing_binary_raises(tmp_path: Path) -> None:
    handle = DirectProcessHandle("t1", [str(tmp_path / "no-such-worker")])
    with pytest.raises(DispatchError):
        handle.start("prompt", tmp_path)
    assert not handle.is_alive()


def test_direct_process_terminate_kills_child(tmp_path: Path) -> None:
    handle = DirectProcessHandle("t1", _python("import time; time.sleep(60)"))
    handle.start("prompt", tmp_path)
    assert handle.is_alive()
    assert handle.pid is not None

    handle.terminate()

    assert handle.wait(15.0)
    assert not handle.is_alive()


class FakeTmux:
    """Stand-in for the tmux binary, recording every invocation."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.sessions: set[str] = set()
        self.fail: dict[str, tuple[int, str]] = {}
        self.lock = threading.Lock()

    def __call__(self, *args: str) -> subprocess.CompletedProcess[str]:
        with self.lock:
            self.calls.append(args)
        command = args[0]
        if command in self.fail:
            code, stderr = self.fail[command]
            return subprocess.CompletedProcess(["tmux", *args], code, "", stderr)
        name = args[args.index("-t") + 1] if "-t" in args else args[args.index("-s") + 1] if "-s" in args else ""
        if command == "new-session":
            self.sessions.add(name)
        elif command == "kill-session":
            self.sessions.discard(name)
        elif command == "has-session":
            return subprocess.CompletedProcess(["tmux", *args], 0 if name in self.sessions else 1, "", "")
        return subprocess.CompletedProcess(["tmux", *args], 0, "", "")

    def commands(self) -> list[str]:
        with self.lock:
            return [call[0] for call in self.calls]


@pytest.fixture
def tmux(monkeypatch: pytest.MonkeyPatch) -> FakeTmux:
    fake = FakeTmux()
    monkeypatch.setattr(handles, "_run_tmux", fake)
    return fake


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_session_start_launches_detached_session(tmp_path: Path, tmux: FakeTmux) -> None:
    handle = SessionHandle("abc123", ["claude", "--model", "x y"], scratch_dir=tmp_path, poll_interval=60)
    handle.start("Task: it's \"quoted\"", tmp_path)
    try:
        assert handle.prompt_path.read_text(encoding="utf-8") == "Task: it's \"quoted\""
        new_session, pipe_pane = tmux.calls[0], tmux.calls[1]
        assert new_session[:6] == ("new-session", "-d", "-s", "grindbot-abc123", "-c", str(tmp_path))
        shell = new_session[6]
        assert shell.startswith("exec env -u CLAUDECODE claude --model 'x y' --dangerously-skip-permissions")
        assert str(handle.prompt_path) in shell
        assert pipe_pane[:4] == ("pipe-pane", "-o", "-t", "grindbot-abc123")
        assert str(handle.log_path) in pipe_pane[4]
        assert handle.is_alive()
        assert handle.pid is None
        assert handle.attach_command() == ["tmux", "attach", "-t", "grindbot-abc123"]
    finally:
        handle.terminate()

    assert "kill-session" in tmux.commands()
    assert not handle.prompt_path.exists()
    assert not handle.is_alive()


def test_session_start_failure_cleans_up(tmp_path: Path, tmux: FakeTmux) -> None:
    tmux.fail["new-session"] = (1, "duplicate session: grindbot-abc123")
    handle = SessionHandle("abc123", scratch_dir=tmp_path, poll_interval=60)

    with pytest.raises(SessionCreationError) as excinfo:
        handle.start("prompt", tmp_path)

    assert "duplicate session" in str(excinfo.value)
    assert isinstance(excinfo.value, DispatchError)
    assert not handle.prompt_path.exists()


def test_session_unwritable_scratch_dir_fails_start(tmp_path: Path, tmux: FakeTmux) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    handle = SessionHandle("abc123", scratch_dir=blocker / "sessions", poll_interval=60)

    with pytest.raises(SessionCreationError) as excinfo:
        handle.start("prompt", tmp_path)

    assert "Error preparing session files" in str(excinfo.value)
    assert tmux.calls == []
    assert not handle.is_alive()


def test_session_pipe_failure_kills_session(tmp_path: Path, tmux: FakeTmux) -> None:
    tmux.fail["pipe-pane"] = (1, "no pane")
    handle = SessionHandle("abc123", scratch_dir=tmp_path, poll_interval=60)

    with pytest.raises(SessionCreationError):
        handle.start("prompt", tmp_path)

    assert tmux.commands() == ["new-session", "pipe-pane", "kill-session"]


def test_session_poll_notices_session_end(tmp_path: Path, tmux: FakeTmux) -> None:
    handle = SessionHandle("abc123", scratch_dir=tmp_path, poll_interval=0.02)
    handle.start("prompt", tmp_path)
    try:
        assert handle.is_alive()
        tmux.sessions.clear()
        assert _wait_for(lambda: not handle.is_alive())
    finally:
        handle.terminate()


def test_session_query_failure_counts_as_gone(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _broken(*args: str) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("tmux")

    monkeypatch.setattr(handles, "_run_tmux", _broken)
    handle = SessionHandle("abc123", scratch_dir=tmp_path, poll_interval=60)
    assert handle.is_alive(refresh=True) is False
    assert handle.exists() is False


def test_session_capture_reads_raw_log(tmp_path: Path) -> None:
    handle = SessionHandle("abc123", scratch_dir=tmp_path)
    assert handle.capture_output() is None
    handle.log_path.write_text("\x1b[1mhello\x1b[0m\r\n", encoding="utf-8")
    assert handle.capture_output() == "\x1b[1mhello\x1b[0m\r\n"


def test_session_backend_reattaches_existing_session(tmp_path: Path, tmux: FakeTmux) -> None:
    tmux.sessions.add("grindbot-abc123")
    backend = SessionBackend(lambda: ["claude"], scratch_dir=tmp_path, poll_interval=60)

    handle = backend.reattach("abc123")

    assert isinstance(handle, SessionHandle)
    assert handle.is_alive()
    handle.detach()
    assert "kill-session" not in tmux.commands()


def test_session_backend_reattach_to_ended_session(tmp_path: Path, tmux: FakeTmux) -> None:
    backend = SessionBackend(lambda: ["claude"], scratch_dir=tmp_path, poll_interval=60)

    handle = backend.reattach("gone")

    assert handle is not None
    assert not handle.is_alive()


def test_backend_detection_follows_tmux_presence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(handles.shutil, "which", lambda name: None)
    assert detect_backend_name() == "process"
    monkeypatch.setattr(handles.shutil, "which", lambda name: "/usr/bin/tmux")
    assert detect_backend_name() == "session"


def test_create_backend_reads_command_lazily(tmp_path: Path) -> None:
    command = ["first"]
    backend = create_backend("process", lambda: command)
    command[:] = ["second", "--flag"]
    assert backend.command() == ["second", "--flag"]
    assert backend.reattach("anything") is None
    with pytest.raises(ValueError):
        create_backend("bogus", lambda: command)  # type: ignore[arg-type]
