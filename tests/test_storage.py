from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from grindbot.runtime.domain.models import DEFAULT_POLLING_INTERVAL, Config, HistoryEntry, Task
from grindbot.runtime.storage.bootstrap import STATE_DIR_NAME
from grindbot.runtime.storage.container import Container


def test_container_seeds_state_root(tmp_path: Path) -> None:
    container = Container(tmp_path)

    state_root = tmp_path / STATE_DIR_NAME
    assert container.state_root == state_root.resolve()
    assert (state_root / "tasks.yaml").exists()
    assert container.tasks.load_all() == []
    config = yaml.safe_load((state_root / "config.yaml").read_text(encoding="utf-8"))
    assert config["polling_interval"] == DEFAULT_POLLING_INTERVAL
    assert config["working_directory"] == "."
    assert config["worker_command"] == ["claude"]


def test_tasks_round_trip(tmp_path: Path) -> None:
    container = Container(tmp_path)
    task = Task(
        title="fix bug",
        description="login fails",
        status="question",
        output="[QUESTION]: which env?",
        question="which env?",
        history=[HistoryEntry(role="worker", content="[QUESTION]: which env?")],
    )
    container.tasks.save_all([task])

    loaded = container.tasks.load_all()

    assert [item.to_dict() for item in loaded] == [task.to_dict()]
    assert container.tasks.get(task.id) is not None
    assert container.tasks.get("missing") is None
    raw = yaml.safe_load((container.state_root / "tasks.yaml").read_text(encoding="utf-8"))
    assert raw["version"] == 1
    assert raw["tasks"][0]["id"] == task.id


def test_task_ids_are_short_hex() -> None:
    ids = {Task().id for _ in range(50)}
    assert len(ids) == 50
    for task_id in ids:
        assert len(task_id) == 8
        int(task_id, 16)


def test_malformed_task_file_loads_empty(tmp_path: Path) -> None:
    container = Container(tmp_path)
    (container.state_root / "tasks.yaml").write_text("tasks: [unclosed\n", encoding="utf-8")
    assert container.tasks.load_all() == []


def test_legacy_records_are_normalized(tmp_path: Path) -> None:
    container = Container(tmp_path)
    legacy = [
        {
            "id": "a1b2c3d4",
            "title": "old task",
            "status": "review",
            "output": "done",
            "history": [{"role": "claude", "content": "done"}, {"role": "user", "content": "redo"}],
            "createdAt": "2024-01-01T00:00:00Z",
            "updatedAt": "2024-01-02T00:00:00Z",
        },
        {"id": "deadbeef", "title": "weird", "status": "exploded"},
        "not a task",
    ]
    (container.state_root / "tasks.yaml").write_text(yaml.safe_dump(legacy), encoding="utf-8")

    first, second = container.tasks.load_all()

    assert [entry.role for entry in first.history] == ["worker", "user"]
    assert first.created_at == "2024-01-01T00:00:00Z"
    assert first.updated_at == "2024-01-02T00:00:00Z"
    assert first.question is None and first.feedback is None and first.pid is None
    assert second.status == "pending"


def test_config_round_trip(tmp_path: Path) -> None:
    container = Container(tmp_path)
    container.config.save(Config(polling_interval=5, working_directory="work", worker_command=["claude", "--verbose"]))

    config = container.config.load()

    assert config == Config(polling_interval=5.0, working_directory="work", worker_command=["claude", "--verbose"])


def test_config_coerces_bad_values() -> None:
    assert Config.from_dict({"polling_interval": -1}).polling_interval == DEFAULT_POLLING_INTERVAL
    assert Config.from_dict({"polling_interval": "soon"}).polling_interval == DEFAULT_POLLING_INTERVAL
    assert Config.from_dict({"pollingInterval": 12}).polling_interval == 12.0
    assert Config.from_dict({"workingDirectory": "/srv"}).working_directory == "/srv"
    assert Config.from_dict({"worker_command": "claude --model 'big one'"}).worker_command == [
        "claude",
        "--model",
        "big one",
    ]
    assert Config.from_dict({"worker_command": []}).worker_command == ["claude"]


@pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf"), "nan", "inf"])
def test_config_rejects_non_finite_interval(raw: object) -> None:
    assert Config.from_dict({"polling_interval": raw}).polling_interval == DEFAULT_POLLING_INTERVAL


def test_non_finite_interval_on_disk_loads_default(tmp_path: Path) -> None:
    container = Container(tmp_path)
    config_file = tmp_path / STATE_DIR_NAME / "config.yaml"
    config_file.write_text("polling_interval: .nan\nworking_directory: .\n", encoding="utf-8")
    assert container.config.load().polling_interval == DEFAULT_POLLING_INTERVAL

    config_file.write_text("polling_interval: .inf\n", encoding="utf-8")
    assert container.config.load().polling_interval == DEFAULT_POLLING_INTERVAL


def test_existing_config_survives_restart(tmp_path: Path) -> None:
    Container(tmp_path).config.save(Config(polling_interval=7))
    assert Container(tmp_path).config.load().polling_interval == 7.0


def test_gitignore_gets_state_dir_once(tmp_path: Path) -> None:
    gitignore = tmp_path / ".gitignore"
    gitignore.write_text("node_modules/", encoding="utf-8")

    Container(tmp_path)
    Container(tmp_path)

    lines = gitignore.read_text(encoding="utf-8").splitlines()
    assert lines.count(f"{STATE_DIR_NAME}/") == 1
    assert lines[0] == "node_modules/"


def test_no_gitignore_is_created(tmp_path: Path) -> None:
    Container(tmp_path)
    assert not (tmp_path / ".gitignore").exists()


def test_working_directory_resolves_against_project(tmp_path: Path) -> None:
    container = Container(tmp_path)
    container.config.save(Config(working_directory="sub/dir"))
    assert container.resolve_working_directory() == (tmp_path / "sub" / "dir").resolve()

    container.config.save(Config(working_directory=str(tmp_path / "abs")))
    assert container.resolve_working_directory() == (tmp_path / "abs").resolve()
