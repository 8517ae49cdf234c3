from __future__ import annotations

from pathlib import Path

from .file_repos import FileConfigRepository


STATE_DIR_NAME = ".grindbot"

STATE_FILES = {
    "tasks": "tasks.yaml",
    "config": "config.yaml",
}


def _ensure_gitignored(project_dir: Path) -> None:
    """Add .grindbot/ to the project's .gitignore if a .gitignore already exists."""
    gitignore = project_dir / ".gitignore"
    if not gitignore.exists():
        return
    entry = f"{STATE_DIR_NAME}/"
    content = gitignore.read_text(encoding="utf-8")
    existing = {line.strip() for line in content.splitlines()}
    if entry in existing or entry.rstrip("/") in existing:
        return
    if content and not content.endswith("\n"):
        content += "\n"
    content += f"\n# Grindbot runtime data\n{entry}\n"
    gitignore.write_text(content, encoding="utf-8")


def ensure_state_root(project_dir: Path) -> Path:
    state_root = project_dir / STATE_DIR_NAME
    state_root.mkdir(parents=True, exist_ok=True)
    _ensure_gitignored(project_dir)

    tasks_file = state_root / STATE_FILES["tasks"]
    if not tasks_file.exists():
        tasks_file.write_text("version: 1\ntasks: []\n", encoding="utf-8")

    # Rewrite config so defaults for any missing keys land on disk.
    config_repo = FileConfigRepository(state_root / STATE_FILES["config"], state_root / "config.lock")
    config_repo.save(config_repo.load())

    return state_root
