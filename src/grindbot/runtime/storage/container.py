"""Dependency container for runtime repositories."""

from __future__ import annotations

from pathlib import Path

from .bootstrap import STATE_FILES, ensure_state_root
from .file_repos import FileConfigRepository, FileTaskRepository


class Container:
    """Wire file-backed repositories and project-scoped runtime settings."""
    def __init__(self, project_dir: Path) -> None:
        """Initialize the Container.

        Args:
            project_dir (Path): Project dir for this call.
        """
        self.project_dir = project_dir.resolve()
        self.state_root = ensure_state_root(self.project_dir)

        self.tasks = FileTaskRepository(self.state_root / STATE_FILES["tasks"], self.state_root / "tasks.lock")
        self.config = FileConfigRepository(self.state_root / STATE_FILES["config"], self.state_root / "config.lock")

    @property
    def project_id(self) -> str:
        """Expose the stable project identifier derived from directory name.

        Returns:
            str: str result produced by this operation.
        """
        return self.project_dir.name

    def resolve_working_directory(self) -> Path:
        """Resolve the configured worker directory to an absolute path.

        Relative paths are taken relative to the project directory.
        """
        raw = Path(self.config.load().working_directory).expanduser()
        if not raw.is_absolute():
            raw = self.project_dir / raw
        return raw.resolve()
