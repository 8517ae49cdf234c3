"""Task-focused route registration for the runtime API."""

from __future__ import annotations

import shlex
from typing import Any, Optional

from fastapi import APIRouter, Query

from ..domain.lifecycle import TaskNotFoundError
from ..supervisor.service import SessionUnavailableError
from .deps import RouteDeps
from .errors import http_error
from .schemas import CreateTaskRequest, TransitionRequest, UpdateTaskRequest


def register_task_routes(router: APIRouter, deps: RouteDeps) -> None:
    """Register task CRUD, transition, output and attach routes."""
    @router.get("/tasks")
    def list_tasks(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """List every task in the project.

        Args:
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload containing all task records.
        """
        service = deps.resolve_service(project_dir)
        return {"tasks": [task.to_dict() for task in service.list_tasks()]}

    @router.post("/tasks")
    def create_task(body: CreateTaskRequest, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Create a pending task; the next scheduler tick dispatches it.

        Args:
            body: Title and description of the new task.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload containing the created task.

        Raises:
            HTTPException: If the title is blank.
        """
        service = deps.resolve_service(project_dir)
        try:
            task = service.create_task(body.title, body.description)
        except ValueError as exc:
            raise http_error(exc)
        return {"task": task.to_dict()}

    @router.get("/tasks/{task_id}")
    def get_task(task_id: str, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Fetch one task by id.

        Args:
            task_id: Identifier of the task to fetch.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload containing the task.

        Raises:
            HTTPException: If the task does not exist.
        """
        service = deps.resolve_service(project_dir)
        try:
            task = service.get_task(task_id)
        except TaskNotFoundError as exc:
            raise http_error(exc)
        return {"task": task.to_dict()}

    @router.patch("/tasks/{task_id}")
    def update_task(task_id: str, body: UpdateTaskRequest, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Edit a task's title or description.

        Args:
            task_id: Identifier of the task to edit.
            body: Fields to change; omitted fields are left alone.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload containing the updated task.

        Raises:
            HTTPException: If the task does not exist or the new title is blank.
        """
        service = deps.resolve_service(project_dir)
        try:
            task = service.update_task(task_id, title=body.title, description=body.description)
        except (TaskNotFoundError, ValueError) as exc:
            raise http_error(exc)
        return {"task": task.to_dict()}

    @router.delete("/tasks/{task_id}")
    def delete_task(task_id: str, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Delete a task, killing its worker if one is running.

        Args:
            task_id: Identifier of the task to delete.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload confirming the deletion.

        Raises:
            HTTPException: If the task does not exist.
        """
        service = deps.resolve_service(project_dir)
        try:
            service.delete_task(task_id)
        except TaskNotFoundError as exc:
            raise http_error(exc)
        return {"deleted": True, "id": task_id}

    @router.post("/tasks/{task_id}/transition")
    def transition_task(task_id: str, body: TransitionRequest, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Approve, reject or answer a task.

        Args:
            task_id: Identifier of the task to move.
            body: Requested status plus feedback when returning it to ``pending``.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload containing the updated task.

        Raises:
            HTTPException: If the task is missing, the transition is not allowed,
                or required feedback is absent.
        """
        service = deps.resolve_service(project_dir)
        try:
            task = service.request_transition(task_id, body.status, body.feedback)
        except (TaskNotFoundError, ValueError) as exc:
            raise http_error(exc)
        return {"task": task.to_dict()}

    @router.get("/tasks/{task_id}/output")
    def task_output(task_id: str, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Return the task's output, live from its session log while it runs.

        Args:
            task_id: Identifier of the task.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload with the task id, status and current output text.

        Raises:
            HTTPException: If the task does not exist.
        """
        service = deps.resolve_service(project_dir)
        try:
            task = service.get_task(task_id)
            output = service.peek_output(task_id)
        except TaskNotFoundError as exc:
            raise http_error(exc)
        return {"id": task.id, "status": task.status, "output": output}

    @router.get("/tasks/{task_id}/attach")
    def attach_task(task_id: str, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Return the command that attaches a terminal to the task's tmux session.

        Args:
            task_id: Identifier of the task.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload with the argv and a shell-ready rendering of it.

        Raises:
            HTTPException: If the task is missing or has no live session.
        """
        service = deps.resolve_service(project_dir)
        try:
            argv = service.attach_command(task_id)
        except (TaskNotFoundError, SessionUnavailableError) as exc:
            raise http_error(exc)
        return {"argv": argv, "command": " ".join(shlex.quote(part) for part in argv)}
