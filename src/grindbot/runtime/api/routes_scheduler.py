"""Scheduler control and config route registration for the runtime API."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Query

from ..supervisor.service import SupervisorService
from .deps import RouteDeps
from .errors import http_error
from .schemas import UpdateConfigRequest


def _status_payload(service: SupervisorService) -> dict[str, Any]:
    return {
        "active": service.scheduler_status(),
        "interval": service.get_config().polling_interval,
        "backend": service.backend.name,
    }


def register_scheduler_routes(router: APIRouter, deps: RouteDeps) -> None:
    """Register polling control and config routes."""
    @router.get("/config")
    def get_config(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Return the persisted runtime config.

        Args:
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            The config payload.
        """
        service = deps.resolve_service(project_dir)
        return {"config": service.get_config().to_dict(), "backend": service.backend.name}

    @router.patch("/config")
    def update_config(body: UpdateConfigRequest, project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Apply a partial config update.

        A new polling interval takes effect immediately when polling is active.

        Args:
            body: Config fields to change.
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            The updated config payload.

        Raises:
            HTTPException: If a supplied value is invalid.
        """
        service = deps.resolve_service(project_dir)
        try:
            config = service.update_config(
                polling_interval=body.polling_interval,
                working_directory=body.working_directory,
                worker_command=body.worker_command,
            )
        except ValueError as exc:
            raise http_error(exc)
        return {"config": config.to_dict(), "backend": service.backend.name}

    @router.post("/polling/start")
    def start_polling(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Start periodic ticks; the first tick runs right away.

        Args:
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            The scheduler status payload.
        """
        service = deps.resolve_service(project_dir)
        service.start_scheduler()
        return _status_payload(service)

    @router.post("/polling/stop")
    def stop_polling(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Stop periodic ticks. Running workers keep running.

        Args:
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            The scheduler status payload.
        """
        service = deps.resolve_service(project_dir)
        service.stop_scheduler()
        return _status_payload(service)

    @router.get("/polling/status")
    def polling_status(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        """Report whether periodic ticks are active.

        Args:
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            The scheduler status payload.
        """
        return _status_payload(deps.resolve_service(project_dir))
