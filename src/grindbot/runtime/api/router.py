"""FastAPI router assembly for the supervisor runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import APIRouter

from ..supervisor.service import SupervisorService
from .deps import RouteDeps
from .routes_scheduler import register_scheduler_routes
from .routes_tasks import register_task_routes


def create_router(resolve_service: Callable[[Optional[str]], SupervisorService]) -> APIRouter:
    """Create the runtime API router.

    Args:
        resolve_service (Callable[[Optional[str]], SupervisorService]): Callable
            that returns the project-scoped ``SupervisorService`` for an
            optional ``project_dir`` value.

    Returns:
        APIRouter: Router exposing task, config and polling endpoints under ``/api``.
    """
    router = APIRouter(prefix="/api", tags=["api"])
    deps = RouteDeps(resolve_service=resolve_service)
    register_task_routes(router, deps)
    register_scheduler_routes(router, deps)
    return router
