"""FastAPI app wiring for the task supervisor."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, cast

from fastapi import FastAPI, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..runtime.api import create_router
from ..runtime.events import EventBus, hub
from ..runtime.storage import Container
from ..runtime.supervisor import BackendName, SupervisorService, WorkerBackend, create_supervisor

logger = logging.getLogger(__name__)


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
    backend: Optional[WorkerBackend] = None,
    backend_name: Optional[BackendName] = None,
    autostart: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        project_dir (Optional[Path]): Default project directory used when request-level
            ``project_dir`` query parameters are not provided.
        enable_cors (bool): Whether to install permissive CORS middleware for browser
            clients.
        backend (Optional[WorkerBackend]): Worker backend handed to every supervisor
            this app creates; detected from the host when omitted.
        backend_name (Optional[BackendName]): Force ``"process"`` or ``"session"``.
        autostart (bool): Start polling for the default project when the app starts.

    Returns:
        FastAPI: Configured application with the ``/api`` router, websocket
        bridge and a per-project supervisor cache on ``app.state``.
    """
    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        hub.attach_loop(asyncio.get_running_loop())
        if autostart:
            _resolve_service(None).start_scheduler()
        try:
            yield
        finally:
            services = list(cast(dict[str, SupervisorService], app.state.supervisors).values())
            for service in services:
                try:
                    service.shutdown()
                except Exception:
                    logger.exception("Supervisor shutdown failed for %s", service.container.project_dir)
            app.state.supervisors = {}
            app.state.containers = {}

    app = FastAPI(
        title="Grindbot",
        description="Dispatches tasks to a coding-assistant CLI and tracks them to review",
        version=__version__,
        lifespan=_lifespan,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    app.state.containers = {}
    app.state.supervisors = {}

    def _resolve_project_dir(project_dir_param: Optional[str] = None) -> Path:
        if project_dir_param:
            return Path(project_dir_param).expanduser().resolve()
        if app.state.default_project_dir:
            return Path(app.state.default_project_dir).resolve()
        return Path.cwd().resolve()

    def _resolve_container(project_dir_param: Optional[str] = None) -> Container:
        resolved = _resolve_project_dir(project_dir_param)
        key = str(resolved)
        cache = cast(dict[str, Container], app.state.containers)
        if key not in cache:
            cache[key] = Container(resolved)
        return cache[key]

    def _resolve_service(project_dir_param: Optional[str] = None) -> SupervisorService:
        resolved = _resolve_project_dir(project_dir_param)
        key = str(resolved)
        cache = cast(dict[str, SupervisorService], app.state.supervisors)
        if key not in cache:
            container = _resolve_container(project_dir_param)
            cache[key] = create_supervisor(
                container,
                EventBus(container.project_id),
                backend=backend,
                backend_name=backend_name,
            )
        return cache[key]

    app.state.resolve_service = _resolve_service

    app.include_router(create_router(_resolve_service))

    @app.get("/")
    def root(project_dir: Optional[str] = Query(None)) -> dict[str, object]:
        """Return basic service metadata for the selected project context.

        Args:
            project_dir: Optional project directory used to resolve runtime state.

        Returns:
            A payload containing service metadata and project identity fields.
        """
        service = _resolve_service(project_dir)
        return {
            "name": "Grindbot",
            "version": __version__,
            "project": str(service.container.project_dir),
            "project_id": service.container.project_id,
            "backend": service.backend.name,
        }

    @app.get("/healthz")
    async def healthz() -> dict[str, object]:
        """Expose liveness status for process-level health checks.

        Returns:
            A payload indicating the API process is running.
        """
        return {"status": "ok", "version": __version__}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, project_dir: Optional[str] = Query(None)) -> None:
        """Bridge websocket clients to the shared event hub.

        The client gets the current task set as soon as it connects.

        Args:
            websocket: Active websocket connection accepted by FastAPI.
            project_dir: Optional project directory used to resolve runtime state.
        """
        service = _resolve_service(project_dir)
        await hub.handle_connection(websocket, snapshot=service.snapshot_event())

    return app
