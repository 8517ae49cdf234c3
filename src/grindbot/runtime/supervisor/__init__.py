"""Worker supervision: backends, scheduler and the service facade."""

from __future__ import annotations

from typing import Optional

from ..events.bus import EventBus
from ..storage.container import Container
from .handles import (
    BackendName,
    DirectProcessHandle,
    DispatchError,
    ProcessBackend,
    SessionBackend,
    SessionCreationError,
    SessionHandle,
    WorkerBackend,
    WorkerHandle,
    create_backend,
    detect_backend_name,
)
from .registry import HandleRegistry
from .scheduler import Scheduler
from .service import SessionUnavailableError, SupervisorService


def create_supervisor(
    container: Container,
    bus: EventBus,
    *,
    backend: Optional[WorkerBackend] = None,
    backend_name: Optional[BackendName] = None,
) -> SupervisorService:
    """Build a SupervisorService for one project.

    Args:
        container (Container): Project-scoped repositories.
        bus (EventBus): Bus used to announce task changes.
        backend (Optional[WorkerBackend]): Preconstructed backend, mainly for tests.
        backend_name (Optional[BackendName]): Force a backend instead of detecting tmux.

    Returns:
        SupervisorService: Service with its scheduler stopped.
    """
    return SupervisorService(container, bus, backend=backend, backend_name=backend_name)


__all__ = [
    "BackendName",
    "DirectProcessHandle",
    "DispatchError",
    "HandleRegistry",
    "ProcessBackend",
    "Scheduler",
    "SessionBackend",
    "SessionCreationError",
    "SessionHandle",
    "SessionUnavailableError",
    "SupervisorService",
    "WorkerBackend",
    "WorkerHandle",
    "create_backend",
    "create_supervisor",
    "detect_backend_name",
]
