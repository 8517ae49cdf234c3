"""Translate service exceptions into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException

from ..domain.lifecycle import InvalidTransitionError, MissingFeedbackError, TaskNotFoundError
from ..supervisor.service import SessionUnavailableError


def http_error(exc: Exception) -> HTTPException:
    """Map a service-layer exception onto the status code clients expect.

    Args:
        exc (Exception): Exception raised by ``SupervisorService``.

    Returns:
        HTTPException: 404 for unknown tasks, 409 when no session can be
        attached, 400 for rejected transitions and invalid input.
    """
    if isinstance(exc, TaskNotFoundError):
        return HTTPException(status_code=404, detail="Task not found")
    if isinstance(exc, SessionUnavailableError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, MissingFeedbackError, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
