"""Pydantic request schemas for runtime API routes."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateTaskRequest(BaseModel):
    """Payload for creating a new task."""

    title: str
    description: str = ""


class UpdateTaskRequest(BaseModel):
    """Patch payload for editing a task's text fields."""

    title: Optional[str] = None
    description: Optional[str] = None


class TransitionRequest(BaseModel):
    """Payload for a user-driven status change."""

    status: str
    feedback: Optional[str] = None


class UpdateConfigRequest(BaseModel):
    """Partial config update; camelCase keys from the UI are accepted too."""

    model_config = ConfigDict(populate_by_name=True)

    polling_interval: Optional[float] = Field(default=None, alias="pollingInterval")
    working_directory: Optional[str] = Field(default=None, alias="workingDirectory")
    worker_command: Optional[list[str]] = Field(default=None, alias="workerCommand")
