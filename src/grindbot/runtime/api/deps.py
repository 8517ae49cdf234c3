"""Shared dependency context for runtime API route registration."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from ..supervisor.service import SupervisorService


@dataclass(frozen=True)
class RouteDeps:
    """Route registration dependency bundle."""

    resolve_service: Callable[[Optional[str]], SupervisorService]
