"""HTTP API for the supervisor runtime."""

from .router import create_router

__all__ = ["create_router"]
