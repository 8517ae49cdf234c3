"""HTTP server for the task supervisor."""

from .api import create_app

__all__ = ["create_app"]
