"""Event bus and websocket hub exports."""

from .bus import EventBus
from .ws import hub

__all__ = ["EventBus", "hub"]
