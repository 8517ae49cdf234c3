"""Event bus that fans task-change notifications out to subscribers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from .ws import WebSocketHub, hub as default_hub

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class EventBus:
    """Publish runtime events to websocket clients and in-process listeners."""
    def __init__(self, project_id: str, *, hub: Optional[WebSocketHub] = None) -> None:
        """Initialize the EventBus.

        Args:
            project_id (str): Identifier stamped on every emitted event.
            hub (Optional[WebSocketHub]): Websocket hub to publish to; the
                process-wide hub when omitted.
        """
        self._project_id = project_id
        self._hub = hub or default_hub
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register an in-process listener and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, *, channel: str, event_type: str, entity_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Publish an event to connected clients and listeners.

        Args:
            channel (str): Channel for this call.
            event_type (str): Event type for this call.
            entity_id (str): Identifier for the related entity.
            payload (dict[str, Any]): Serialized payload consumed by subscribers.

        Returns:
            dict[str, Any]: The event as published.
        """
        event = {
            "channel": channel,
            "type": event_type,
            "entity_id": entity_id,
            "project_id": self._project_id,
            "payload": payload,
        }
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.debug("Event listener failed for %s", event_type, exc_info=True)
        self._hub.publish_sync(event)
        return event
