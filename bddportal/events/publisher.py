"""Thread-safe event publisher connecting a runner to its listeners."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class EventPublisher:
    """Deliver runner events to the handlers registered for their type.

    Handlers run synchronously on the publishing thread, in registration
    order. A failing handler is logged and does not prevent delivery to the
    remaining handlers.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def register_handler_for(self, event_type: type, handler: EventHandler) -> None:
        """Subscribe a handler to one event type.

        Parameters
        ----------
        event_type : type
            Event class to subscribe to (exact type match)
        handler : EventHandler
            Callable invoked with each published event of that type
        """
        with self._lock:
            self._handlers[event_type].append(handler)

    def remove_handler_for(self, event_type: type, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Any) -> None:
        """Deliver an event to its subscribers.

        Parameters
        ----------
        event : Any
            Event instance; its concrete class selects the subscribers
        """
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s", handler, type(event).__name__
                )

    def handler_count(self, event_type: type | None = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._handlers.get(event_type, ()))
            return sum(len(handlers) for handlers in self._handlers.values())
