"""Event publisher - fans committed domain events out to in-process subscribers."""
import logging
import threading
from typing import Any, Callable, Dict, List, Protocol

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


Subscriber = Callable[[Event], None]


class EventPublisher:
    """Delivers events to subscribers. A failing subscriber never blocks the others."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(handler)

    def publish(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._subscribers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event subscriber %r failed for %s", handler, type(event).__name__)
