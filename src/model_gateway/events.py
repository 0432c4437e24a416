"""Observability events for the model gateway.

Every routing decision (fallback, success, exhaustion, escalation) and every
registry change emits a ``GatewayEvent``. Events are side effects only: a
failing subscriber is logged and never changes the outcome of a call.

Example:
    >>> events = EventLog()
    >>> events.subscribe(lambda event: print(event.event_type.value))
    >>> events.emit(GatewayEventType.SUCCESS, {"model_id": "gpt-4o"})
    success
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 1000


class GatewayEventType(Enum):
    """Types of events emitted by the gateway."""

    # Fallback router
    FALLBACK = "fallback"
    SUCCESS = "success"
    ALL_FAILED = "all_failed"
    ESCALATION = "escalation"

    # Ensemble
    ENSEMBLE_COMPLETE = "ensemble_complete"

    # Registry
    REGISTRY_REBUILT = "registry_rebuilt"
    MODEL_SELECTED = "model_selected"

    # Streaming
    STREAM_FALLBACK = "stream_fallback"
    STREAM_FAILED = "stream_failed"


@dataclass
class GatewayEvent:
    """An event emitted by a gateway component."""

    event_type: GatewayEventType
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventCallback = Callable[[GatewayEvent], None]


class EventLog:
    """Bounded in-memory event log with synchronous subscribers.

    Args:
        max_events: Oldest events are dropped beyond this many
    """

    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS):
        self._events: List[GatewayEvent] = []
        self._subscribers: List[EventCallback] = []
        self._max_events = max_events
        self._lock = threading.Lock()

    def emit(
        self,
        event_type: GatewayEventType,
        data: Optional[Dict[str, Any]] = None,
    ) -> GatewayEvent:
        """Record an event and notify subscribers.

        Returns:
            The emitted GatewayEvent
        """
        event = GatewayEvent(event_type=event_type, data=data or {})
        with self._lock:
            self._events.append(event)
            if len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]
            subscribers = list(self._subscribers)

        logger.info("Gateway event: %s data=%s", event_type.value, event.data)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning("Event subscriber failed for %s: %s", event_type.value, e)

        return event

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def get_events(
        self, event_type: Optional[GatewayEventType] = None
    ) -> List[GatewayEvent]:
        """Get emitted events in emission order, optionally filtered by type."""
        with self._lock:
            events = list(self._events)
        if event_type is None:
            return events
        return [e for e in events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
