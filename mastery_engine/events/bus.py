"""
In-process event bus for fire-and-forget notifications.

Gamification and notification collaborators subscribe here. A failing
handler is logged and skipped; it never fails or rolls back the mastery or
scheduler update that emitted the event.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from mastery_engine.core.models import utcnow

WILDCARD = "*"
DEFAULT_LOG_SIZE = 500


class EventType:
    """Event names emitted by the engine."""

    NODE_MASTERED = "node_mastered"
    REVIEW_PASSED = "review_passed"
    REVIEW_FAILED = "review_failed"
    STATE_TRANSITION = "state_transition"
    DIAGNOSTIC_COMPLETE = "diagnostic_complete"
    STRUGGLE_DETECTED = "struggle_detected"
    FLUENCY_DRILL_STARTED = "fluency_drill_started"
    FLUENCY_COMPLETED = "fluency_completed"


@dataclass(frozen=True)
class EngineEvent:
    type: str
    student_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


EventHandler = Callable[[EngineEvent], Any]


class EventBus:
    """
    Subscribe/emit bus with wildcard listeners and a bounded event log.

    Handlers run synchronously in subscription order; specific handlers
    run before wildcard handlers.
    """

    def __init__(self, max_log_size: int = DEFAULT_LOG_SIZE):
        self._handlers: dict[str, list[EventHandler]] = {}
        self._log: deque[EngineEvent] = deque(maxlen=max_log_size)
        self._lock = threading.RLock()

    def on(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to an event type ("*" for all). Returns an unsubscribe function."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def once(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe for a single delivery."""

        def wrapped(event: EngineEvent) -> Any:
            unsubscribe()
            return handler(event)

        unsubscribe = self.on(event_type, wrapped)
        return unsubscribe

    def emit(self, event: EngineEvent) -> int:
        """
        Deliver an event to matching and wildcard handlers.

        Returns:
            Number of handlers that completed without raising
        """
        with self._lock:
            self._log.append(event)
            specific = list(self._handlers.get(event.type, []))
            wildcards = list(self._handlers.get(WILDCARD, []))

        invoked = 0
        for handler in specific + wildcards:
            try:
                handler(event)
                invoked += 1
            except Exception:
                logger.exception(f"Event handler failed for {event.type} (student={event.student_id})")
        return invoked

    def publish(self, event_type: str, student_id: str, **payload: Any) -> int:
        return self.emit(EngineEvent(type=event_type, student_id=student_id, payload=payload))

    def clear(self, event_type: str | None = None) -> None:
        with self._lock:
            if event_type is None:
                self._handlers.clear()
            else:
                self._handlers.pop(event_type, None)

    def handler_count(self) -> int:
        with self._lock:
            return sum(len(h) for h in self._handlers.values())

    def event_log(self, limit: int | None = None) -> list[EngineEvent]:
        with self._lock:
            events = list(self._log)
        return events[-limit:] if limit else events

    def clear_log(self) -> None:
        with self._lock:
            self._log.clear()

    def event_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(e.type for e in self._log))


_global_bus: EventBus | None = None
_global_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the process-wide event bus."""
    global _global_bus
    with _global_lock:
        if _global_bus is None:
            _global_bus = EventBus()
        return _global_bus


def reset_event_bus() -> None:
    """Drop the process-wide bus (tests)."""
    global _global_bus
    with _global_lock:
        _global_bus = None
