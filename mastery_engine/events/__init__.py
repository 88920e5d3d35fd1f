"""Fire-and-forget engine events."""

from mastery_engine.events.bus import (
    EngineEvent,
    EventBus,
    EventType,
    get_event_bus,
    reset_event_bus,
)

__all__ = ["EngineEvent", "EventBus", "EventType", "get_event_bus", "reset_event_bus"]
