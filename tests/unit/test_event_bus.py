"""
Unit tests for the in-process event bus.
"""

from mastery_engine.events.bus import EngineEvent, EventBus, EventType, get_event_bus, reset_event_bus


class TestEventBus:
    def test_publish_reaches_subscribers(self, bus):
        seen = []
        bus.on(EventType.NODE_MASTERED, seen.append)

        delivered = bus.publish(EventType.NODE_MASTERED, "s1", node_code="ADD.1")

        assert delivered == 1
        assert seen[0].student_id == "s1"
        assert seen[0].payload == {"node_code": "ADD.1"}

    def test_failing_handler_does_not_stop_others(self, bus):
        seen = []

        def broken(event):
            raise RuntimeError("notification service down")

        bus.on(EventType.REVIEW_PASSED, broken)
        bus.on(EventType.REVIEW_PASSED, seen.append)

        assert bus.publish(EventType.REVIEW_PASSED, "s1") == 1
        assert len(seen) == 1

    def test_specific_handlers_run_before_wildcard(self, bus):
        order = []
        bus.on("*", lambda e: order.append("wildcard"))
        bus.on(EventType.STRUGGLE_DETECTED, lambda e: order.append("specific"))

        bus.publish(EventType.STRUGGLE_DETECTED, "s1")

        assert order == ["specific", "wildcard"]

    def test_unsubscribe(self, bus):
        seen = []
        unsubscribe = bus.on(EventType.NODE_MASTERED, seen.append)
        unsubscribe()
        unsubscribe()

        assert bus.publish(EventType.NODE_MASTERED, "s1") == 0
        assert seen == []
        assert bus.handler_count() == 0

    def test_once(self, bus):
        seen = []
        bus.once(EventType.FLUENCY_COMPLETED, seen.append)

        bus.publish(EventType.FLUENCY_COMPLETED, "s1")
        bus.publish(EventType.FLUENCY_COMPLETED, "s1")

        assert len(seen) == 1

    def test_log_is_bounded(self):
        bus = EventBus(max_log_size=3)
        for i in range(5):
            bus.emit(EngineEvent(type=EventType.REVIEW_FAILED, student_id=f"s{i}"))

        log = bus.event_log()
        assert [e.student_id for e in log] == ["s2", "s3", "s4"]
        assert bus.event_log(limit=1)[0].student_id == "s4"
        assert bus.event_counts() == {EventType.REVIEW_FAILED: 3}

        bus.clear_log()
        assert bus.event_log() == []

    def test_clear_handlers(self, bus):
        bus.on(EventType.NODE_MASTERED, lambda e: None)
        bus.on(EventType.REVIEW_PASSED, lambda e: None)
        bus.clear(EventType.NODE_MASTERED)
        assert bus.handler_count() == 1
        bus.clear()
        assert bus.handler_count() == 0


def test_global_bus_is_shared():
    reset_event_bus()
    try:
        assert get_event_bus() is get_event_bus()
    finally:
        reset_event_bus()
