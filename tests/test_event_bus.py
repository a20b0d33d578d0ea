"""
Tests for the synchronous event bus.
"""

import logging

from progress_sync.state import EventBus, EventType


class TestEventBus:
    def test_emit_reaches_listener(self, bus):
        received = []
        bus.on(EventType.MISSION_STARTED, received.append)
        event = bus.emit(EventType.MISSION_STARTED, identity="wallet1", mission_id="m")

        assert received == [event]
        assert event.identity == "wallet1"
        assert event.data["mission_id"] == "m"

    def test_subscribe_once(self, bus):
        handler = lambda event: None
        bus.on(EventType.MISSION_STARTED, handler)
        bus.on(EventType.MISSION_STARTED, handler)
        assert bus.listener_count(EventType.MISSION_STARTED) == 1

    def test_off(self, bus):
        received = []
        bus.on(EventType.SYNC_COMPLETED, received.append)
        bus.off(EventType.SYNC_COMPLETED, received.append)
        bus.emit(EventType.SYNC_COMPLETED)
        assert received == []

    def test_history_filtered_and_bounded(self):
        bus = EventBus(history_limit=3)
        for _ in range(5):
            bus.emit(EventType.PROGRESS_SAVED)
        bus.emit(EventType.SYNC_FAILED)

        assert len(bus.get_history()) == 3
        assert len(bus.get_history(EventType.SYNC_FAILED)) == 1

    def test_failing_listener_is_logged(self, bus, caplog):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.on(EventType.EFFECT_APPLIED, broken)
        bus.on(EventType.EFFECT_APPLIED, received.append)
        with caplog.at_level(logging.ERROR):
            bus.emit(EventType.EFFECT_APPLIED)

        assert len(received) == 1
        assert "effect" in caplog.text.lower()
