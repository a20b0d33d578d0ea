"""
Event bus for progress state changes.

Provides decoupled communication between the engines and whatever presents
them (API, CLI, notifications). Components subscribe to events and react
without tight coupling.

Usage:
    bus = EventBus()
    bus.on(EventType.MISSION_COMPLETED, my_handler)

    # Emit (in an engine when state changes)
    bus.emit(EventType.MISSION_COMPLETED, identity="wallet1", mission_id="mining_001")

    # Handler receives event
    def my_handler(event: GameEvent):
        print(f"Mission {event.data['mission_id']} done!")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Progress events that can be published."""

    # Identity lifecycle
    IDENTITY_CONNECTED = "identity.connected"
    IDENTITY_DISCONNECTED = "identity.disconnected"
    PROGRESS_LOADED = "progress.loaded"
    PROGRESS_SAVED = "progress.saved"
    PROGRESS_CLEARED = "progress.cleared"

    # Missions
    MISSION_UNLOCKED = "mission.unlocked"
    MISSION_STARTED = "mission.started"
    MISSION_PROGRESS = "mission.progress"
    MISSION_COMPLETED = "mission.completed"
    MISSION_RESET = "mission.reset"
    REWARD_ISSUED = "reward.issued"
    REWARD_FAILED = "reward.failed"

    # Item effects
    EFFECT_APPLIED = "effect.applied"
    EFFECT_REMOVED = "effect.removed"
    EFFECT_EXPIRED = "effect.expired"

    # Synchronization
    SYNC_STARTED = "sync.started"
    SYNC_COMPLETED = "sync.completed"
    SYNC_FAILED = "sync.failed"
    SYNC_SKIPPED = "sync.skipped"
    SYNC_CONFLICTS = "sync.conflicts"
    REMOTE_WRITE_FAILED = "remote.write_failed"


@dataclass
class GameEvent:
    """
    Event payload for the event bus.

    Attributes:
        type: The event type (from EventType enum)
        data: Event-specific payload as dict
        identity: Player identity this event belongs to
        timestamp: When the event was emitted
    """

    type: EventType
    data: dict = field(default_factory=dict)
    identity: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"[{self.type.value}] {self.data}"


# Type alias for event handlers
EventHandler = Callable[[GameEvent], None]


class EventBus:
    """
    Synchronous event bus.

    Listeners are called immediately on emit().
    For async work, listeners should use asyncio.create_task().
    One bus per ProgressSession; there is no module-level instance.
    """

    def __init__(self, history_limit: int = 100):
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._history: list[GameEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: The type of event to listen for
            handler: Callback function that receives GameEvent
        """
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        if handler not in self._listeners[event_type]:
            self._listeners[event_type].append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._listeners and handler in self._listeners[event_type]:
            self._listeners[event_type].remove(handler)

    def emit(self, event_type: EventType, identity: str = "", **data) -> GameEvent:
        """
        Emit an event to all subscribers.

        Args:
            event_type: The type of event
            identity: Player identity context (optional)
            **data: Event-specific data

        Returns:
            The emitted GameEvent (for chaining/testing)
        """
        event = GameEvent(type=event_type, data=data, identity=identity)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit :]

        for handler in list(self._listeners.get(event_type, [])):
            try:
                handler(event)
            except Exception:
                # Listener errors are logged, never propagated to the emitter
                logger.exception("Error in handler for %s", event_type.value)

        return event

    def clear(self) -> None:
        """Clear all listeners. Useful for testing."""
        self._listeners.clear()

    def get_history(self, event_type: EventType | None = None) -> list[GameEvent]:
        """
        Get recent event history.

        Args:
            event_type: Filter by type, or None for all events
        """
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def listener_count(self, event_type: EventType) -> int:
        """Get number of listeners for an event type."""
        return len(self._listeners.get(event_type, []))
