"""State management for player progress."""

from .schema import (
    ConflictRecord,
    EffectCategory,
    EffectLedger,
    ItemEffect,
    MissionEvent,
    MissionProgressRecord,
    MissionRecord,
    MissionStatus,
    MissionType,
    PlayerProgressSnapshot,
    ProgressRule,
    Rarity,
    Resource,
    RewardDescriptor,
    RewardSummary,
    SyncMeta,
    SyncResult,
    SyncStatus,
    UnlockRequirements,
)
from .manager import ProgressManager
from .store import ProgressStore, JsonProgressStore, MemoryProgressStore
from .event_bus import EventBus, EventType, GameEvent

__all__ = [
    # Schema
    "ConflictRecord",
    "EffectCategory",
    "EffectLedger",
    "ItemEffect",
    "MissionEvent",
    "MissionProgressRecord",
    "MissionRecord",
    "MissionStatus",
    "MissionType",
    "PlayerProgressSnapshot",
    "ProgressRule",
    "Rarity",
    "Resource",
    "RewardDescriptor",
    "RewardSummary",
    "SyncMeta",
    "SyncResult",
    "SyncStatus",
    "UnlockRequirements",
    # Manager
    "ProgressManager",
    # Store
    "ProgressStore",
    "JsonProgressStore",
    "MemoryProgressStore",
    # Event Bus
    "EventBus",
    "EventType",
    "GameEvent",
]
