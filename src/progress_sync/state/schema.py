"""
Pydantic models for player progress.

All persisted state is versioned for migration support.
Designed to serialize to JSON but structured like database tables.
Timestamps are epoch milliseconds throughout.
"""

import time
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


SCHEMA_VERSION = "1.0.0"


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class MissionType(str, Enum):
    MINING = "mining"
    CRAFTING = "crafting"
    EXPLORATION = "exploration"
    OTHER = "other"


class MissionStatus(str, Enum):
    LOCKED = "locked"          # Requirements not met
    AVAILABLE = "available"    # Can be started
    ACTIVE = "active"          # In progress (at most one per identity)
    COMPLETED = "completed"    # Terminal


class EffectCategory(str, Enum):
    MINING_EFFICIENCY = "mining_efficiency"
    CRAFTING_SPEED = "crafting_speed"
    EXPERIENCE_BOOST = "experience_boost"
    RESOURCE_YIELD = "resource_yield"
    ENERGY_RESTORE = "energy_restore"


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def now_ms() -> int:
    return int(time.time() * 1000)


def generate_effect_id() -> str:
    return f"effect_{now_ms()}_{uuid4().hex[:6]}"


# -----------------------------------------------------------------------------
# Inventory & Rewards
# -----------------------------------------------------------------------------

class Resource(BaseModel):
    """Stackable inventory item, merged by id."""
    id: str
    name: str
    type: str                          # metal, crystal, energy, ...
    quantity: int = Field(default=1, ge=0)
    rarity: Rarity = Rarity.COMMON


class RewardDescriptor(BaseModel):
    """What a mission pays out on completion."""
    experience: int = 0
    credits: int = 0
    resources: list[Resource] = Field(default_factory=list)


class RewardSummary(BaseModel):
    """What was actually credited for a completed mission."""
    mission_id: str
    experience: int = 0
    credits: int = 0
    resources: list[Resource] = Field(default_factory=list)
    level_before: int = 1
    level_after: int = 1

    @property
    def leveled_up(self) -> bool:
        return self.level_after > self.level_before


# -----------------------------------------------------------------------------
# Missions
# -----------------------------------------------------------------------------

class UnlockRequirements(BaseModel):
    """Level threshold plus prerequisite missions."""
    level: int = 1
    completed_missions: list[str] = Field(default_factory=list)

    def is_met(self, player_level: int, completed: set[str] | list[str]) -> bool:
        """Check the unlock predicate against a player's level and completed set."""
        if player_level < self.level:
            return False
        done = set(completed)
        return all(mission_id in done for mission_id in self.completed_missions)


class MissionEvent(BaseModel):
    """A gameplay event that may advance the active mission."""
    type: str                          # "mine", "craft", "explore"
    target: str | None = None          # Resource type, item rarity, activity kind
    quantity: int = Field(default=1, ge=1)


class ProgressRule(BaseModel):
    """
    One row of a mission's rule table.

    Matches on event type and (optionally) target. Yields `amount` per
    matching event, or `amount * quantity` when per_unit is set.
    """
    event: str
    target: str | None = None          # None matches any target
    amount: int = Field(default=1, ge=0)
    per_unit: bool = False

    def delta_for(self, event: MissionEvent) -> int:
        if event.type != self.event:
            return 0
        if self.target is not None and event.target != self.target:
            return 0
        return self.amount * (event.quantity if self.per_unit else 1)


class MissionRecord(BaseModel):
    """A catalog mission instantiated for one player."""
    id: str
    title: str = ""
    description: str = ""
    type: MissionType = MissionType.OTHER
    status: MissionStatus = MissionStatus.LOCKED
    progress: int = Field(default=0, ge=0)
    max_progress: int = Field(default=1, ge=1)
    rewards: RewardDescriptor = Field(default_factory=RewardDescriptor)
    requirements: UnlockRequirements = Field(default_factory=UnlockRequirements)
    rules: list[ProgressRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _progress_within_bounds(self) -> "MissionRecord":
        if self.progress > self.max_progress:
            raise ValueError(
                f"progress {self.progress} exceeds max_progress {self.max_progress}"
            )
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == MissionStatus.COMPLETED

    def delta_for(self, event: MissionEvent) -> int:
        """First matching rule wins."""
        for rule in self.rules:
            delta = rule.delta_for(event)
            if delta:
                return delta
        return 0


class MissionProgressRecord(BaseModel):
    """Durable audit trail of a started mission."""
    mission_id: str
    player_id: str
    progress: int = 0
    completed: bool = False
    rewards: RewardDescriptor = Field(default_factory=RewardDescriptor)
    started_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None
    last_updated: int = Field(default_factory=now_ms)


# -----------------------------------------------------------------------------
# Player Snapshot
# -----------------------------------------------------------------------------

class PlayerProgressSnapshot(BaseModel):
    """
    Complete player progress.

    This is the root model that gets serialized locally and mirrored
    remotely. Player fields belong to the caller; mission fields belong
    to MissionEngine.
    """
    schema_version: str = SCHEMA_VERSION

    id: str                            # Identity (account / wallet address)
    name: str = ""
    level: int = Field(default=1, ge=1)
    experience: int = Field(default=0, ge=0)
    credits: int = 0
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    stats: dict[str, float] = Field(default_factory=dict)
    inventory: list[Resource] = Field(default_factory=list)

    # Mission state
    missions: list[MissionRecord] = Field(default_factory=list)
    active_mission_id: str | None = None
    completed_missions: list[str] = Field(default_factory=list)
    mission_progress: dict[str, MissionProgressRecord] = Field(default_factory=dict)

    last_updated: int = Field(default_factory=now_ms)

    def get_mission(self, mission_id: str) -> MissionRecord | None:
        for mission in self.missions:
            if mission.id == mission_id:
                return mission
        return None

    @property
    def active_mission(self) -> MissionRecord | None:
        if self.active_mission_id is None:
            return None
        return self.get_mission(self.active_mission_id)

    def get_resource(self, resource_id: str) -> Resource | None:
        for resource in self.inventory:
            if resource.id == resource_id:
                return resource
        return None


# -----------------------------------------------------------------------------
# Item Effects
# -----------------------------------------------------------------------------

class ItemEffect(BaseModel):
    """
    A time-bounded multiplicative bonus.

    Stored with absolute timestamps so it can be rebuilt after a restart.
    Activity is always derived from the clock, never cached.
    """
    id: str = Field(default_factory=generate_effect_id)
    category: EffectCategory
    multiplier: float = 1.0
    duration: int = Field(ge=0)        # ms
    start_time: int                    # epoch ms
    quantity: int = 1                  # Items consumed to create this effect
    description: str = ""

    @property
    def expires_at(self) -> int:
        return self.start_time + self.duration

    def is_active(self, now: int) -> bool:
        return now - self.start_time < self.duration

    def remaining(self, now: int) -> int:
        return max(0, self.duration - (now - self.start_time))


class EffectLedger(BaseModel):
    """Persisted form of one identity's effect engine."""
    schema_version: str = SCHEMA_VERSION
    total_items_used: int = 0
    effects: list[ItemEffect] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Synchronization
# -----------------------------------------------------------------------------

class SyncMeta(BaseModel):
    """Per-identity sync bookkeeping, stored next to the snapshot."""
    last_sync_time: int = 0            # Last successful remote write
    last_remote_updated: int = 0       # last_updated of the newest remote copy seen


class SyncStatus(BaseModel):
    """Derived view. Never stored."""
    has_local_progress: bool = False
    has_remote_progress: bool = False
    last_sync_time: int = 0
    needs_sync: bool = False


class ConflictRecord(BaseModel):
    """A field that differed between local and remote during reconciliation."""
    field: str
    local_value: Any = None
    remote_value: Any = None
    resolution: str = ""               # Policy that picked the merged value


class SyncResult(BaseModel):
    """Outcome of a reconciliation. Failures are values, not exceptions."""
    success: bool
    merged: PlayerProgressSnapshot | None = None
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    error: str | None = None
    skipped: bool = False              # Dropped by the single-flight guard

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0
