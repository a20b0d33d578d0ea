"""
Mission state machine.

locked -> available -> active -> completed (terminal)

Progress only moves forward through gameplay events mapped by the active
mission's rule table. Completion runs a fixed sequence: status, active
reference, completed set, reward (exactly once), then a best-effort remote
mirror that never blocks the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel

from ..errors import InvalidStateError, UnknownMissionError
from ..state.event_bus import EventBus, EventType
from ..state.schema import (
    MissionEvent,
    MissionProgressRecord,
    MissionRecord,
    MissionStatus,
    RewardSummary,
)
from .catalog import MissionCatalog
from .rewards import RewardIssuer

if TYPE_CHECKING:
    from ..state.manager import ProgressManager

logger = logging.getLogger(__name__)

# (identity, mission_id, progress) -> None. Must not block.
MissionMirror = Callable[[str, str, int], None]


class MissionUpdate(BaseModel):
    """Result of one progress step."""
    mission_id: str
    previous_progress: int
    progress: int
    max_progress: int
    status: MissionStatus
    completed: bool = False            # True only on the call that completed it
    reward: RewardSummary | None = None


class MissionEngine:
    """Drives per-player mission records against the catalog."""

    def __init__(
        self,
        manager: "ProgressManager",
        catalog: MissionCatalog,
        rewards: RewardIssuer,
        bus: EventBus | None = None,
        mirror: MissionMirror | None = None,
    ):
        self.manager = manager
        self.catalog = catalog
        self.rewards = rewards
        self.bus = bus or manager.bus
        self._mirror = mirror

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def ensure_catalog(self, identity: str) -> list[str]:
        """
        Bring a snapshot's mission list in line with the catalog.

        Missions added to the catalog later are appended locked. Existing
        records keep status and progress; their rules, requirements and
        rewards are refreshed from the catalog. Returns appended ids.
        """
        snapshot = self.manager.require(identity)
        known = {m.id for m in snapshot.missions}
        added = []
        changed = False

        for template in self.catalog:
            if template.id not in known:
                snapshot.missions.append(template.instantiate())
                added.append(template.id)
                continue
            record = snapshot.get_mission(template.id)
            if (
                record.rules != template.rules
                or record.requirements != template.requirements
                or record.rewards != template.rewards
            ):
                record.rules = [rule.model_copy() for rule in template.rules]
                record.requirements = template.requirements.model_copy(deep=True)
                record.rewards = template.rewards.model_copy(deep=True)
                changed = True

        if added:
            logger.info("Added %d catalog missions for %s", len(added), identity)
        unlocked = self.refresh_unlocks(identity, persist=False)
        if added or changed or unlocked:
            self.manager.save(identity)
        return added

    def refresh_unlocks(self, identity: str, persist: bool = True) -> list[str]:
        """Flip locked missions whose requirements now hold. Returns their ids."""
        snapshot = self.manager.require(identity)
        completed = set(snapshot.completed_missions)
        unlocked = []

        for mission in snapshot.missions:
            if mission.status != MissionStatus.LOCKED:
                continue
            if mission.requirements.is_met(snapshot.level, completed):
                mission.status = MissionStatus.AVAILABLE
                unlocked.append(mission.id)

        for mission_id in unlocked:
            self.bus.emit(EventType.MISSION_UNLOCKED, identity=identity, mission_id=mission_id)
        if unlocked and persist:
            self.manager.save(identity)
        return unlocked

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_missions(self, identity: str) -> list[MissionRecord]:
        return list(self.manager.require(identity).missions)

    def get_available(self, identity: str) -> list[MissionRecord]:
        return [
            m for m in self.manager.require(identity).missions
            if m.status == MissionStatus.AVAILABLE
        ]

    def get_active(self, identity: str) -> MissionRecord | None:
        return self.manager.require(identity).active_mission

    def get_mission(self, identity: str, mission_id: str) -> MissionRecord:
        mission = self.manager.require(identity).get_mission(mission_id)
        if mission is None:
            raise UnknownMissionError(mission_id)
        return mission

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def start_mission(self, identity: str, mission_id: str) -> MissionRecord:
        """
        Move an available mission to active.

        Raises:
            UnknownMissionError: mission_id not in this player's missions
            InvalidStateError: another mission is active, or target not available
        """
        snapshot = self.manager.require(identity)
        mission = self.get_mission(identity, mission_id)

        active = snapshot.active_mission
        if active is not None:
            raise InvalidStateError(mission_id, f"mission {active.id!r} is already active", "start")
        if mission.status != MissionStatus.AVAILABLE:
            raise InvalidStateError(mission_id, mission.status.value, "start")

        now = self.manager.clock()
        mission.status = MissionStatus.ACTIVE
        snapshot.active_mission_id = mission.id
        snapshot.mission_progress[mission.id] = MissionProgressRecord(
            mission_id=mission.id,
            player_id=identity,
            progress=mission.progress,
            rewards=mission.rewards.model_copy(deep=True),
            started_at=now,
            last_updated=now,
        )
        self.manager.save(identity)

        logger.info("%s started mission %s", identity, mission.id)
        self.bus.emit(EventType.MISSION_STARTED, identity=identity, mission_id=mission.id)
        self._mirror_progress(identity, mission)
        return mission

    def apply_event(self, identity: str, event: MissionEvent) -> MissionUpdate | None:
        """
        Route a gameplay event to the active mission.

        Returns None when there is no active mission or no rule matches.
        """
        mission = self.manager.require(identity).active_mission
        if mission is None:
            return None
        delta = mission.delta_for(event)
        if delta <= 0:
            return None
        return self._advance(identity, mission, delta)

    def track_mining(self, identity: str, resource_type: str | None = None, quantity: int = 1) -> MissionUpdate | None:
        return self.apply_event(identity, MissionEvent(type="mine", target=resource_type, quantity=quantity))

    def track_crafting(self, identity: str, item_rarity: str | None = None, quantity: int = 1) -> MissionUpdate | None:
        return self.apply_event(identity, MissionEvent(type="craft", target=item_rarity, quantity=quantity))

    def track_exploration(self, identity: str, kind: str | None = None, quantity: int = 1) -> MissionUpdate | None:
        return self.apply_event(identity, MissionEvent(type="explore", target=kind, quantity=quantity))

    def add_progress(self, identity: str, mission_id: str, delta: int) -> MissionUpdate:
        """Add raw progress to the active mission, bypassing the rule table."""
        if delta < 0:
            raise ValueError("Progress delta must be non-negative")
        mission = self.get_mission(identity, mission_id)
        if mission.status != MissionStatus.ACTIVE:
            raise InvalidStateError(mission_id, mission.status.value, "progress")
        return self._advance(identity, mission, delta)

    def complete_mission(self, identity: str, mission_id: str) -> MissionUpdate:
        """Drive an active mission to max_progress. No-op if already completed."""
        mission = self.get_mission(identity, mission_id)
        if mission.is_completed:
            return MissionUpdate(
                mission_id=mission.id,
                previous_progress=mission.progress,
                progress=mission.progress,
                max_progress=mission.max_progress,
                status=mission.status,
            )
        if mission.status != MissionStatus.ACTIVE:
            raise InvalidStateError(mission_id, mission.status.value, "complete")
        return self._advance(identity, mission, mission.max_progress - mission.progress)

    def reset_mission(self, identity: str, mission_id: str) -> MissionRecord:
        """Zero a mission's progress. The only operation that lowers progress."""
        snapshot = self.manager.require(identity)
        mission = self.get_mission(identity, mission_id)

        mission.progress = 0
        if snapshot.active_mission_id == mission.id:
            snapshot.active_mission_id = None
        snapshot.completed_missions = [m for m in snapshot.completed_missions if m != mission.id]
        snapshot.mission_progress.pop(mission.id, None)

        completed = set(snapshot.completed_missions)
        if mission.requirements.is_met(snapshot.level, completed):
            mission.status = MissionStatus.AVAILABLE
        else:
            mission.status = MissionStatus.LOCKED
        self.manager.save(identity)

        self.bus.emit(EventType.MISSION_RESET, identity=identity, mission_id=mission.id)
        return mission

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _advance(self, identity: str, mission: MissionRecord, delta: int) -> MissionUpdate:
        snapshot = self.manager.require(identity)
        now = self.manager.clock()
        previous = mission.progress
        mission.progress = min(mission.max_progress, previous + delta)

        record = snapshot.mission_progress.get(mission.id)
        if record is None:
            record = MissionProgressRecord(
                mission_id=mission.id,
                player_id=identity,
                rewards=mission.rewards.model_copy(deep=True),
                started_at=now,
            )
            snapshot.mission_progress[mission.id] = record
        record.progress = mission.progress
        record.last_updated = now

        if mission.progress < mission.max_progress:
            self.manager.save(identity)
            self.bus.emit(
                EventType.MISSION_PROGRESS,
                identity=identity,
                mission_id=mission.id,
                progress=mission.progress,
                max_progress=mission.max_progress,
            )
            self._mirror_progress(identity, mission)
            return MissionUpdate(
                mission_id=mission.id,
                previous_progress=previous,
                progress=mission.progress,
                max_progress=mission.max_progress,
                status=mission.status,
            )

        # Completion, in order
        mission.status = MissionStatus.COMPLETED
        if snapshot.active_mission_id == mission.id:
            snapshot.active_mission_id = None
        if mission.id not in snapshot.completed_missions:
            snapshot.completed_missions.append(mission.id)
        record.completed = True
        record.completed_at = now
        self.manager.save(identity)

        reward = self._issue_reward(identity, mission)
        self.refresh_unlocks(identity)

        logger.info("%s completed mission %s", identity, mission.id)
        self.bus.emit(
            EventType.MISSION_COMPLETED,
            identity=identity,
            mission_id=mission.id,
            reward=reward.model_dump() if reward else None,
        )
        self._mirror_progress(identity, mission)
        return MissionUpdate(
            mission_id=mission.id,
            previous_progress=previous,
            progress=mission.progress,
            max_progress=mission.max_progress,
            status=mission.status,
            completed=True,
            reward=reward,
        )

    def _issue_reward(self, identity: str, mission: MissionRecord) -> RewardSummary | None:
        """Award once. Failures are logged and surfaced, never rolled back."""
        try:
            summary = self.rewards.award(identity, mission)
        except Exception as e:
            logger.exception("Reward for %s failed for %s", mission.id, identity)
            self.bus.emit(EventType.REWARD_FAILED, identity=identity, mission_id=mission.id, error=str(e))
            return None
        self.bus.emit(EventType.REWARD_ISSUED, identity=identity, mission_id=mission.id, summary=summary.model_dump())
        return summary

    def _mirror_progress(self, identity: str, mission: MissionRecord) -> None:
        if self._mirror is not None:
            self._mirror(identity, mission.id, mission.progress)
