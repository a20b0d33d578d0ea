"""
Tests for the mission state machine and reward issuance.
"""

import pytest

from progress_sync.errors import InvalidStateError, UnknownMissionError
from progress_sync.state import (
    EventType,
    MissionEvent,
    MissionStatus,
    ProgressRule,
    RewardDescriptor,
    RewardSummary,
    UnlockRequirements,
)
from progress_sync.systems.catalog import MissionCatalog, MissionTemplate
from progress_sync.systems.missions import MissionEngine
from progress_sync.systems.rewards import SnapshotRewardIssuer, format_reward_summary


class CountingIssuer:
    """Reward issuer that records calls."""

    def __init__(self, inner=None, fail=False):
        self.inner = inner
        self.fail = fail
        self.calls = []

    def award(self, identity, mission):
        self.calls.append((identity, mission.id))
        if self.fail:
            raise RuntimeError("ledger of rewards is down")
        if self.inner is not None:
            return self.inner.award(identity, mission)
        return RewardSummary(mission_id=mission.id)


@pytest.fixture
def small_catalog():
    """One ten-step survey mission gated behind a tutorial."""
    return MissionCatalog([
        MissionTemplate(
            id="tutorial",
            title="Tutorial",
            max_progress=1,
            rules=[ProgressRule(event="mine")],
            rewards=RewardDescriptor(experience=100, credits=50),
        ),
        MissionTemplate(
            id="survey",
            title="Survey",
            max_progress=10,
            requirements=UnlockRequirements(completed_missions=["tutorial"]),
            rules=[ProgressRule(event="mine", per_unit=True)],
            rewards=RewardDescriptor(experience=1500, credits=300),
        ),
    ])


@pytest.fixture
def mirror_calls():
    return []


@pytest.fixture
def issuer(manager):
    return CountingIssuer(SnapshotRewardIssuer(manager))


@pytest.fixture
def engine(manager, small_catalog, issuer, bus, mirror_calls, player):
    engine = MissionEngine(
        manager,
        small_catalog,
        issuer,
        bus,
        mirror=lambda *args: mirror_calls.append(args),
    )
    engine.ensure_catalog("wallet1")
    return engine


class TestUnlocks:
    """locked -> available."""

    def test_requirement_free_missions_start_available(self, engine):
        statuses = {m.id: m.status for m in engine.get_missions("wallet1")}
        assert statuses == {"tutorial": MissionStatus.AVAILABLE, "survey": MissionStatus.LOCKED}

    def test_completion_unlocks_dependents(self, engine, bus):
        engine.start_mission("wallet1", "tutorial")
        engine.track_mining("wallet1")
        assert engine.get_mission("wallet1", "survey").status == MissionStatus.AVAILABLE
        unlocked = bus.get_history(EventType.MISSION_UNLOCKED)
        assert unlocked[-1].data["mission_id"] == "survey"

    def test_level_requirement(self, manager, bus, player):
        catalog = MissionCatalog([
            MissionTemplate(id="veteran", title="Veteran", requirements=UnlockRequirements(level=3)),
        ])
        engine = MissionEngine(manager, catalog, CountingIssuer(), bus)
        engine.ensure_catalog("wallet1")
        assert engine.get_mission("wallet1", "veteran").status == MissionStatus.LOCKED

        manager.add_experience("wallet1", 2000)
        assert engine.refresh_unlocks("wallet1") == ["veteran"]

    def test_new_catalog_missions_appended_locked(self, manager, bus, player, small_catalog):
        engine = MissionEngine(manager, small_catalog, CountingIssuer(), bus)
        engine.ensure_catalog("wallet1")
        grown = MissionCatalog(list(small_catalog) + [
            MissionTemplate(id="late", title="Late", requirements=UnlockRequirements(level=50)),
        ])
        engine.catalog = grown
        assert engine.ensure_catalog("wallet1") == ["late"]
        assert engine.get_mission("wallet1", "late").status == MissionStatus.LOCKED
        assert len(engine.get_missions("wallet1")) == 3


class TestStartMission:
    """available -> active."""

    def test_start(self, engine, player):
        mission = engine.start_mission("wallet1", "tutorial")
        assert mission.status == MissionStatus.ACTIVE
        assert player.active_mission_id == "tutorial"
        assert "tutorial" in player.mission_progress

    def test_unknown_mission(self, engine):
        with pytest.raises(UnknownMissionError):
            engine.start_mission("wallet1", "nonexistent")

    def test_locked_mission(self, engine):
        with pytest.raises(InvalidStateError):
            engine.start_mission("wallet1", "survey")

    def test_only_one_active(self, engine, manager, small_catalog, player):
        engine.start_mission("wallet1", "tutorial")
        engine.get_mission("wallet1", "survey").status = MissionStatus.AVAILABLE
        with pytest.raises(InvalidStateError):
            engine.start_mission("wallet1", "survey")
        assert player.active_mission_id == "tutorial"

    def test_completed_cannot_restart(self, engine):
        engine.start_mission("wallet1", "tutorial")
        engine.complete_mission("wallet1", "tutorial")
        with pytest.raises(InvalidStateError):
            engine.start_mission("wallet1", "tutorial")


class TestProgress:
    """active -> completed."""

    def _start_survey(self, engine):
        engine.start_mission("wallet1", "tutorial")
        engine.complete_mission("wallet1", "tutorial")
        engine.start_mission("wallet1", "survey")

    def test_four_four_four_on_ten(self, engine, issuer, player, mirror_calls):
        """4, 4, 4 against max 10 gives 4, 8, 10; completes on the third call."""
        self._start_survey(engine)
        results = [engine.track_mining("wallet1", quantity=4) for _ in range(3)]

        assert [r.progress for r in results] == [4, 8, 10]
        assert [r.completed for r in results] == [False, False, True]
        assert issuer.calls.count(("wallet1", "survey")) == 1
        assert player.active_mission_id is None
        assert player.completed_missions.count("survey") == 1
        assert mirror_calls[-1] == ("wallet1", "survey", 10)

    def test_reward_credited(self, engine, player):
        self._start_survey(engine)
        update = engine.add_progress("wallet1", "survey", 10)
        assert update.reward.experience == 1500
        assert player.experience == 1600
        assert player.credits == 1000 + 50 + 300
        assert player.level == 2
        assert update.reward.leveled_up

    def test_progress_never_exceeds_max(self, engine):
        self._start_survey(engine)
        update = engine.track_mining("wallet1", quantity=25)
        assert update.progress == 10

    def test_progress_is_monotonic(self, engine):
        self._start_survey(engine)
        seen = [engine.track_mining("wallet1", quantity=q).progress for q in (1, 3, 2)]
        assert seen == sorted(seen)

    def test_no_active_mission(self, engine):
        assert engine.track_mining("wallet1") is None

    def test_non_matching_event_ignored(self, engine):
        engine.start_mission("wallet1", "tutorial")
        assert engine.track_crafting("wallet1") is None
        assert engine.get_mission("wallet1", "tutorial").progress == 0

    def test_target_rule(self, manager, bus, player):
        catalog = MissionCatalog([
            MissionTemplate(
                id="crystals",
                title="Crystals",
                max_progress=5,
                rules=[ProgressRule(event="mine", target="crystal")],
            ),
        ])
        engine = MissionEngine(manager, catalog, CountingIssuer(), bus)
        engine.ensure_catalog("wallet1")
        engine.start_mission("wallet1", "crystals")
        assert engine.apply_event("wallet1", MissionEvent(type="mine", target="metal")) is None
        assert engine.apply_event("wallet1", MissionEvent(type="mine", target="crystal", quantity=3)).progress == 1

    def test_negative_progress_rejected(self, engine):
        engine.start_mission("wallet1", "tutorial")
        with pytest.raises(ValueError):
            engine.add_progress("wallet1", "tutorial", -1)

    def test_progress_on_inactive_mission(self, engine):
        with pytest.raises(InvalidStateError):
            engine.add_progress("wallet1", "tutorial", 1)


class TestCompletion:
    """Exactly-once completion."""

    def test_complete_is_idempotent(self, engine, issuer, player):
        engine.start_mission("wallet1", "tutorial")
        first = engine.complete_mission("wallet1", "tutorial")
        second = engine.complete_mission("wallet1", "tutorial")

        assert first.completed is True
        assert second.completed is False
        assert second.reward is None
        assert issuer.calls == [("wallet1", "tutorial")]
        assert player.completed_missions == ["tutorial"]

    def test_audit_record(self, engine, player, scheduler):
        engine.start_mission("wallet1", "tutorial")
        engine.complete_mission("wallet1", "tutorial")
        record = player.mission_progress["tutorial"]
        assert record.completed is True
        assert record.completed_at == scheduler.now()
        assert record.progress == 1

    def test_reward_failure_surfaced_not_rolled_back(self, manager, small_catalog, bus, player):
        issuer = CountingIssuer(fail=True)
        engine = MissionEngine(manager, small_catalog, issuer, bus)
        engine.ensure_catalog("wallet1")
        engine.start_mission("wallet1", "tutorial")
        update = engine.complete_mission("wallet1", "tutorial")

        assert update.completed is True
        assert update.reward is None
        assert engine.get_mission("wallet1", "tutorial").status == MissionStatus.COMPLETED
        assert bus.get_history(EventType.REWARD_FAILED)

    def test_completion_events(self, engine, bus):
        engine.start_mission("wallet1", "tutorial")
        engine.track_mining("wallet1")
        assert bus.get_history(EventType.MISSION_COMPLETED)[-1].data["mission_id"] == "tutorial"
        assert bus.get_history(EventType.REWARD_ISSUED)

    def test_completed_state_persisted(self, engine, memory_store):
        engine.start_mission("wallet1", "tutorial")
        engine.track_mining("wallet1")
        stored = memory_store.load("wallet1")
        assert stored.completed_missions == ["tutorial"]
        assert stored.active_mission_id is None


class TestReset:
    """The only way progress goes down."""

    def test_reset_completed_mission(self, engine, player):
        engine.start_mission("wallet1", "tutorial")
        engine.complete_mission("wallet1", "tutorial")
        mission = engine.reset_mission("wallet1", "tutorial")
        assert mission.progress == 0
        assert mission.status == MissionStatus.AVAILABLE
        assert "tutorial" not in player.completed_missions

    def test_reset_active_clears_reference(self, engine, player):
        engine.start_mission("wallet1", "tutorial")
        engine.reset_mission("wallet1", "tutorial")
        assert player.active_mission_id is None


class TestRewardSummary:
    def test_format(self):
        summary = RewardSummary(mission_id="m", experience=100, credits=50, level_before=1, level_after=2)
        assert format_reward_summary(summary) == "100 XP, 50 credits (level 2!)"
