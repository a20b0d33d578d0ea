"""
Tests for the field-by-field snapshot merge.
"""

from progress_sync.state import MissionProgressRecord, MissionRecord, MissionStatus, Resource
from progress_sync.sync.merge import FieldPolicy, MERGE_POLICIES, merge_snapshots

from conftest import T0, make_snapshot


def mission(mission_id, status=MissionStatus.AVAILABLE, progress=0, max_progress=10):
    return MissionRecord(id=mission_id, status=status, progress=progress, max_progress=max_progress)


class TestScalarMerge:
    """Conflict detection and per-field policies."""

    def test_experience_conflict_takes_higher(self):
        """500 vs 800 gives one conflict and merged 800."""
        local = make_snapshot(experience=500)
        remote = make_snapshot(experience=800)
        merged, conflicts = merge_snapshots(local, remote)

        assert merged.experience == 800
        assert len(conflicts) == 1
        assert conflicts[0].field == "experience"
        assert conflicts[0].local_value == 500
        assert conflicts[0].remote_value == 800
        assert conflicts[0].resolution == FieldPolicy.MONOTONIC_MAX.value

    def test_identical_snapshots_no_conflicts(self):
        merged, conflicts = merge_snapshots(make_snapshot(credits=10), make_snapshot(credits=10))
        assert conflicts == []
        assert merged.credits == 10

    def test_monotonic_fields_take_higher_either_side(self):
        local = make_snapshot(credits=900, level=4)
        remote = make_snapshot(credits=300, level=6)
        merged, conflicts = merge_snapshots(local, remote)
        assert (merged.credits, merged.level) == (900, 6)
        assert {c.field for c in conflicts} == {"credits", "level"}

    def test_name_remote_wins_when_newer(self):
        local = make_snapshot(name="Old", last_updated=T0)
        remote = make_snapshot(name="New", last_updated=T0 + 1)
        merged, _ = merge_snapshots(local, remote)
        assert merged.name == "New"

    def test_position_local_wins_when_remote_older(self):
        local = make_snapshot(position=(1.0, 2.0, 3.0), last_updated=T0 + 5)
        remote = make_snapshot(position=(9.0, 9.0, 9.0), last_updated=T0)
        merged, conflicts = merge_snapshots(local, remote)
        assert merged.position == (1.0, 2.0, 3.0)
        assert conflicts[0].resolution == FieldPolicy.REMOTE_IF_NEWER.value

    def test_last_updated_is_max(self):
        merged, _ = merge_snapshots(make_snapshot(last_updated=T0 + 7), make_snapshot(last_updated=T0))
        assert merged.last_updated == T0 + 7

    def test_inputs_untouched(self):
        local = make_snapshot(experience=1)
        remote = make_snapshot(experience=2)
        merge_snapshots(local, remote)
        assert local.experience == 1

    def test_inventory_follows_newer_side(self):
        local = make_snapshot(inventory=[Resource(id="a", name="A", type="metal")], last_updated=T0)
        remote = make_snapshot(inventory=[Resource(id="b", name="B", type="metal")], last_updated=T0 + 1)
        merged, _ = merge_snapshots(local, remote)
        assert [r.id for r in merged.inventory] == ["b"]

    def test_policy_table_covers_conflict_fields(self):
        for field in ("name", "level", "experience", "credits", "position"):
            assert field in MERGE_POLICIES


class TestMissionMerge:
    """Per-record mission merge."""

    def test_higher_progress_wins(self):
        local = make_snapshot(missions=[mission("m", MissionStatus.ACTIVE, 3)], active_mission_id="m")
        remote = make_snapshot(missions=[mission("m", MissionStatus.ACTIVE, 6)], active_mission_id="m")
        merged, _ = merge_snapshots(local, remote)
        assert merged.get_mission("m").progress == 6
        assert merged.active_mission_id == "m"
        assert merged.get_mission("m").status == MissionStatus.ACTIVE

    def test_completed_beats_active(self):
        local = make_snapshot(missions=[mission("m", MissionStatus.ACTIVE, 3)], active_mission_id="m")
        remote = make_snapshot(
            missions=[mission("m", MissionStatus.COMPLETED, 10)],
            completed_missions=["m"],
        )
        merged, _ = merge_snapshots(local, remote)
        assert merged.get_mission("m").is_completed
        assert merged.active_mission_id is None
        assert merged.completed_missions == ["m"]

    def test_completed_set_is_union(self):
        local = make_snapshot(completed_missions=["a"])
        remote = make_snapshot(completed_missions=["b", "a"])
        merged, _ = merge_snapshots(local, remote)
        assert merged.completed_missions == ["a", "b"]

    def test_remote_only_missions_appended(self):
        local = make_snapshot(missions=[mission("a")])
        remote = make_snapshot(missions=[mission("a"), mission("b")])
        merged, _ = merge_snapshots(local, remote)
        assert [m.id for m in merged.missions] == ["a", "b"]

    def test_at_most_one_active(self):
        local = make_snapshot(missions=[mission("a", MissionStatus.ACTIVE, 1), mission("b")], active_mission_id="a")
        remote = make_snapshot(missions=[mission("a"), mission("b", MissionStatus.ACTIVE, 2)], active_mission_id="b")
        merged, _ = merge_snapshots(local, remote)
        active = [m.id for m in merged.missions if m.status == MissionStatus.ACTIVE]
        assert active == ["a"]
        assert merged.active_mission_id == "a"

    def test_progress_record_newer_wins(self):
        local = make_snapshot(mission_progress={
            "m": MissionProgressRecord(mission_id="m", player_id="wallet1", progress=2, last_updated=T0),
        })
        remote = make_snapshot(mission_progress={
            "m": MissionProgressRecord(mission_id="m", player_id="wallet1", progress=5, last_updated=T0 + 1),
        })
        merged, _ = merge_snapshots(local, remote)
        assert merged.mission_progress["m"].progress == 5
