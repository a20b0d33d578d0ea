"""
Field-by-field merge of two snapshots of the same player.

Each field has a named policy. Scalars that differ between the two sides
are reported as ConflictRecords; the merge itself never fails.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from ..state.schema import (
    ConflictRecord,
    MissionProgressRecord,
    MissionRecord,
    MissionStatus,
    PlayerProgressSnapshot,
)


class FieldPolicy(str, Enum):
    MONOTONIC_MAX = "monotonic_max"        # Higher value wins
    REMOTE_IF_NEWER = "remote_if_newer"    # Remote value when remote last_updated is newer
    UNION = "union"                        # Set union, local order first
    PER_RECORD = "per_record"              # Merge keyed records one by one
    LOCAL = "local"                        # Session-owned, local wins


MERGE_POLICIES: dict[str, FieldPolicy] = {
    "experience": FieldPolicy.MONOTONIC_MAX,
    "credits": FieldPolicy.MONOTONIC_MAX,
    "level": FieldPolicy.MONOTONIC_MAX,
    "last_updated": FieldPolicy.MONOTONIC_MAX,
    "name": FieldPolicy.REMOTE_IF_NEWER,
    "position": FieldPolicy.REMOTE_IF_NEWER,
    "stats": FieldPolicy.REMOTE_IF_NEWER,
    "inventory": FieldPolicy.REMOTE_IF_NEWER,
    "missions": FieldPolicy.PER_RECORD,
    "mission_progress": FieldPolicy.PER_RECORD,
    "completed_missions": FieldPolicy.UNION,
    "active_mission_id": FieldPolicy.LOCAL,
}

# Overlapping scalar fields checked for conflicts
CONFLICT_FIELDS = ("name", "level", "experience", "credits", "position")


def _pick(policy: FieldPolicy, local: Any, remote: Any, remote_newer: bool) -> Any:
    if policy == FieldPolicy.MONOTONIC_MAX:
        return max(local, remote)
    if policy == FieldPolicy.REMOTE_IF_NEWER:
        return remote if remote_newer else local
    return local


def _rank(mission: MissionRecord) -> tuple[bool, int]:
    return (mission.is_completed, mission.progress)


def merge_missions(local: list[MissionRecord], remote: list[MissionRecord]) -> list[MissionRecord]:
    """Per mission id: completed beats incomplete, then higher progress. Ties keep local."""
    remote_by_id = {m.id: m for m in remote}
    merged = []
    for mission in local:
        other = remote_by_id.pop(mission.id, None)
        if other is not None and _rank(other) > _rank(mission):
            merged.append(other.model_copy(deep=True))
        else:
            merged.append(mission.model_copy(deep=True))
    for mission in remote:
        if mission.id in remote_by_id:
            merged.append(mission.model_copy(deep=True))
    return merged


def merge_mission_progress(
    local: dict[str, MissionProgressRecord],
    remote: dict[str, MissionProgressRecord],
) -> dict[str, MissionProgressRecord]:
    """Per mission id, the record updated last wins."""
    merged = {key: record.model_copy(deep=True) for key, record in local.items()}
    for key, record in remote.items():
        current = merged.get(key)
        if current is None or record.last_updated > current.last_updated:
            merged[key] = record.model_copy(deep=True)
    return merged


def merge_snapshots(
    local: PlayerProgressSnapshot,
    remote: PlayerProgressSnapshot,
) -> tuple[PlayerProgressSnapshot, list[ConflictRecord]]:
    """
    Merge remote into local.

    Returns:
        (merged snapshot, conflicts). The inputs are not modified.
    """
    remote_newer = remote.last_updated > local.last_updated
    merged = local.model_copy(deep=True)
    conflicts: list[ConflictRecord] = []

    for field in CONFLICT_FIELDS:
        local_value = getattr(local, field)
        remote_value = getattr(remote, field)
        if local_value == remote_value:
            continue
        policy = MERGE_POLICIES[field]
        conflicts.append(ConflictRecord(
            field=field,
            local_value=local_value,
            remote_value=remote_value,
            resolution=policy.value,
        ))
        setattr(merged, field, _pick(policy, local_value, remote_value, remote_newer))

    for field in ("stats", "inventory"):
        if remote_newer:
            setattr(merged, field, getattr(remote.model_copy(deep=True), field))

    merged.missions = merge_missions(local.missions, remote.missions)
    merged.mission_progress = merge_mission_progress(local.mission_progress, remote.mission_progress)

    completed = list(local.completed_missions)
    for mission_id in remote.completed_missions:
        if mission_id not in completed:
            completed.append(mission_id)
    for mission in merged.missions:
        if mission.is_completed and mission.id not in completed:
            completed.append(mission.id)
    merged.completed_missions = completed

    _settle_active(merged, local.active_mission_id or remote.active_mission_id)
    merged.last_updated = max(local.last_updated, remote.last_updated)
    return merged, conflicts


def _settle_active(snapshot: PlayerProgressSnapshot, candidate: str | None) -> None:
    """Keep at most one active mission after a merge."""
    active = snapshot.get_mission(candidate) if candidate else None
    if active is not None and active.is_completed:
        active = None
    snapshot.active_mission_id = active.id if active else None

    for mission in snapshot.missions:
        if mission is active:
            mission.status = MissionStatus.ACTIVE
        elif mission.status == MissionStatus.ACTIVE:
            mission.status = MissionStatus.AVAILABLE
