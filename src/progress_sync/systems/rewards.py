"""
Reward issuance for completed missions.

RewardIssuer is the external collaborator contract. SnapshotRewardIssuer
credits experience, credits and resources straight into the player's
snapshot through the ProgressManager.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..state.schema import MissionRecord, RewardSummary

if TYPE_CHECKING:
    from ..state.manager import ProgressManager


@runtime_checkable
class RewardIssuer(Protocol):
    def award(self, identity: str, mission: MissionRecord) -> RewardSummary:
        """Credit a completed mission. Called exactly once per completion."""
        ...


class SnapshotRewardIssuer:
    """Credits rewards into the local snapshot. Level follows experience."""

    def __init__(self, manager: "ProgressManager"):
        self.manager = manager

    def award(self, identity: str, mission: MissionRecord) -> RewardSummary:
        snapshot = self.manager.require(identity)
        rewards = mission.rewards
        level_before = snapshot.level

        if rewards.experience:
            self.manager.add_experience(identity, rewards.experience)
        if rewards.credits:
            self.manager.add_credits(identity, rewards.credits)
        for resource in rewards.resources:
            self.manager.add_resource(identity, resource)

        return RewardSummary(
            mission_id=mission.id,
            experience=rewards.experience,
            credits=rewards.credits,
            resources=[r.model_copy() for r in rewards.resources],
            level_before=level_before,
            level_after=self.manager.require(identity).level,
        )


def format_reward_summary(summary: RewardSummary) -> str:
    """One-line text for notifications and the CLI."""
    parts = []
    if summary.experience:
        parts.append(f"{summary.experience} XP")
    if summary.credits:
        parts.append(f"{summary.credits} credits")
    for resource in summary.resources:
        parts.append(f"{resource.quantity}x {resource.name}")
    text = ", ".join(parts) or "nothing"
    if summary.leveled_up:
        text += f" (level {summary.level_after}!)"
    return text
