"""Progress systems: missions, rewards and item effects."""

from .catalog import MissionCatalog, MissionTemplate, default_catalog
from .effects import ItemEffectEngine, MULTIPLIER_TIERS, tier_multiplier
from .missions import MissionEngine, MissionUpdate
from .rewards import RewardIssuer, SnapshotRewardIssuer

__all__ = [
    "MissionCatalog",
    "MissionTemplate",
    "default_catalog",
    "ItemEffectEngine",
    "MULTIPLIER_TIERS",
    "tier_multiplier",
    "MissionEngine",
    "MissionUpdate",
    "RewardIssuer",
    "SnapshotRewardIssuer",
]
