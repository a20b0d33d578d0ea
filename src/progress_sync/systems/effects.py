"""
Consumable item effects.

Using items grants a time-bounded multiplier in one category. The size of
the multiplier depends on how many items the player has used over their
lifetime; the duration scales with how many are consumed at once. A new
use replaces the active effect of its category instead of stacking.

Effects are stored with absolute timestamps. Activity is derived from the
clock on every read, and expiry timers are rebuilt from the ledger after a
restart.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..state.event_bus import EventBus, EventType
from ..state.schema import EffectCategory, EffectLedger, ItemEffect, Rarity, generate_effect_id
from ..timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

# (minimum lifetime items used, multiplier)
MULTIPLIER_TIERS: list[tuple[int, float]] = [
    (0, 1.00),
    (1, 1.03),
    (5, 1.10),
    (11, 1.20),
    (26, 1.35),
    (41, 1.50),
    (101, 1.70),
]


def tier_multiplier(total_items_used: int) -> float:
    """Multiplier for a lifetime consumption count."""
    multiplier = MULTIPLIER_TIERS[0][1]
    for threshold, value in MULTIPLIER_TIERS:
        if total_items_used >= threshold:
            multiplier = value
    return multiplier


# Resource type -> effects granted per use: (category, ms per unit, label suffix)
ITEM_USAGE: dict[str, list[tuple[EffectCategory, int, str]]] = {
    "energy": [(EffectCategory.MINING_EFFICIENCY, 300_000, "Mining Boost")],
    "crystal": [(EffectCategory.EXPERIENCE_BOOST, 600_000, "Experience Boost")],
    "metal": [
        (EffectCategory.CRAFTING_SPEED, 450_000, "Crafting Boost"),
        (EffectCategory.RESOURCE_YIELD, 450_000, "Resource Yield"),
    ],
}
DEFAULT_ITEM_USAGE = [(EffectCategory.MINING_EFFICIENCY, 180_000, "Boost")]

# Crystals also grant experience immediately
CRYSTAL_EXPERIENCE_PER_UNIT = 50
RARITY_EXPERIENCE_MULTIPLIER = {
    Rarity.COMMON: 1.0,
    Rarity.RARE: 1.5,
    Rarity.EPIC: 2.0,
    Rarity.LEGENDARY: 3.0,
}


def usage_for(resource_type: str) -> list[tuple[EffectCategory, int, str]]:
    return ITEM_USAGE.get(resource_type, DEFAULT_ITEM_USAGE)


def instant_experience(resource_type: str, rarity: Rarity, quantity: int) -> int:
    """Experience granted on use, before any effect applies."""
    if resource_type != "crystal":
        return 0
    return int(quantity * CRYSTAL_EXPERIENCE_PER_UNIT * RARITY_EXPERIENCE_MULTIPLIER[rarity])


class ItemEffectEngine:
    """
    Effect rows and their expiry timers for one identity.

    on_change is called after every mutation that should be persisted
    (use, removal, expiry). The session wires it to the local store.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        bus: EventBus | None = None,
        on_change: Callable[[EffectLedger], None] | None = None,
        identity: str = "",
    ):
        self.scheduler = scheduler
        self.bus = bus or EventBus()
        self.on_change = on_change
        self.identity = identity
        self._effects: dict[str, ItemEffect] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._total_items_used = 0

    @property
    def total_items_used(self) -> int:
        return self._total_items_used

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def use_items(
        self,
        category: EffectCategory | str,
        quantity: int,
        per_unit_duration: int,
        description: str = "",
    ) -> ItemEffect:
        """
        Consume `quantity` items into an effect of `category`.

        Raises:
            ValueError: quantity < 1 or negative duration
        """
        if quantity < 1:
            raise ValueError(f"Quantity must be at least 1, got {quantity}")
        if per_unit_duration < 0:
            raise ValueError(f"Duration must be non-negative, got {per_unit_duration}")
        category = EffectCategory(category)

        self._total_items_used += quantity
        multiplier = tier_multiplier(self._total_items_used)

        for existing in [e for e in self._effects.values() if e.category == category]:
            self._drop(existing.id)
            self.bus.emit(
                EventType.EFFECT_REMOVED,
                identity=self.identity,
                effect_id=existing.id,
                category=category.value,
                replaced=True,
            )

        now = self.scheduler.now()
        effect = ItemEffect(
            id=generate_effect_id(),
            category=category,
            multiplier=multiplier,
            duration=per_unit_duration * quantity,
            start_time=now,
            quantity=quantity,
            description=description or f"{category.value} x{quantity}",
        )
        self._effects[effect.id] = effect
        self._arm(effect, effect.duration)

        logger.debug(
            "Effect %s %s x%.2f for %d ms (lifetime items %d)",
            effect.id, category.value, multiplier, effect.duration, self._total_items_used,
        )
        self.bus.emit(
            EventType.EFFECT_APPLIED,
            identity=self.identity,
            effect_id=effect.id,
            category=category.value,
            multiplier=multiplier,
            duration=effect.duration,
        )
        self._changed()
        return effect

    def remove_effect(self, effect_id: str) -> bool:
        """Remove an effect and cancel its timer. Returns False if unknown."""
        effect = self._drop(effect_id)
        if effect is None:
            return False
        self.bus.emit(
            EventType.EFFECT_REMOVED,
            identity=self.identity,
            effect_id=effect_id,
            category=effect.category.value,
            replaced=False,
        )
        self._changed()
        return True

    def clear_expired(self) -> int:
        """Drop rows whose time has passed. Returns count removed."""
        now = self.scheduler.now()
        expired = [e.id for e in self._effects.values() if not e.is_active(now)]
        for effect_id in expired:
            self._drop(effect_id)
        if expired:
            self._changed()
        return len(expired)

    def reset(self) -> None:
        """Cancel every timer and forget all rows and the lifetime counter."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._effects.clear()
        self._total_items_used = 0

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_active_multipliers(self) -> dict[EffectCategory, float]:
        """Per category, the max multiplier of active effects (1.0 if none)."""
        now = self.scheduler.now()
        multipliers = {category: 1.0 for category in EffectCategory}
        for effect in self._effects.values():
            if effect.is_active(now):
                multipliers[effect.category] = max(multipliers[effect.category], effect.multiplier)
        return multipliers

    def get_multiplier(self, category: EffectCategory | str) -> float:
        return self.get_active_multipliers()[EffectCategory(category)]

    def active_effects(self) -> list[ItemEffect]:
        now = self.scheduler.now()
        active = [e for e in self._effects.values() if e.is_active(now)]
        return sorted(active, key=lambda e: e.start_time)

    def pending_timers(self) -> int:
        return len(self._timers)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def snapshot(self) -> EffectLedger:
        return EffectLedger(
            total_items_used=self._total_items_used,
            effects=[e.model_copy() for e in self.active_effects()],
        )

    def rehydrate(self, ledger: EffectLedger) -> int:
        """
        Rebuild state from a persisted ledger.

        Expired rows are discarded; the rest get a timer for their
        remaining time. Returns the number of effects restored.
        """
        self.reset()
        self._total_items_used = ledger.total_items_used
        now = self.scheduler.now()

        latest: dict[EffectCategory, ItemEffect] = {}
        for effect in ledger.effects:
            if not effect.is_active(now):
                continue
            current = latest.get(effect.category)
            if current is None or effect.start_time > current.start_time:
                latest[effect.category] = effect

        for effect in latest.values():
            restored = effect.model_copy()
            self._effects[restored.id] = restored
            self._arm(restored, restored.remaining(now))

        dropped = len(ledger.effects) - len(latest)
        if dropped:
            logger.debug("Discarded %d stale effect rows for %s", dropped, self.identity)
        return len(latest)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _arm(self, effect: ItemEffect, delay_ms: int) -> None:
        effect_id = effect.id
        self._timers[effect_id] = self.scheduler.call_later(delay_ms, lambda: self._expire(effect_id))

    def _drop(self, effect_id: str) -> ItemEffect | None:
        handle = self._timers.pop(effect_id, None)
        if handle is not None:
            handle.cancel()
        return self._effects.pop(effect_id, None)

    def _expire(self, effect_id: str) -> None:
        self._timers.pop(effect_id, None)
        effect = self._effects.pop(effect_id, None)
        if effect is None:
            return
        logger.debug("Effect %s expired", effect_id)
        self.bus.emit(
            EventType.EFFECT_EXPIRED,
            identity=self.identity,
            effect_id=effect_id,
            category=effect.category.value,
        )
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.snapshot())
