"""
Service container for one process.

Builds the manager, engines and coordinator once and wires them together.
connect()/disconnect() are the per-identity lifecycle; there are no module
level singletons.

Usage:
    session = ProgressSession(MemoryProgressStore(), MemoryRemoteLedger())
    await session.connect("wallet1")
    session.missions.start_mission("wallet1", "mining_001")
    session.missions.track_mining("wallet1")
    await session.disconnect("wallet1")
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from .config import DEFAULT_CONFIG, Config, load_config
from .errors import NoActiveIdentityError
from .state.event_bus import EventBus, EventType
from .state.manager import ProgressManager
from .state.schema import ItemEffect, PlayerProgressSnapshot
from .state.store import JsonProgressStore, ProgressStore
from .sync.coordinator import SyncCoordinator
from .sync.ledger import HttpRemoteLedger, MemoryRemoteLedger, RemoteLedger
from .systems.catalog import MissionCatalog, default_catalog
from .systems.effects import ItemEffectEngine, instant_experience, usage_for
from .systems.missions import MissionEngine
from .systems.rewards import RewardIssuer, SnapshotRewardIssuer
from .timers import LoopScheduler, Scheduler

logger = logging.getLogger(__name__)


class ItemUseResult(BaseModel):
    """What consuming inventory items produced."""
    resource_id: str
    quantity: int
    experience_gained: int = 0
    effects: list[ItemEffect] = Field(default_factory=list)


class ProgressSession:
    """Owns every progress component for the process."""

    def __init__(
        self,
        store: ProgressStore,
        ledger: RemoteLedger,
        catalog: MissionCatalog | None = None,
        scheduler: Scheduler | None = None,
        config: Config | None = None,
        reward_issuer: RewardIssuer | None = None,
    ):
        self.config: Config = {**DEFAULT_CONFIG, **(config or {})}
        self.scheduler = scheduler or LoopScheduler()
        self.bus = EventBus()
        self.ledger = ledger

        self.manager = ProgressManager(
            store,
            bus=self.bus,
            clock=self.scheduler.now,
            starting_credits=self.config["starting_credits"],
            experience_per_level=self.config["experience_per_level"],
        )
        if catalog is None:
            catalog_path = self.config.get("catalog_path")
            catalog = MissionCatalog.from_file(catalog_path) if catalog_path else default_catalog()
        self.catalog = catalog

        self.coordinator = SyncCoordinator(self.manager, ledger, self.scheduler, self.bus, self.config)
        self.rewards = reward_issuer or SnapshotRewardIssuer(self.manager)
        self.missions = MissionEngine(
            self.manager,
            self.catalog,
            self.rewards,
            self.bus,
            mirror=self.coordinator.mirror_mission_progress,
        )
        self._effects: dict[str, ItemEffectEngine] = {}

    @classmethod
    def from_config(cls, config: Config | None = None) -> "ProgressSession":
        """Build a production session: JSON store plus HTTP ledger if configured."""
        config = config or load_config()
        store = JsonProgressStore(config["data_dir"])
        if config.get("remote_url"):
            ledger: RemoteLedger = HttpRemoteLedger(config["remote_url"], config["remote_timeout"])
        else:
            logger.info("No remote_url configured, using in-memory ledger")
            ledger = MemoryRemoteLedger()
        return cls(store, ledger, config=config)

    @property
    def store(self) -> ProgressStore:
        return self.manager.store

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def is_connected(self, identity: str) -> bool:
        return identity in self._effects

    def connected_identities(self) -> list[str]:
        return list(self._effects)

    async def connect(self, identity: str, auto_sync: bool = True) -> PlayerProgressSnapshot:
        """Load progress and start background work for an identity. Idempotent."""
        if self.is_connected(identity):
            return self.manager.require(identity)

        await self.coordinator.initialize(identity)
        self.missions.ensure_catalog(identity)

        engine = ItemEffectEngine(
            self.scheduler,
            bus=self.bus,
            on_change=lambda ledger: self.store.save_effects(identity, ledger),
            identity=identity,
        )
        ledger = self.store.load_effects(identity)
        if ledger is not None:
            restored = engine.rehydrate(ledger)
            logger.debug("Restored %d effects for %s", restored, identity)
        self._effects[identity] = engine

        if auto_sync:
            self.coordinator.start_auto_sync(identity)

        logger.info("Connected %s", identity)
        self.bus.emit(EventType.IDENTITY_CONNECTED, identity=identity)
        return self.manager.require(identity)

    async def disconnect(self, identity: str) -> bool:
        """
        Persist and release an identity.

        Effects are saved then their timers cancelled. A pending remote
        write gets one last attempt; if it fails the local copy still
        marks the identity as needing sync on the next connect.
        """
        engine = self._effects.pop(identity, None)
        if engine is None:
            return False

        self.store.save_effects(identity, engine.snapshot())
        engine.reset()

        await self.coordinator.stop_auto_sync(identity)
        if self.coordinator.outbox.pending(identity) is not None:
            await self.coordinator.outbox.flush(identity, force=True)
            self.coordinator.outbox.discard(identity)

        self.manager.release(identity)
        logger.info("Disconnected %s", identity)
        self.bus.emit(EventType.IDENTITY_DISCONNECTED, identity=identity)
        return True

    async def close(self) -> None:
        for identity in list(self._effects):
            await self.disconnect(identity)
        await self.coordinator.dispose()

    def effects(self, identity: str) -> ItemEffectEngine:
        engine = self._effects.get(identity)
        if engine is None:
            raise NoActiveIdentityError(identity)
        return engine

    # -------------------------------------------------------------------------
    # Player operations
    # -------------------------------------------------------------------------

    def update_player(self, identity: str, **fields) -> PlayerProgressSnapshot:
        """Set player fields, then unlock anything a level change allows."""
        snapshot = self.manager.update_player(identity, **fields)
        self.missions.refresh_unlocks(identity)
        return snapshot

    def use_items(self, identity: str, resource_id: str, quantity: int = 1) -> ItemUseResult:
        """
        Consume inventory items and apply their effects.

        Raises:
            NoActiveIdentityError: identity not connected
            InsufficientQuantityError: not enough of the resource
        """
        engine = self.effects(identity)
        if quantity < 1:
            raise ValueError(f"Quantity must be at least 1, got {quantity}")
        used = self.manager.remove_resource(identity, resource_id, quantity)

        experience = instant_experience(used.type, used.rarity, quantity)
        if experience:
            self.manager.add_experience(identity, experience)
            self.missions.refresh_unlocks(identity)

        effects = [
            engine.use_items(category, quantity, per_unit, f"{used.name} {label}")
            for category, per_unit, label in usage_for(used.type)
        ]
        return ItemUseResult(
            resource_id=resource_id,
            quantity=quantity,
            experience_gained=experience,
            effects=effects,
        )

    async def clear_all_progress(self, identity: str) -> None:
        """Wipe local snapshot, effects and sync metadata. Remote is untouched."""
        engine = self._effects.pop(identity, None)
        if engine is not None:
            engine.reset()
        await self.coordinator.stop_auto_sync(identity)
        self.coordinator.outbox.discard(identity)
        self.manager.forget(identity)
        self.store.clear_all(identity)

        logger.info("Cleared all local progress for %s", identity)
        self.bus.emit(EventType.PROGRESS_CLEARED, identity=identity)
