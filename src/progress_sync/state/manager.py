"""
In-memory progress lifecycle management.

Holds the live snapshot for every connected identity and persists it to the
local store on each player-state change. Engines always read the live
object through this manager, so a read-modify-write never starts from a
stale copy.
"""

import logging
from pathlib import Path
from typing import Callable

from ..errors import InsufficientQuantityError, NoActiveIdentityError
from .event_bus import EventBus, EventType
from .schema import PlayerProgressSnapshot, Resource, now_ms
from .store import JsonProgressStore, ProgressStore

logger = logging.getLogger(__name__)

DEFAULT_STARTING_CREDITS = 1000
DEFAULT_EXPERIENCE_PER_LEVEL = 1000

# Player fields a caller may set directly through update_player()
PLAYER_FIELDS = frozenset({"name", "position", "stats", "credits", "experience", "level"})


def default_player_name(identity: str) -> str:
    return f"Explorer {identity[:8]}"


class ProgressManager:
    """
    Manages snapshot lifecycle and player-field operations.

    Storage is delegated to a ProgressStore implementation:
    - JsonProgressStore for production (file-based)
    - MemoryProgressStore for testing (in-memory)
    """

    def __init__(
        self,
        store: ProgressStore | Path | str = "progress",
        bus: EventBus | None = None,
        clock: Callable[[], int] = now_ms,
        starting_credits: int = DEFAULT_STARTING_CREDITS,
        experience_per_level: int = DEFAULT_EXPERIENCE_PER_LEVEL,
    ):
        """
        Initialize with a store.

        Args:
            store: ProgressStore instance, or path for JsonProgressStore
            bus: Event bus for state-change notifications
            clock: Epoch-millisecond clock
            starting_credits: Credit grant for brand-new players
            experience_per_level: Experience needed per level step
        """
        if isinstance(store, (Path, str)):
            store = JsonProgressStore(store)
        self.store = store
        self.bus = bus or EventBus()
        self.clock = clock
        self.starting_credits = starting_credits
        self.experience_per_level = experience_per_level
        self._snapshots: dict[str, PlayerProgressSnapshot] = {}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def get(self, identity: str) -> PlayerProgressSnapshot | None:
        """Live snapshot for an identity, if loaded."""
        return self._snapshots.get(identity)

    def require(self, identity: str) -> PlayerProgressSnapshot:
        snapshot = self._snapshots.get(identity)
        if snapshot is None:
            raise NoActiveIdentityError(identity)
        return snapshot

    def is_loaded(self, identity: str) -> bool:
        return identity in self._snapshots

    def identities(self) -> list[str]:
        return list(self._snapshots)

    def create_default(self, identity: str, name: str | None = None) -> PlayerProgressSnapshot:
        """Create, adopt and persist a brand-new player."""
        snapshot = PlayerProgressSnapshot(
            id=identity,
            name=name or default_player_name(identity),
            level=1,
            experience=0,
            credits=self.starting_credits,
            last_updated=self.clock(),
        )
        return self.adopt(identity, snapshot)

    def adopt(self, identity: str, snapshot: PlayerProgressSnapshot) -> PlayerProgressSnapshot:
        """
        Make `snapshot` the identity's current state and persist it locally.

        If the identity is already loaded, fields are copied onto the live
        object so existing references stay valid. last_updated never moves
        backwards.
        """
        if snapshot.id != identity:
            raise ValueError(f"Snapshot for {snapshot.id!r} cannot be adopted as {identity!r}")

        incoming = snapshot.model_copy(deep=True)
        live = self._snapshots.get(identity)
        if live is None:
            stored = self.store.load(identity)
            floor = stored.last_updated if stored else 0
            live = incoming
            self._snapshots[identity] = live
        else:
            floor = live.last_updated
            for name in PlayerProgressSnapshot.model_fields:
                setattr(live, name, getattr(incoming, name))
        live.last_updated = max(live.last_updated, floor)

        self.store.save(identity, live)
        return live

    def touch(self, snapshot: PlayerProgressSnapshot) -> int:
        """Advance last_updated to now, never backwards."""
        snapshot.last_updated = max(snapshot.last_updated, self.clock())
        return snapshot.last_updated

    def save(self, identity: str) -> PlayerProgressSnapshot:
        """Stamp and persist the live snapshot."""
        snapshot = self.require(identity)
        self.touch(snapshot)
        self.store.save(identity, snapshot)
        self.bus.emit(EventType.PROGRESS_SAVED, identity=identity, last_updated=snapshot.last_updated)
        return snapshot

    def release(self, identity: str) -> PlayerProgressSnapshot | None:
        """Persist and drop an identity from memory."""
        snapshot = self._snapshots.get(identity)
        if snapshot is not None:
            self.store.save(identity, snapshot)
            del self._snapshots[identity]
        return snapshot

    def forget(self, identity: str) -> None:
        """Drop from memory without persisting."""
        self._snapshots.pop(identity, None)

    # -------------------------------------------------------------------------
    # Player Fields
    # -------------------------------------------------------------------------

    def level_for_experience(self, experience: int) -> int:
        return experience // self.experience_per_level + 1

    def update_player(self, identity: str, **fields) -> PlayerProgressSnapshot:
        """
        Set caller-owned player fields and persist.

        Level is kept consistent with experience and never decreases.
        """
        unknown = set(fields) - PLAYER_FIELDS
        if unknown:
            raise ValueError(f"Not player fields: {sorted(unknown)}")

        snapshot = self.require(identity)
        for name, value in fields.items():
            setattr(snapshot, name, value)
        snapshot.level = max(snapshot.level, self.level_for_experience(snapshot.experience))
        return self.save(identity)

    def add_experience(self, identity: str, amount: int) -> PlayerProgressSnapshot:
        snapshot = self.require(identity)
        snapshot.experience = max(0, snapshot.experience + amount)
        snapshot.level = max(snapshot.level, self.level_for_experience(snapshot.experience))
        return self.save(identity)

    def add_credits(self, identity: str, amount: int) -> PlayerProgressSnapshot:
        snapshot = self.require(identity)
        snapshot.credits += amount
        return self.save(identity)

    def add_resource(self, identity: str, resource: Resource) -> Resource:
        """Stack into an existing inventory entry with the same id."""
        snapshot = self.require(identity)
        existing = snapshot.get_resource(resource.id)
        if existing is not None:
            existing.quantity += resource.quantity
        else:
            existing = resource.model_copy()
            snapshot.inventory.append(existing)
        self.save(identity)
        return existing

    def remove_resource(self, identity: str, resource_id: str, quantity: int) -> Resource:
        """
        Consume `quantity` of an inventory entry.

        Entries that reach zero are removed. Returns the consumed portion.
        """
        snapshot = self.require(identity)
        existing = snapshot.get_resource(resource_id)
        available = existing.quantity if existing else 0
        if existing is None or quantity > available:
            raise InsufficientQuantityError(resource_id, quantity, available)

        existing.quantity -= quantity
        if existing.quantity == 0:
            snapshot.inventory = [r for r in snapshot.inventory if r.id != resource_id]
        self.save(identity)
        return existing.model_copy(update={"quantity": quantity})
