"""
Local/remote reconciliation.

The coordinator is the only component that talks to the remote ledger.
Remote failures are caught here and turned into result values; the local
snapshot stays authoritative and nothing is retried immediately (pending
writes retry through the outbox on their own schedule).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..config import DEFAULT_CONFIG, Config, seconds_to_ms
from ..errors import TransientRemoteError
from ..state.event_bus import EventBus, EventType
from ..state.schema import PlayerProgressSnapshot, SyncMeta, SyncResult, SyncStatus
from ..timers import Scheduler, TimerHandle
from .ledger import RemoteLedger, RemoteProgress
from .merge import merge_snapshots
from .outbox import Outbox

if TYPE_CHECKING:
    from ..state.manager import ProgressManager

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """
    Reconciles the local snapshot with the remote ledger.

    Owns the initialization cascade, periodic auto-sync, force-sync, the
    outbox of pending writes and fire-and-forget mission mirroring.
    """

    def __init__(
        self,
        manager: "ProgressManager",
        ledger: RemoteLedger,
        scheduler: Scheduler,
        bus: EventBus | None = None,
        config: Config | None = None,
    ):
        self.manager = manager
        self.ledger = ledger
        self.scheduler = scheduler
        self.bus = bus or manager.bus
        self.config: Config = {**DEFAULT_CONFIG, **(config or {})}

        self.outbox = Outbox(
            self._publish,
            scheduler,
            max_attempts=self.config["outbox_max_attempts"],
            base_backoff_ms=seconds_to_ms(self.config["outbox_base_backoff"]),
            max_backoff_ms=seconds_to_ms(self.config["outbox_max_backoff"]),
            on_give_up=self._on_give_up,
        )
        self._syncing: set[str] = set()
        self._auto_timers: dict[str, TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Sync metadata
    # -------------------------------------------------------------------------

    def _meta(self, identity: str) -> SyncMeta:
        return self.manager.store.load_sync_meta(identity) or SyncMeta()

    def _save_meta(self, identity: str, meta: SyncMeta) -> None:
        self.manager.store.save_sync_meta(identity, meta)

    def is_syncing(self, identity: str) -> bool:
        return identity in self._syncing

    # -------------------------------------------------------------------------
    # Remote I/O
    # -------------------------------------------------------------------------

    async def load_remote(self, identity: str) -> PlayerProgressSnapshot | None:
        """
        Read the remote record. Never writes.

        Raises:
            TransientRemoteError: ledger unreachable
        """
        result = await self.ledger.load_complete_player_progress(identity)
        if result is None or not result.success:
            return None

        snapshot = result.snapshot or self._from_profile(identity, result)
        meta = self._meta(identity)
        meta.last_remote_updated = max(meta.last_remote_updated, snapshot.last_updated)
        self._save_meta(identity, meta)
        return snapshot

    def _from_profile(self, identity: str, result: RemoteProgress) -> PlayerProgressSnapshot:
        """Rebuild a snapshot from a ledger that only returns profile and stats."""
        profile, stats = result.profile, result.stats
        experience = int(stats.get("experience", 0))
        return PlayerProgressSnapshot(
            id=identity,
            name=profile.get("name") or "",
            level=max(int(profile.get("level", 1)), self.manager.level_for_experience(experience)),
            experience=experience,
            credits=int(stats.get("credits", self.manager.starting_credits)),
            last_updated=int(profile.get("last_updated", 0)),
        )

    async def save_remote(self, identity: str, snapshot: PlayerProgressSnapshot) -> bool:
        """Write-through. Records last_sync_time on success; never raises."""
        try:
            ok = await self.ledger.save_complete_player_progress(identity, snapshot)
        except TransientRemoteError as e:
            logger.warning("Remote save for %s failed: %s", identity, e)
            self.bus.emit(EventType.REMOTE_WRITE_FAILED, identity=identity, error=str(e))
            return False
        except Exception as e:
            logger.exception("Unexpected ledger error saving %s", identity)
            self.bus.emit(EventType.REMOTE_WRITE_FAILED, identity=identity, error=str(e))
            return False

        if ok:
            meta = self._meta(identity)
            meta.last_sync_time = self.scheduler.now()
            meta.last_remote_updated = max(meta.last_remote_updated, snapshot.last_updated)
            self._save_meta(identity, meta)
        return ok

    async def _publish(self, identity: str, snapshot: PlayerProgressSnapshot) -> bool:
        """Outbox sender. Always writes the latest live snapshot."""
        return await self.save_remote(identity, self.manager.get(identity) or snapshot)

    def _on_give_up(self, identity: str, attempts: int) -> None:
        self.bus.emit(EventType.REMOTE_WRITE_FAILED, identity=identity, attempts=attempts, gave_up=True)

    def queue_publish(self, identity: str, delay_ms: int = 0) -> None:
        """Queue the live snapshot for a remote write."""
        self.outbox.enqueue(identity, self.manager.require(identity), delay_ms)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def reconcile(
        self,
        identity: str,
        local_snapshot: PlayerProgressSnapshot | None = None,
    ) -> SyncResult:
        """
        Merge local and remote, adopt the result locally and queue it remotely.

        A call made while another reconciliation for the same identity is in
        flight is dropped (skipped=True), not queued.
        """
        if identity in self._syncing:
            logger.debug("Sync for %s already in flight, skipping", identity)
            self.bus.emit(EventType.SYNC_SKIPPED, identity=identity)
            return SyncResult(success=False, skipped=True, error="Sync already in progress")

        self._syncing.add(identity)
        self.bus.emit(EventType.SYNC_STARTED, identity=identity)
        try:
            return await self._reconcile(identity, local_snapshot)
        finally:
            self._syncing.discard(identity)

    async def _reconcile(self, identity: str, local_snapshot: PlayerProgressSnapshot | None) -> SyncResult:
        local = local_snapshot or self.manager.get(identity) or self.manager.store.load(identity)
        if local is None:
            return self._failed(identity, "No local progress to sync")

        try:
            remote = await self.load_remote(identity)
        except TransientRemoteError as e:
            return self._failed(identity, str(e))
        except Exception as e:
            logger.exception("Unexpected ledger error loading %s", identity)
            return self._failed(identity, str(e))

        if remote is None:
            # First publication: local goes up as is
            current = self.manager.get(identity) or local
            if not await self.save_remote(identity, current):
                return self._failed(identity, "Remote write failed")
            self.outbox.discard(identity)
            self.bus.emit(EventType.SYNC_COMPLETED, identity=identity, conflicts=0)
            return SyncResult(success=True, merged=current.model_copy(deep=True))

        # Merge against the newest local state; it may have moved during the await.
        # A caller-supplied snapshot is folded into live state, never substituted for it.
        live = self.manager.get(identity)
        if live is None:
            base = local
        elif local_snapshot is not None and local_snapshot is not live:
            base, _ = merge_snapshots(live, local_snapshot)
        else:
            base = live
        merged, conflicts = merge_snapshots(base, remote)

        if self.manager.is_loaded(identity):
            merged = self.manager.adopt(identity, merged)
        else:
            self.manager.store.save(identity, merged)

        if conflicts:
            logger.info("Resolved %d conflicts for %s", len(conflicts), identity)
            self.bus.emit(
                EventType.SYNC_CONFLICTS,
                identity=identity,
                conflicts=[c.model_dump(mode="json") for c in conflicts],
            )

        self.outbox.enqueue(identity, merged)
        if not await self.outbox.flush(identity, force=True):
            # Merged locally; the outbox keeps retrying the write
            self.bus.emit(EventType.SYNC_FAILED, identity=identity, error="Remote write failed")
            return SyncResult(
                success=False,
                merged=merged.model_copy(deep=True),
                conflicts=conflicts,
                error="Remote write failed, queued for retry",
            )

        self.bus.emit(EventType.SYNC_COMPLETED, identity=identity, conflicts=len(conflicts))
        return SyncResult(success=True, merged=merged.model_copy(deep=True), conflicts=conflicts)

    def _failed(self, identity: str, error: str) -> SyncResult:
        logger.warning("Sync for %s failed: %s", identity, error)
        self.bus.emit(EventType.SYNC_FAILED, identity=identity, error=error)
        return SyncResult(success=False, error=error)

    def sync_status(self, identity: str) -> SyncStatus:
        local = self.manager.get(identity) or self.manager.store.load(identity)
        meta = self._meta(identity)
        has_local = local is not None

        needs = False
        if has_local:
            stale_ms = seconds_to_ms(self.config["sync_stale_after"])
            needs = (
                meta.last_sync_time == 0
                or local.last_updated > meta.last_sync_time
                or self.scheduler.now() - meta.last_sync_time >= stale_ms
                or self.outbox.pending(identity) is not None
            )

        return SyncStatus(
            has_local_progress=has_local,
            has_remote_progress=meta.last_remote_updated > 0 or meta.last_sync_time > 0,
            last_sync_time=meta.last_sync_time,
            needs_sync=needs,
        )

    def needs_sync(self, identity: str) -> bool:
        return self.sync_status(identity).needs_sync

    async def force_sync(self, identity: str) -> SyncResult:
        """User-triggered reconcile. Same single-flight guard."""
        logger.info("Force sync requested for %s", identity)
        return await self.reconcile(identity)

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    async def initialize(self, identity: str) -> PlayerProgressSnapshot:
        """
        Load progress for a newly connected identity.

        Cascade: remote record, else local store (published after a short
        delay), else a new default player (published after a short delay).
        If the ledger is unreachable, nothing is published blindly; the next
        auto-sync reconciles instead.
        """
        remote_reachable = True
        try:
            remote = await self.load_remote(identity)
        except TransientRemoteError as e:
            logger.warning("Remote unavailable while loading %s: %s", identity, e)
            remote, remote_reachable = None, False
        except Exception:
            logger.exception("Unexpected ledger error loading %s", identity)
            remote, remote_reachable = None, False

        local = self.manager.store.load(identity)

        if remote is not None:
            if local is not None and local.last_updated > remote.last_updated:
                # Offline progress since the last publish
                merged, _ = merge_snapshots(local, remote)
                snapshot = self.manager.adopt(identity, merged)
                self.queue_publish(identity, seconds_to_ms(self.config["local_publish_delay"]))
            else:
                snapshot = self.manager.adopt(identity, remote)
                meta = self._meta(identity)
                meta.last_sync_time = self.scheduler.now()
                self._save_meta(identity, meta)
            source = "remote"
        elif local is not None:
            snapshot = self.manager.adopt(identity, local)
            if remote_reachable:
                self.queue_publish(identity, seconds_to_ms(self.config["local_publish_delay"]))
            source = "local"
        else:
            snapshot = self.manager.create_default(identity)
            if remote_reachable:
                self.queue_publish(identity, seconds_to_ms(self.config["new_player_publish_delay"]))
            source = "default"

        logger.info("Loaded progress for %s from %s", identity, source)
        self.bus.emit(EventType.PROGRESS_LOADED, identity=identity, source=source)
        return snapshot

    # -------------------------------------------------------------------------
    # Auto-sync
    # -------------------------------------------------------------------------

    async def auto_sync_tick(self, identity: str) -> SyncResult | None:
        """One periodic check. Reconciles only when needed."""
        if not self.manager.is_loaded(identity) or not self.needs_sync(identity):
            return None
        return await self.reconcile(identity)

    def start_auto_sync(self, identity: str) -> None:
        if identity in self._auto_timers:
            return
        self._arm_auto_sync(identity)
        logger.debug("Auto-sync armed for %s", identity)

    def _arm_auto_sync(self, identity: str) -> None:
        interval = seconds_to_ms(self.config["auto_sync_interval"])
        self._auto_timers[identity] = self.scheduler.call_later(
            interval, lambda: self._on_auto_sync(identity)
        )

    def _on_auto_sync(self, identity: str) -> None:
        if identity not in self._auto_timers:
            return
        self._arm_auto_sync(identity)
        self._spawn(self.auto_sync_tick(identity), f"auto-sync {identity}")

    async def stop_auto_sync(self, identity: str) -> None:
        handle = self._auto_timers.pop(identity, None)
        if handle is not None:
            handle.cancel()

    # -------------------------------------------------------------------------
    # Mission mirroring
    # -------------------------------------------------------------------------

    def mirror_mission_progress(self, identity: str, mission_id: str, progress: int) -> None:
        """Best-effort, non-blocking remote write of one mission's progress."""
        self._spawn(self._mirror(identity, mission_id, progress), f"mirror {mission_id}")

    async def _mirror(self, identity: str, mission_id: str, progress: int) -> None:
        try:
            await self.ledger.update_mission_progress(identity, mission_id, progress)
        except TransientRemoteError as e:
            logger.warning("Mission mirror %s for %s failed: %s", mission_id, identity, e)
            self.bus.emit(EventType.REMOTE_WRITE_FAILED, identity=identity, mission_id=mission_id, error=str(e))
        except Exception as e:
            logger.exception("Unexpected ledger error mirroring %s for %s", mission_id, identity)
            self.bus.emit(EventType.REMOTE_WRITE_FAILED, identity=identity, mission_id=mission_id, error=str(e))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _spawn(self, coro, label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, dropping %s", label)
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight background tasks (mirrors, auto-sync ticks)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def dispose(self) -> None:
        """Stop all timers and background work."""
        for identity in list(self._auto_timers):
            await self.stop_auto_sync(identity)
        await self.outbox.close()

        for task in list(self._tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
