"""
Outbox of pending remote writes.

One pending write per identity; enqueueing again replaces the snapshot
(latest wins) and keeps the earliest due time. Failed sends are retried
with exponential backoff until max_attempts, then dropped with a warning.
The local copy stays authoritative either way.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..state.schema import PlayerProgressSnapshot
from ..timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

SendFn = Callable[[str, PlayerProgressSnapshot], Awaitable[bool]]


@dataclass
class PendingWrite:
    identity: str
    snapshot: PlayerProgressSnapshot
    due: int                           # epoch ms
    attempts: int = 0
    timer: TimerHandle | None = None


class Outbox:
    """Coalescing, retrying queue of snapshot writes to the remote ledger."""

    def __init__(
        self,
        send: SendFn,
        scheduler: Scheduler,
        max_attempts: int = 5,
        base_backoff_ms: int = 2_000,
        max_backoff_ms: int = 60_000,
        on_give_up: Callable[[str, int], None] | None = None,
    ):
        self.send = send
        self.scheduler = scheduler
        self.max_attempts = max_attempts
        self.base_backoff_ms = base_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.on_give_up = on_give_up
        self._pending: dict[str, PendingWrite] = {}
        self._sending: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def enqueue(self, identity: str, snapshot: PlayerProgressSnapshot, delay_ms: int = 0) -> PendingWrite:
        due = self.scheduler.now() + max(0, delay_ms)
        entry = self._pending.get(identity)
        if entry is not None:
            entry.snapshot = snapshot
            if due < entry.due:
                entry.due = due
                self._arm(entry)
            return entry

        entry = PendingWrite(identity=identity, snapshot=snapshot, due=due)
        self._pending[identity] = entry
        self._arm(entry)
        logger.debug("Queued remote write for %s in %d ms", identity, delay_ms)
        return entry

    def pending(self, identity: str) -> PendingWrite | None:
        return self._pending.get(identity)

    def pending_identities(self) -> list[str]:
        return list(self._pending)

    def discard(self, identity: str) -> bool:
        entry = self._pending.pop(identity, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        return True

    def backoff(self, attempts: int) -> int:
        """Delay before retry number `attempts` (1-based)."""
        return min(self.max_backoff_ms, self.base_backoff_ms * 2 ** max(0, attempts - 1))

    async def flush(self, identity: str | None = None, force: bool = False) -> int:
        """
        Send due writes now.

        Args:
            identity: Only this identity (default: all)
            force: Ignore due times

        Returns:
            Number of writes that succeeded
        """
        identities = [identity] if identity is not None else list(self._pending)
        sent = 0
        for ident in identities:
            if await self._send_one(ident, force):
                sent += 1
        return sent

    async def close(self) -> None:
        """Cancel timers and in-flight sends. Unsent writes are dropped."""
        for entry in self._pending.values():
            if entry.timer is not None:
                entry.timer.cancel()
        self._pending.clear()

        for task in list(self._tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _arm(self, entry: PendingWrite) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
        delay = max(0, entry.due - self.scheduler.now())
        identity = entry.identity
        entry.timer = self.scheduler.call_later(delay, lambda: self._kick(identity))

    def _kick(self, identity: str) -> None:
        """Timer callback: start a send on the running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, write for %s waits for flush()", identity)
            return
        task = loop.create_task(self._send_one(identity, force=False))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_one(self, identity: str, force: bool) -> bool:
        entry = self._pending.get(identity)
        if entry is None or identity in self._sending:
            return False
        if not force and entry.due > self.scheduler.now():
            return False

        snapshot = entry.snapshot
        self._sending.add(identity)
        try:
            ok = await self.send(identity, snapshot)
        finally:
            self._sending.discard(identity)

        current = self._pending.get(identity)
        if ok:
            if current is entry and current.snapshot is snapshot:
                self.discard(identity)
            elif current is not None:
                # Newer snapshot queued during the send
                current.attempts = 0
                current.due = self.scheduler.now()
                self._arm(current)
            return True

        if current is None:
            return False
        current.attempts += 1
        if current.attempts >= self.max_attempts:
            logger.warning("Giving up remote write for %s after %d attempts", identity, current.attempts)
            self.discard(identity)
            if self.on_give_up is not None:
                self.on_give_up(identity, current.attempts)
            return False

        delay = self.backoff(current.attempts)
        logger.debug("Remote write for %s failed, retry %d in %d ms", identity, current.attempts, delay)
        current.due = self.scheduler.now() + delay
        self._arm(current)
        return False
