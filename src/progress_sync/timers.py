"""
Timer scheduling for effect expiry and delayed remote writes.

All times are epoch milliseconds. Production code runs on the asyncio loop
(LoopScheduler); tests drive time by hand (ManualScheduler).

Usage:
    scheduler = ManualScheduler(start=1_000)
    handle = scheduler.call_later(500, on_expire)
    scheduler.advance(500)   # on_expire runs here
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


@runtime_checkable
class Scheduler(Protocol):
    """
    Clock plus one-shot callbacks.

    Implementations:
    - LoopScheduler: asyncio event loop (production)
    - ManualScheduler: virtual clock advanced by tests
    """

    def now(self) -> int:
        """Current time in epoch milliseconds."""
        ...

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_ms."""
        ...


class _NullHandle:
    """Handle for a timer that could not be armed."""

    def cancel(self) -> None:
        pass


class LoopScheduler:
    """
    Scheduler backed by the running asyncio loop.

    Callers outside a running loop (scripts, the CLI) get an inert handle;
    anything relying on expiry must also check timestamps on read.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def now(self) -> int:
        return wall_clock_ms()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running loop, timer for %d ms not armed", delay_ms)
                return _NullHandle()
        return loop.call_later(max(0, delay_ms) / 1000, callback)


class ManualHandle:
    """Cancellable entry in a ManualScheduler queue."""

    def __init__(self, due: int):
        self.due = due
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic scheduler for tests.

    Time only moves when advance() or set_time() is called. Callbacks due
    at the same instant fire in scheduling order.
    """

    def __init__(self, start: int = 0):
        self._now = start
        self._queue: list[tuple[int, int, ManualHandle, Callable[[], None]]] = []
        self._seq = itertools.count()

    def now(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> ManualHandle:
        due = self._now + max(0, delay_ms)
        handle = ManualHandle(due)
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback))
        return handle

    def advance(self, ms: int) -> int:
        """Move the clock forward, firing due callbacks. Returns count fired."""
        return self.set_time(self._now + ms)

    def set_time(self, target: int) -> int:
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            handle.fired = True
            callback()
            fired += 1
        self._now = max(self._now, target)
        return fired

    def pending(self) -> int:
        """Number of armed, uncancelled timers."""
        return sum(1 for entry in self._queue if not entry[2].cancelled)
