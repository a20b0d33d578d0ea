"""
Pytest fixtures for progress-sync tests.

Provides in-memory stores, an in-memory ledger and a manual clock for
isolated, deterministic testing.
"""

import pytest
from pathlib import Path

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from progress_sync.session import ProgressSession
from progress_sync.state import (
    EventBus,
    MemoryProgressStore,
    PlayerProgressSnapshot,
    ProgressManager,
)
from progress_sync.sync.ledger import MemoryRemoteLedger
from progress_sync.systems.catalog import default_catalog
from progress_sync.timers import ManualScheduler

T0 = 1_700_000_000_000


@pytest.fixture
def memory_store():
    """In-memory progress store for testing."""
    return MemoryProgressStore()


@pytest.fixture
def ledger():
    """In-memory remote ledger."""
    return MemoryRemoteLedger()


@pytest.fixture
def scheduler():
    """Manual clock starting at a fixed epoch."""
    return ManualScheduler(start=T0)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def manager(memory_store, bus, scheduler):
    """Progress manager with in-memory store and the manual clock."""
    return ProgressManager(memory_store, bus=bus, clock=scheduler.now)


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def session(memory_store, ledger, scheduler, catalog):
    """Full service container over in-memory collaborators."""
    return ProgressSession(memory_store, ledger, catalog=catalog, scheduler=scheduler)


@pytest.fixture
def player(manager):
    """Loaded default player."""
    return manager.create_default("wallet1")


def make_snapshot(identity: str = "wallet1", **fields) -> PlayerProgressSnapshot:
    """Snapshot with sensible defaults for merge tests."""
    fields.setdefault("name", "Explorer")
    fields.setdefault("last_updated", T0)
    return PlayerProgressSnapshot(id=identity, **fields)
