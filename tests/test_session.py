"""
End-to-end tests through the ProgressSession service container.
"""

import asyncio

import pytest

from progress_sync.errors import InsufficientQuantityError, NoActiveIdentityError
from progress_sync.session import ProgressSession
from progress_sync.state import EffectCategory, EventType, MissionStatus, Rarity, Resource


def connect(session, identity="wallet1", auto_sync=False):
    return asyncio.run(session.connect(identity, auto_sync=auto_sync))


class TestConnect:
    """Identity lifecycle."""

    def test_connect_new_player(self, session):
        snapshot = connect(session)
        assert snapshot.credits == 1000
        assert len(snapshot.missions) == 12
        assert session.is_connected("wallet1")

    def test_starting_missions_available(self, session):
        connect(session)
        available = [m.id for m in session.missions.get_available("wallet1")]
        assert available == ["mining_001", "exploration_001", "crafting_001"]

    def test_connect_is_idempotent(self, session):
        first = connect(session)
        second = connect(session)
        assert first is second

    def test_connect_emits_event(self, session):
        connect(session)
        assert session.bus.get_history(EventType.IDENTITY_CONNECTED)

    def test_disconnect_persists_and_releases(self, session, memory_store):
        connect(session)
        session.manager.add_credits("wallet1", 50)
        assert asyncio.run(session.disconnect("wallet1")) is True
        assert not session.is_connected("wallet1")
        assert not session.manager.is_loaded("wallet1")
        assert memory_store.load("wallet1").credits == 1050

    def test_disconnect_flushes_pending_publish(self, session, ledger):
        connect(session)
        assert session.coordinator.outbox.pending("wallet1") is not None
        asyncio.run(session.disconnect("wallet1"))
        assert ledger.get("wallet1") is not None

    def test_disconnect_unknown(self, session):
        assert asyncio.run(session.disconnect("ghost")) is False

    def test_reconnect_restores_progress(self, session):
        connect(session)
        session.missions.start_mission("wallet1", "mining_001")
        asyncio.run(session.disconnect("wallet1"))

        snapshot = connect(session)
        assert snapshot.active_mission_id == "mining_001"

    def test_effects_require_connection(self, session):
        with pytest.raises(NoActiveIdentityError):
            session.effects("wallet1")


class TestEndToEnd:
    """Gameplay through the session."""

    def test_first_mission_rewards(self, session):
        connect(session)
        session.missions.start_mission("wallet1", "mining_001")
        update = session.missions.track_mining("wallet1", "metal")

        snapshot = session.manager.require("wallet1")
        assert update.completed
        assert snapshot.experience == 100
        assert snapshot.credits == 1500
        assert snapshot.get_resource("common_metal_001").quantity == 5
        assert snapshot.get_mission("mining_001").status == MissionStatus.COMPLETED

    def test_level_gate_then_unlock(self, session):
        """mining_002 needs level 2 as well as mining_001."""
        connect(session)
        session.missions.start_mission("wallet1", "mining_001")
        session.missions.track_mining("wallet1")
        assert session.missions.get_mission("wallet1", "mining_002").status == MissionStatus.LOCKED

        session.update_player("wallet1", experience=1000)
        assert session.missions.get_mission("wallet1", "mining_002").status == MissionStatus.AVAILABLE

    def test_mission_progress_mirrored(self, session, ledger):
        async def scenario():
            await session.connect("wallet1", auto_sync=False)
            session.missions.start_mission("wallet1", "exploration_001")
            session.missions.track_exploration("wallet1")
            await session.coordinator.drain()

        asyncio.run(scenario())
        assert ("wallet1", "exploration_001", 1) in ledger.mission_updates


class TestUseItems:
    """Inventory consumption into effects."""

    def test_energy_item(self, session, scheduler):
        connect(session)
        session.manager.add_resource("wallet1", Resource(id="cell", name="Power Cell", type="energy", quantity=3))
        result = session.use_items("wallet1", "cell", 2)

        assert [e.category for e in result.effects] == [EffectCategory.MINING_EFFICIENCY]
        assert result.effects[0].duration == 600_000
        assert session.manager.require("wallet1").get_resource("cell").quantity == 1
        assert session.effects("wallet1").get_multiplier("mining_efficiency") == 1.03

    def test_crystal_grants_experience(self, session):
        connect(session)
        session.manager.add_resource(
            "wallet1", Resource(id="gem", name="Gem", type="crystal", quantity=1, rarity=Rarity.RARE),
        )
        result = session.use_items("wallet1", "gem")
        assert result.experience_gained == 75
        assert session.manager.require("wallet1").experience == 75

    def test_insufficient_quantity(self, session):
        connect(session)
        with pytest.raises(InsufficientQuantityError):
            session.use_items("wallet1", "nothing", 1)
        assert session.effects("wallet1").total_items_used == 0

    def test_effects_survive_restart(self, memory_store, ledger, scheduler, catalog):
        """Effects persist across sessions and expire on the remaining time."""
        first = ProgressSession(memory_store, ledger, catalog=catalog, scheduler=scheduler)
        asyncio.run(first.connect("wallet1", auto_sync=False))
        first.manager.add_resource("wallet1", Resource(id="cell", name="Cell", type="energy", quantity=1))
        first.use_items("wallet1", "cell")
        asyncio.run(first.close())
        assert scheduler.pending() == 0

        scheduler.advance(100_000)
        second = ProgressSession(memory_store, ledger, catalog=catalog, scheduler=scheduler)
        asyncio.run(second.connect("wallet1", auto_sync=False))
        engine = second.effects("wallet1")
        assert engine.get_multiplier("mining_efficiency") == 1.03
        assert engine.total_items_used == 1

        scheduler.advance(200_000)
        assert engine.get_multiplier("mining_efficiency") == 1.0
        assert engine.pending_timers() == 0


class TestClearAll:
    def test_clear_all_progress(self, session, memory_store):
        connect(session)
        asyncio.run(session.clear_all_progress("wallet1"))
        assert not session.is_connected("wallet1")
        assert memory_store.load("wallet1") is None
        assert memory_store.load_effects("wallet1") is None
        assert memory_store.load_sync_meta("wallet1") is None
        assert session.bus.get_history(EventType.PROGRESS_CLEARED)
