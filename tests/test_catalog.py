"""
Tests for the mission catalog.
"""

import json

import pytest
import yaml

from progress_sync.state import MissionEvent, MissionStatus
from progress_sync.systems.catalog import MissionCatalog, MissionTemplate, default_catalog


class TestDefaultCatalog:
    """The shipped twelve missions."""

    def test_twelve_missions(self, catalog):
        assert len(catalog) == 12
        assert catalog.ids[:3] == ["mining_001", "mining_002", "mining_003"]

    def test_instantiated_all_locked(self, catalog):
        records = catalog.instantiate()
        assert all(r.status == MissionStatus.LOCKED for r in records)
        assert all(r.progress == 0 for r in records)

    def test_requirement_free_missions(self, catalog):
        free = [t.id for t in catalog if not t.requirements.completed_missions and t.requirements.level <= 1]
        assert free == ["mining_001", "exploration_001", "crafting_001"]

    @pytest.mark.parametrize("mission_id,level,prereqs", [
        ("mining_002", 2, ["mining_001"]),
        ("crafting_003", 5, ["crafting_002"]),
        ("advanced_001", 8, ["exploration_002", "exploration_003"]),
        ("advanced_003", 10, ["advanced_001", "advanced_002"]),
    ])
    def test_requirements(self, catalog, mission_id, level, prereqs):
        requirements = catalog.get(mission_id).requirements
        assert requirements.level == level
        assert requirements.completed_missions == prereqs

    def test_rewards(self, catalog):
        first = catalog.get("mining_001").rewards
        assert (first.experience, first.credits) == (100, 500)
        assert first.resources[0].id == "common_metal_001"
        assert first.resources[0].quantity == 5

    def test_per_unit_rule(self, catalog):
        record = catalog.get("advanced_002").instantiate()
        assert record.delta_for(MissionEvent(type="mine", quantity=7)) == 7

    def test_targeted_rule(self, catalog):
        record = catalog.get("exploration_003").instantiate()
        assert record.delta_for(MissionEvent(type="explore", target="station")) == 1
        assert record.delta_for(MissionEvent(type="explore", target="asteroid")) == 0

    def test_instances_are_independent(self):
        first = default_catalog().get("mining_001").instantiate()
        second = default_catalog().get("mining_001").instantiate()
        first.rewards.resources[0].quantity = 99
        assert second.rewards.resources[0].quantity == 5


class TestCatalogLoading:
    """Custom catalogs from YAML or JSON."""

    DATA = {
        "missions": [
            {"id": "a", "title": "A", "type": "mining", "rules": [{"event": "mine"}]},
            {"id": "b", "title": "B", "max_progress": 3, "requirements": {"completed_missions": ["a"]}},
        ]
    }

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "missions.yaml"
        path.write_text(yaml.safe_dump(self.DATA), encoding="utf-8")
        catalog = MissionCatalog.from_file(path)
        assert catalog.ids == ["a", "b"]
        assert catalog.get("b").max_progress == 3

    def test_from_json(self, tmp_path):
        path = tmp_path / "missions.json"
        path.write_text(json.dumps(self.DATA), encoding="utf-8")
        assert "a" in MissionCatalog.from_file(path)

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError):
            MissionCatalog([MissionTemplate(id="a", title="A"), MissionTemplate(id="a", title="A")])

    def test_unknown_prerequisite_rejected(self):
        with pytest.raises(ValueError):
            MissionCatalog.from_dict({"missions": [
                {"id": "b", "title": "B", "requirements": {"completed_missions": ["missing"]}},
            ]})
