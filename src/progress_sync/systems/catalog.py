"""
Mission catalog.

A static, read-only table of mission templates. The catalog controls
unlock requirements, rule tables and rewards; per-player records only
carry status and progress.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator

import yaml
from pydantic import BaseModel, Field

from ..state.schema import (
    MissionRecord,
    MissionStatus,
    MissionType,
    ProgressRule,
    RewardDescriptor,
    UnlockRequirements,
)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent / "data" / "missions.yaml"


class MissionTemplate(BaseModel):
    """Catalog row. Instantiated into a MissionRecord per player."""
    id: str
    title: str
    description: str = ""
    type: MissionType = MissionType.OTHER
    max_progress: int = Field(default=1, ge=1)
    requirements: UnlockRequirements = Field(default_factory=UnlockRequirements)
    rules: list[ProgressRule] = Field(default_factory=list)
    rewards: RewardDescriptor = Field(default_factory=RewardDescriptor)

    def instantiate(self) -> MissionRecord:
        return MissionRecord(
            id=self.id,
            title=self.title,
            description=self.description,
            type=self.type,
            status=MissionStatus.LOCKED,
            progress=0,
            max_progress=self.max_progress,
            rewards=self.rewards.model_copy(deep=True),
            requirements=self.requirements.model_copy(deep=True),
            rules=[rule.model_copy() for rule in self.rules],
        )


class MissionCatalog:
    """Ordered, read-only collection of mission templates."""

    def __init__(self, templates: Iterable[MissionTemplate]):
        self._templates: dict[str, MissionTemplate] = {}
        for template in templates:
            if template.id in self._templates:
                raise ValueError(f"Duplicate mission id in catalog: {template.id}")
            self._templates[template.id] = template

        for template in self._templates.values():
            missing = [
                req for req in template.requirements.completed_missions
                if req not in self._templates
            ]
            if missing:
                raise ValueError(f"{template.id} requires unknown missions: {missing}")

    def __iter__(self) -> Iterator[MissionTemplate]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, mission_id: object) -> bool:
        return mission_id in self._templates

    def get(self, mission_id: str) -> MissionTemplate | None:
        return self._templates.get(mission_id)

    @property
    def ids(self) -> list[str]:
        return list(self._templates)

    def instantiate(self) -> list[MissionRecord]:
        """Fresh, all-locked records for a new player."""
        return [template.instantiate() for template in self._templates.values()]

    @classmethod
    def from_dict(cls, data: dict) -> MissionCatalog:
        return cls(MissionTemplate.model_validate(row) for row in data.get("missions", []))

    @classmethod
    def from_file(cls, path: Path | str) -> MissionCatalog:
        """
        Load a catalog from YAML or JSON.

        Expected shape: {"missions": [<template>, ...]}
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}
        catalog = cls.from_dict(data)
        logger.debug("Loaded %d missions from %s", len(catalog), path)
        return catalog


def default_catalog() -> MissionCatalog:
    """The shipped mission catalog."""
    return MissionCatalog.from_file(DEFAULT_CATALOG_PATH)
