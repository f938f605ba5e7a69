"""
Account builds, fight types and the loadout registry.

Loadouts are configuration data: each one lists the gear sets an account
switches between. They are loaded once at startup and feed the opponent
baseline bonuses and the tank-switch action.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AccountBuild(str, Enum):
    PURE = "pure"
    ZERKER = "zerker"
    MED = "med"
    MAXED = "maxed"
    LMS_PURE = "lms_pure"
    LMS_ZERKER = "lms_zerker"
    LMS_MED = "lms_med"


class LoadoutOverride(str, Enum):
    AUTO = "auto"
    PURE = "pure"
    ZERKER = "zerker"
    MED = "med"
    MAXED = "maxed"
    LMS_PURE = "lms_pure"
    LMS_ZERKER = "lms_zerker"
    LMS_MED = "lms_med"

    @property
    def build(self) -> Optional[AccountBuild]:
        if self is LoadoutOverride.AUTO:
            return None
        return AccountBuild(self.value)


class FightType(str, Enum):
    NORMAL = "normal"
    LMS = "lms"
    PVP_ARENA = "pvp_arena"


class GearLoadout(BaseModel):
    """Item ids for every gear set of one build."""

    build: AccountBuild
    equipment: List[int] = Field(default_factory=list, description="Base equipment worn between switches")
    melee_gear: List[int] = Field(default_factory=list)
    ranged_gear: List[int] = Field(default_factory=list)
    mage_gear: List[int] = Field(default_factory=list)
    tank_gear: List[int] = Field(default_factory=list)
    melee_spec_gear: List[int] = Field(default_factory=list)

    def gear_sets(self) -> List[List[int]]:
        return [self.melee_gear, self.ranged_gear, self.mage_gear, self.tank_gear, self.melee_spec_gear]

    def variant_items(self) -> List[int]:
        items: List[int] = []
        for gear in self.gear_sets():
            items.extend(gear)
        return items


class LoadoutRegistry:
    """Immutable build -> loadout mapping."""

    def __init__(self, loadouts: Iterable[GearLoadout] = ()):
        self._loadouts: Dict[AccountBuild, GearLoadout] = {}
        for loadout in loadouts:
            self._loadouts[loadout.build] = loadout

    def get(self, build: AccountBuild) -> Optional[GearLoadout]:
        return self._loadouts.get(build)

    def __iter__(self):
        return iter(self._loadouts.values())

    def __len__(self) -> int:
        return len(self._loadouts)

    @classmethod
    def from_json(cls, path: Path) -> "LoadoutRegistry":
        with open(path, 'r') as f:
            data = json.load(f)
        registry = cls(GearLoadout.model_validate(entry) for entry in data)
        logger.info(f"Loaded {len(registry)} loadouts from {path}")
        return registry


LMS_WORLD_TYPES = frozenset({"LAST_MAN_STANDING"})
PVP_ARENA_WORLD_TYPES = frozenset({"PVP_ARENA"})


def detect_fight_type(world_types: Iterable[str]) -> FightType:
    types = {t.upper() for t in world_types}
    if types & LMS_WORLD_TYPES:
        return FightType.LMS
    if types & PVP_ARENA_WORLD_TYPES:
        return FightType.PVP_ARENA
    return FightType.NORMAL


def detect_account_build(defence_level: int, fight_type: FightType = FightType.NORMAL) -> AccountBuild:
    """Classify an account by its defence level."""
    lms = fight_type is FightType.LMS
    if defence_level <= 1:
        return AccountBuild.LMS_PURE if lms else AccountBuild.PURE
    if defence_level <= 45:
        return AccountBuild.LMS_ZERKER if lms else AccountBuild.ZERKER
    if defence_level <= 70:
        return AccountBuild.LMS_MED if lms else AccountBuild.MED
    return AccountBuild.MAXED


@dataclass(frozen=True)
class LoadoutSelection:
    build: AccountBuild
    loadout: Optional[GearLoadout]
    reason: str


def score_loadout(loadout: GearLoadout, carried: Sequence[int]) -> int:
    """Base equipment matches weigh ten times more than switch items."""
    carried_set = set(carried)
    base = sum(1 for item in loadout.equipment if item in carried_set)
    variant = sum(1 for item in set(loadout.variant_items()) if item in carried_set)
    return base * 100 + variant * 10


def select_loadout(registry: LoadoutRegistry, override: LoadoutOverride,
                   detected: AccountBuild, carried: Sequence[int]) -> LoadoutSelection:
    """
    Pick the active loadout.

    An explicit override wins. Otherwise the best-scoring registered loadout
    is used, falling back to the one registered for the detected build.
    """
    if override.build is not None:
        return LoadoutSelection(override.build, registry.get(override.build), "override")

    best: Optional[GearLoadout] = None
    best_score = 0
    for loadout in registry:
        score = score_loadout(loadout, carried)
        if score > best_score:
            best, best_score = loadout, score
    if best is not None:
        return LoadoutSelection(best.build, best, f"matched equipment (score={best_score})")
    return LoadoutSelection(detected, registry.get(detected), "detected from levels")
