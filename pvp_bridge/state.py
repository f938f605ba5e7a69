"""
Snapshot types read from the host client, plus the collaborator interfaces
the bridge consumes.

Snapshots are frozen: one is taken per cycle on the simulation thread and
handed to the pure encoder and mask builder.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Mapping, Optional, Protocol, Sequence, Tuple


class CombatStyle(str, Enum):
    MELEE = "melee"
    RANGED = "ranged"
    MAGIC = "magic"


class Side(str, Enum):
    """Which actor an event or statistic belongs to."""
    AGENT = "agent"
    OPPONENT = "opponent"


class Overhead(str, Enum):
    PROTECT_MELEE = "protect_melee"
    PROTECT_RANGED = "protect_ranged"
    PROTECT_MAGIC = "protect_magic"
    SMITE = "smite"
    REDEMPTION = "redemption"

    @property
    def protected_style(self) -> Optional[CombatStyle]:
        return _PROTECTED_STYLE.get(self)


_PROTECTED_STYLE = {
    Overhead.PROTECT_MELEE: CombatStyle.MELEE,
    Overhead.PROTECT_RANGED: CombatStyle.RANGED,
    Overhead.PROTECT_MAGIC: CombatStyle.MAGIC,
}


class Spellbook(str, Enum):
    STANDARD = "standard"
    ANCIENT = "ancient"
    LUNAR = "lunar"
    ARCEUUS = "arceuus"


class Skill(str, Enum):
    ATTACK = "attack"
    STRENGTH = "strength"
    DEFENCE = "defence"
    RANGED = "ranged"
    MAGIC = "magic"
    PRAYER = "prayer"
    HITPOINTS = "hitpoints"


# Equipment slot indices as exposed by the client's player composition.
HEAD, CAPE, AMULET, WEAPON, BODY, SHIELD = 0, 1, 2, 3, 4, 5
LEGS, HANDS, FEET, RING, AMMO = 7, 9, 10, 12, 13
EQUIPMENT_SLOT_COUNT = 14
# Slots 6, 8 and 11 are not real equipment slots.
REAL_SLOTS: Tuple[int, ...] = (HEAD, CAPE, AMULET, WEAPON, BODY, SHIELD, LEGS, HANDS, FEET, RING, AMMO)
EMPTY_SLOT = -1
EMPTY_EQUIPMENT: Tuple[int, ...] = (EMPTY_SLOT,) * EQUIPMENT_SLOT_COUNT


@dataclass(frozen=True)
class Position:
    x: int
    y: int
    plane: int = 0

    def distance_to(self, other: "Position") -> float:
        if self.plane != other.plane:
            return math.inf
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class ActorSnapshot:
    """Observable state of one player for the current cycle."""
    actor_id: int
    name: str = ""
    position: Optional[Position] = None
    # Health bar as the client reports it; -1 when no bar is visible.
    health_ratio: int = -1
    health_scale: int = -1
    equipment: Tuple[int, ...] = EMPTY_EQUIPMENT
    overhead: Optional[Overhead] = None
    is_moving: bool = False
    interacting_id: Optional[int] = None

    @property
    def health_fraction(self) -> Optional[float]:
        """Fraction of health from the bar, None when no bar is visible."""
        if self.health_ratio < 0 or self.health_scale <= 0:
            return None
        if self.health_ratio == 0:
            return 0.0
        return min(1.0, self.health_ratio / self.health_scale)

    @property
    def weapon_id(self) -> int:
        if len(self.equipment) <= WEAPON:
            return EMPTY_SLOT
        return self.equipment[WEAPON]


@dataclass(frozen=True)
class InventoryItem:
    item_id: int
    quantity: int = 1


@dataclass(frozen=True)
class AgentSnapshot(ActorSnapshot):
    """The local player: everything the client exposes about ourselves."""
    real_levels: Mapping[Skill, int] = field(default_factory=dict)
    boosted_levels: Mapping[Skill, int] = field(default_factory=dict)
    special_percent: int = 100
    active_prayers: FrozenSet[Overhead] = frozenset()
    inventory: Tuple[InventoryItem, ...] = ()
    spellbook: Spellbook = Spellbook.STANDARD
    destination: Optional[Position] = None
    has_vengeance: bool = False

    def level(self, skill: Skill) -> int:
        return int(self.real_levels.get(skill, 1))

    def boosted(self, skill: Skill) -> int:
        return int(self.boosted_levels.get(skill, self.level(skill)))

    @property
    def protect_style(self) -> Optional[CombatStyle]:
        """Style covered by the active protect prayer (magic > ranged > melee)."""
        for overhead in (Overhead.PROTECT_MAGIC, Overhead.PROTECT_RANGED, Overhead.PROTECT_MELEE):
            if overhead in self.active_prayers:
                return overhead.protected_style
        return None


@dataclass(frozen=True)
class WorldSnapshot:
    tick: int
    agent: AgentSnapshot
    target: Optional[ActorSnapshot] = None
    world_types: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ItemStats:
    """Combat bonuses of one item, in the client's bonus order."""
    astab: int = 0
    aslash: int = 0
    acrush: int = 0
    amagic: int = 0
    arange: int = 0
    dstab: int = 0
    dslash: int = 0
    dcrush: int = 0
    dmagic: int = 0
    drange: int = 0
    str: int = 0
    rstr: int = 0
    mdmg: int = 0
    prayer: int = 0
    aspeed: int = 0

    def as_bonuses(self) -> Tuple[int, ...]:
        return (
            self.astab, self.aslash, self.acrush, self.amagic, self.arange,
            self.dstab, self.dslash, self.dcrush, self.dmagic, self.drange,
            self.str, self.rstr, self.mdmg, self.prayer,
        )


# =========================================================================
# Collaborator interfaces
# =========================================================================

class WorldStateProvider(Protocol):
    def snapshot(self) -> WorldSnapshot:
        ...


class ItemLookup(Protocol):
    def name(self, item_id: int) -> Optional[str]:
        ...

    def stats(self, item_id: int) -> Optional[ItemStats]:
        ...


class ActionDispatcher(Protocol):
    def dispatch(self, action: Sequence[int]) -> None:
        ...


class CycleClock(Protocol):
    def register(self, callback: Callable[[], None]) -> None:
        ...
