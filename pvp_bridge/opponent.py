"""
Opponent delegation proxy.

Downstream code holds one OpponentProxy for the whole session. The data
behind it is swapped between a neutral placeholder (no engagement) and a
tracked opponent (engagement active) without the handle ever changing.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .gear import (
    BONUS_COUNT, EquipmentTranslation, GearFeatureExtractor, TargetGearTracker,
    blend_bonuses, translate_equipment,
)
from .state import (
    EMPTY_EQUIPMENT, EMPTY_SLOT, WEAPON, ActorSnapshot, CombatStyle, ItemLookup, Overhead,
    Position, Spellbook,
)
from .utils import (
    SPECIAL_ATTACK_COSTS, VENGEANCE_GRAPHIC, gear_flags_for_name, normalize_item_name,
    MELEE_SPEC_FLAGS,
)

logger = logging.getLogger(__name__)

NEUTRAL_HEALTH = 1.0
FULL_SPECIAL = 100
MAX_HITPOINTS_ESTIMATE = 99


class BindState(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"


class PlaceholderOpponent:
    """
    Neutral opponent used while nothing is engaged.
    Every read returns a defined "no information" value.
    """

    opponent_id: Optional[int] = None
    name: str = ""

    def __init__(self):
        self.translation = EquipmentTranslation()
        self.blended_bonuses = np.zeros(BONUS_COUNT, dtype=np.float32)
        self.gear = TargetGearTracker()

    @property
    def health_fraction(self) -> float:
        return NEUTRAL_HEALTH

    @property
    def hitpoints_estimate(self) -> int:
        return MAX_HITPOINTS_ESTIMATE

    @property
    def special_percent(self) -> float:
        return float(FULL_SPECIAL)

    @property
    def has_vengeance(self) -> bool:
        return False

    @property
    def spellbook(self) -> Spellbook:
        return Spellbook.STANDARD

    @property
    def equipment(self) -> Tuple[int, ...]:
        return EMPTY_EQUIPMENT

    @property
    def weapon_id(self) -> int:
        equipment = self.equipment
        return equipment[WEAPON] if len(equipment) > WEAPON else EMPTY_SLOT

    @property
    def overhead(self) -> Optional[Overhead]:
        return None

    @property
    def position(self) -> Optional[Position]:
        return None

    @property
    def is_moving(self) -> bool:
        return False

    @property
    def interacting_id(self) -> Optional[int]:
        return None

    @property
    def weapon_style(self) -> Optional[CombatStyle]:
        return None

    @property
    def melee_spec_equipped(self) -> bool:
        return False

    def observe(self, snapshot: ActorSnapshot):
        pass

    def on_animation(self, animation: int):
        pass

    def on_graphic(self, graphic: int):
        pass

    def on_damaged(self, amount: int):
        pass

    def advance(self):
        pass


class TrackedOpponent(PlaceholderOpponent):
    """Live opponent: cached gear features plus inferred special/vengeance state."""

    def __init__(self, snapshot: ActorSnapshot, extractor: GearFeatureExtractor,
                 baseline: Optional[np.ndarray] = None, initial_special: int = FULL_SPECIAL,
                 regen_interval: int = 50, regen_amount: int = 10):
        super().__init__()
        self.opponent_id = snapshot.actor_id
        self.name = snapshot.name
        self._extractor = extractor
        self._baseline = baseline
        self._regen_interval = regen_interval
        self._regen_amount = regen_amount
        self._ticks_since_regen = 0

        self._snapshot = snapshot
        self._last_health = NEUTRAL_HEALTH
        self._special = float(initial_special)
        self._vengeance = False
        self._spellbook = Spellbook.STANDARD
        self._weapon_style: Optional[CombatStyle] = None
        self._melee_spec_equipped = False

        # Gear features are computed on entry so the first bound cycle is not stale.
        self._translate(snapshot.equipment)
        self.observe(snapshot)

    def _translate(self, equipment: Tuple[int, ...]):
        self.translation = translate_equipment(equipment, self._extractor.lookup)
        self.blended_bonuses = blend_bonuses(self.translation, self._baseline)
        self.gear.update_current(self.blended_bonuses)

        weapon_id = self.weapon_id
        self._weapon_style = self._extractor.weapon_style(weapon_id)
        weapon_name = normalize_item_name(self._extractor.lookup.name(weapon_id)) if weapon_id > 0 else ""
        self._melee_spec_equipped = any(f in MELEE_SPEC_FLAGS for f in gear_flags_for_name(weapon_name))

    def observe(self, snapshot: ActorSnapshot):
        """Refresh per-cycle data. Gear is re-derived only when it changed."""
        if snapshot.equipment != self.translation.item_ids:
            self._translate(snapshot.equipment)
        self._snapshot = snapshot
        fraction = snapshot.health_fraction
        if fraction is not None:
            self._last_health = fraction

    def on_animation(self, animation: int):
        cost = SPECIAL_ATTACK_COSTS.get(animation)
        if cost is None:
            return
        self._special = max(0.0, self._special - cost)
        logger.debug(f"Opponent {self.name} used special ({cost}%), estimate now {self._special:.0f}%")

    def on_graphic(self, graphic: int):
        if graphic == VENGEANCE_GRAPHIC:
            self._vengeance = True
            self._spellbook = Spellbook.LUNAR

    def on_damaged(self, amount: int):
        # Vengeance is spent on the first damaging hit taken.
        if amount > 0:
            self._vengeance = False

    def advance(self):
        self._ticks_since_regen += 1
        if self._ticks_since_regen >= self._regen_interval:
            self._ticks_since_regen = 0
            self._special = min(float(FULL_SPECIAL), self._special + self._regen_amount)

    @property
    def health_fraction(self) -> float:
        return self._last_health

    @property
    def hitpoints_estimate(self) -> int:
        return int(round(MAX_HITPOINTS_ESTIMATE * self._last_health))

    @property
    def special_percent(self) -> float:
        return self._special

    @property
    def has_vengeance(self) -> bool:
        return self._vengeance

    @property
    def spellbook(self) -> Spellbook:
        return self._spellbook

    @property
    def equipment(self) -> Tuple[int, ...]:
        return self.translation.item_ids

    @property
    def overhead(self) -> Optional[Overhead]:
        return self._snapshot.overhead

    @property
    def position(self) -> Optional[Position]:
        return self._snapshot.position

    @property
    def is_moving(self) -> bool:
        return self._snapshot.is_moving

    @property
    def interacting_id(self) -> Optional[int]:
        return self._snapshot.interacting_id

    @property
    def weapon_style(self) -> Optional[CombatStyle]:
        return self._weapon_style

    @property
    def melee_spec_equipped(self) -> bool:
        return self._melee_spec_equipped


class OpponentProxy:
    """
    Stable handle for "the opponent".

    rebind() swaps the source atomically: same opponent is a no-op, a
    different one replaces every cached feature. Combat history and the
    agent's timers live elsewhere and are untouched.
    """

    def __init__(self, lookup: ItemLookup, baseline: Optional[np.ndarray] = None,
                 initial_special: int = FULL_SPECIAL, regen_interval: int = 50,
                 regen_amount: int = 10):
        self._extractor = GearFeatureExtractor(lookup)
        self._baseline = baseline
        self._initial_special = initial_special
        self._regen_interval = regen_interval
        self._regen_amount = regen_amount
        self._placeholder = PlaceholderOpponent()
        self._source: PlaceholderOpponent = self._placeholder

    @property
    def state(self) -> BindState:
        return BindState.UNBOUND if self._source is self._placeholder else BindState.BOUND

    @property
    def is_bound(self) -> bool:
        return self.state is BindState.BOUND

    @property
    def source(self) -> PlaceholderOpponent:
        return self._source

    def set_baseline(self, baseline: Optional[np.ndarray]):
        """Baseline used for the next bind. The current source keeps its blend."""
        self._baseline = baseline

    def rebind(self, target: Optional[ActorSnapshot]) -> bool:
        """
        Point the proxy at `target` (None unbinds).

        Returns:
            True if the underlying source changed
        """
        target_id = target.actor_id if target is not None else None
        if target_id == self._source.opponent_id:
            return False

        previous = self._source.name or "<none>"
        if target is None:
            self._source = self._placeholder
        else:
            self._source = TrackedOpponent(
                target, self._extractor, self._baseline,
                initial_special=self._initial_special,
                regen_interval=self._regen_interval,
                regen_amount=self._regen_amount,
            )
        logger.info(f"Opponent rebind: {previous} -> {self._source.name or '<none>'} ({self.state.value})")
        return True

    def observe(self, target: Optional[ActorSnapshot]):
        if target is not None and target.actor_id == self._source.opponent_id:
            self._source.observe(target)

    # =========================================================================
    # Delegated reads
    # =========================================================================

    @property
    def opponent_id(self) -> Optional[int]:
        return self._source.opponent_id

    @property
    def name(self) -> str:
        return self._source.name

    @property
    def health_fraction(self) -> float:
        return self._source.health_fraction

    @property
    def hitpoints_estimate(self) -> int:
        return self._source.hitpoints_estimate

    @property
    def special_percent(self) -> float:
        return self._source.special_percent

    @property
    def has_vengeance(self) -> bool:
        return self._source.has_vengeance

    @property
    def spellbook(self) -> Spellbook:
        return self._source.spellbook

    @property
    def equipment(self) -> Tuple[int, ...]:
        return self._source.equipment

    @property
    def weapon_id(self) -> int:
        return self._source.weapon_id

    @property
    def translation(self) -> EquipmentTranslation:
        return self._source.translation

    @property
    def equipment_confidence(self) -> float:
        return self._source.translation.confidence

    @property
    def blended_bonuses(self) -> np.ndarray:
        return self._source.blended_bonuses

    @property
    def gear(self) -> TargetGearTracker:
        return self._source.gear

    @property
    def overhead(self) -> Optional[Overhead]:
        return self._source.overhead

    @property
    def position(self) -> Optional[Position]:
        return self._source.position

    @property
    def is_moving(self) -> bool:
        return self._source.is_moving

    @property
    def interacting_id(self) -> Optional[int]:
        return self._source.interacting_id

    @property
    def weapon_style(self) -> Optional[CombatStyle]:
        return self._source.weapon_style

    @property
    def melee_spec_equipped(self) -> bool:
        return self._source.melee_spec_equipped

    # =========================================================================
    # Event forwarding
    # =========================================================================

    def on_animation(self, animation: int):
        self._source.on_animation(animation)

    def on_graphic(self, graphic: int):
        self._source.on_graphic(graphic)

    def on_damaged(self, amount: int):
        self._source.on_damaged(amount)

    def advance(self):
        self._source.advance()
