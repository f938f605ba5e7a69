"""
Gear feature extraction.

Turns equipped item ids into the capability flags and per-style bonus sums
the encoder needs. The agent's gear is fully visible; an opponent's is not,
so opponent bonuses are blended with a baseline by a confidence score.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from .state import (
    AMMO, EMPTY_EQUIPMENT, REAL_SLOTS, RING, WEAPON, AgentSnapshot, CombatStyle,
    ItemLookup, Skill,
)
from .utils import (
    MAGE_SPEC_FLAGS, MELEE_SPEC_FLAGS, RANGE_SPEC_FLAGS, ResourceCounts,
    classify_weapon, gear_flags_for_name, normalize_item_name, ranged_attack_range,
)

logger = logging.getLogger(__name__)

BONUS_COUNT = 14


class Bonus(IntEnum):
    STAB_ATTACK = 0
    SLASH_ATTACK = 1
    CRUSH_ATTACK = 2
    MAGIC_ATTACK = 3
    RANGED_ATTACK = 4
    STAB_DEFENCE = 5
    SLASH_DEFENCE = 6
    CRUSH_DEFENCE = 7
    MAGIC_DEFENCE = 8
    RANGED_DEFENCE = 9
    MELEE_STRENGTH = 10
    RANGED_STRENGTH = 11
    MAGIC_DAMAGE = 12
    PRAYER = 13


# Accuracy/strength bonus per style. Melee uses slash as its representative.
STYLE_OFFENCE: Mapping[CombatStyle, Tuple[Bonus, Bonus]] = {
    CombatStyle.MAGIC: (Bonus.MAGIC_ATTACK, Bonus.MAGIC_DAMAGE),
    CombatStyle.RANGED: (Bonus.RANGED_ATTACK, Bonus.RANGED_STRENGTH),
    CombatStyle.MELEE: (Bonus.SLASH_ATTACK, Bonus.MELEE_STRENGTH),
}

# Slot confidence for opponent equipment.
VISIBLE_WITH_STATS = 0.95
VISIBLE_WITHOUT_STATS = 0.1
# Rings and ammo never show on the player model.
HIDDEN_SLOT_CONFIDENCE = {RING: 0.1, AMMO: 0.3}

ICE_BARRAGE_LEVEL = 94
BLOOD_BARRAGE_LEVEL = 92
COMBAT_SPELL_LEVEL = 70
VENGEANCE_LEVEL = 94
SPECIAL_THRESHOLD = 25
MAGE_SPECIAL_THRESHOLD = 50


@dataclass(frozen=True)
class StyleBonuses:
    accuracy: float = 0.0
    strength: float = 0.0
    ranged_defence: float = 0.0
    mage_defence: float = 0.0
    melee_defence: float = 0.0

    @classmethod
    def from_bonuses(cls, bonuses: Sequence[float], style: CombatStyle) -> "StyleBonuses":
        accuracy, strength = STYLE_OFFENCE[style]
        return cls(
            accuracy=float(bonuses[accuracy]),
            strength=float(bonuses[strength]),
            ranged_defence=float(bonuses[Bonus.RANGED_DEFENCE]),
            mage_defence=float(bonuses[Bonus.MAGIC_DEFENCE]),
            melee_defence=float(bonuses[Bonus.SLASH_DEFENCE]),
        )


def sum_bonuses(item_ids: Iterable[int], lookup: ItemLookup) -> np.ndarray:
    total = np.zeros(BONUS_COUNT, dtype=np.float32)
    for item_id in item_ids:
        if item_id <= 0:
            continue
        stats = lookup.stats(item_id)
        if stats is not None:
            total += np.asarray(stats.as_bonuses(), dtype=np.float32)
    return total


# =========================================================================
# Agent loadout
# =========================================================================

@dataclass(frozen=True)
class LoadoutFeatures:
    """Capability flags and bonus sums of the agent's current gear."""
    flags: Mapping[str, bool] = field(default_factory=dict)
    bonuses: Tuple[float, ...] = (0.0,) * BONUS_COUNT
    weapon_style: CombatStyle = CombatStyle.MELEE
    weapon_name: str = ""
    melee_attack_speed: int = 1
    ranged_attack_speed: int = 1
    ranged_attack_range: int = 7

    def flag(self, name: str) -> bool:
        return bool(self.flags.get(name, False))

    @property
    def has_melee_spec(self) -> bool:
        return any(self.flag(f) for f in MELEE_SPEC_FLAGS)

    @property
    def has_range_spec(self) -> bool:
        return any(self.flag(f) for f in RANGE_SPEC_FLAGS)

    @property
    def has_mage_spec(self) -> bool:
        return any(self.flag(f) for f in MAGE_SPEC_FLAGS)

    @property
    def melee_spec_equipped(self) -> bool:
        return any(f in MELEE_SPEC_FLAGS for f in gear_flags_for_name(self.weapon_name))

    def observation_fields(self) -> Dict[str, float]:
        fields = {name: float(self.flag(name)) for name in
                  ("isEnchantedDragonBolts", "isEnchantedOpalBolts", "isEnchantedDiamondBolts",
                   "isNightmareStaff", "isZaryteCrossbow", "isBallista", "isMorrigansJavelins",
                   "isDragonKnives", "isDarkBow", "isBloodFury", "isDharoksSet", "isZurielStaff")
                  + MELEE_SPEC_FLAGS}
        fields["isMageSpecWeaponInLoadout"] = float(self.has_mage_spec)
        fields["isRangeSpecWeaponInLoadout"] = float(self.has_range_spec)

        fields.update({
            "rangedGearAttackSpeed": float(self.ranged_attack_speed),
            "rangedGearAttackRange": float(self.ranged_attack_range),
            "meleeGearAttackSpeed": float(self.melee_attack_speed),
        })
        # Bonuses are summed over what is worn now, so each style reports
        # the same defence totals.
        for style, prefix in ((CombatStyle.MAGIC, "magic"), (CombatStyle.RANGED, "ranged"),
                              (CombatStyle.MELEE, "melee")):
            b = StyleBonuses.from_bonuses(self.bonuses, style)
            fields[f"{prefix}GearAccuracy"] = b.accuracy
            fields[f"{prefix}GearStrength"] = b.strength
            fields[f"{prefix}GearRangedDefence"] = b.ranged_defence
            fields[f"{prefix}GearMageDefence"] = b.mage_defence
            fields[f"{prefix}GearMeleeDefence"] = b.melee_defence
        return fields


class GearFeatureExtractor:
    """Derives LoadoutFeatures from item ids via the item lookup service."""

    def __init__(self, lookup: ItemLookup):
        self.lookup = lookup

    def item_names(self, item_ids: Iterable[int]) -> Tuple[str, ...]:
        names = []
        for item_id in item_ids:
            if item_id <= 0:
                continue
            name = normalize_item_name(self.lookup.name(item_id))
            if name:
                names.append(name)
        return tuple(names)

    def flags_for(self, item_ids: Iterable[int]) -> Dict[str, bool]:
        flags: Dict[str, bool] = {}
        for name in self.item_names(item_ids):
            for flag in gear_flags_for_name(name):
                flags[flag] = True
        return flags

    def weapon_style(self, weapon_id: int) -> Optional[CombatStyle]:
        """Style of the wielded weapon; None when nothing is wielded."""
        if weapon_id <= 0:
            return None
        name = normalize_item_name(self.lookup.name(weapon_id))
        return classify_weapon(self.lookup.stats(weapon_id), name)

    def attack_speed(self, weapon_id: int) -> Optional[int]:
        if weapon_id <= 0:
            return None
        stats = self.lookup.stats(weapon_id)
        if stats is None or stats.aspeed <= 0:
            return None
        return stats.aspeed

    def extract(self, equipment: Sequence[int], inventory_ids: Iterable[int] = ()) -> LoadoutFeatures:
        """
        Build agent features.

        Flags cover everything carried (switches live in the inventory);
        bonuses cover what is worn.
        """
        weapon_id = equipment[WEAPON] if len(equipment) > WEAPON else -1
        weapon_name = normalize_item_name(self.lookup.name(weapon_id)) if weapon_id > 0 else ""
        bonuses = sum_bonuses(equipment, self.lookup)

        style = self.weapon_style(weapon_id) or CombatStyle.MELEE
        speed = self.attack_speed(weapon_id)
        melee_speed = max(1, speed) if speed else 1
        ranged_speed = max(1, speed - 1) if speed else 1

        return LoadoutFeatures(
            flags=self.flags_for(tuple(equipment) + tuple(inventory_ids)),
            bonuses=tuple(float(b) for b in bonuses),
            weapon_style=style,
            weapon_name=weapon_name,
            melee_attack_speed=melee_speed,
            ranged_attack_speed=ranged_speed,
            ranged_attack_range=ranged_attack_range(weapon_name),
        )

    def carries_style(self, item_ids: Iterable[int], style: CombatStyle) -> bool:
        """Whether any carried weapon can attack with `style`."""
        for item_id in item_ids:
            if item_id > 0 and self.weapon_style(item_id) is style and self._is_weapon(item_id):
                return True
        return False

    def _is_weapon(self, item_id: int) -> bool:
        stats = self.lookup.stats(item_id)
        # Only weapons carry an attack speed.
        return stats is not None and stats.aspeed > 0


# =========================================================================
# Opponent equipment translation
# =========================================================================

@dataclass(frozen=True)
class EquipmentTranslation:
    """Observed opponent equipment resolved to bonuses with per-slot confidence."""
    item_ids: Tuple[int, ...] = EMPTY_EQUIPMENT
    bonuses: Tuple[float, ...] = (0.0,) * BONUS_COUNT
    slot_confidence: Mapping[int, float] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        """Average confidence over the real equipment slots."""
        return sum(self.slot_confidence.get(s, 0.0) for s in REAL_SLOTS) / len(REAL_SLOTS)


def translate_equipment(equipment: Sequence[int], lookup: ItemLookup) -> EquipmentTranslation:
    bonuses = np.zeros(BONUS_COUNT, dtype=np.float32)
    confidence: Dict[int, float] = {}
    for slot in REAL_SLOTS:
        if slot in HIDDEN_SLOT_CONFIDENCE:
            confidence[slot] = HIDDEN_SLOT_CONFIDENCE[slot]
            continue
        item_id = equipment[slot] if slot < len(equipment) else -1
        if item_id <= 0:
            continue
        stats = lookup.stats(item_id)
        if stats is None:
            confidence[slot] = VISIBLE_WITHOUT_STATS
            continue
        bonuses += np.asarray(stats.as_bonuses(), dtype=np.float32)
        confidence[slot] = VISIBLE_WITH_STATS
    return EquipmentTranslation(
        item_ids=tuple(equipment),
        bonuses=tuple(float(b) for b in bonuses),
        slot_confidence=confidence,
    )


def blend_bonuses(translation: EquipmentTranslation, baseline: Optional[np.ndarray]) -> np.ndarray:
    """confidence * observed + (1 - confidence) * baseline"""
    observed = np.asarray(translation.bonuses, dtype=np.float32)
    if baseline is None:
        return observed
    confidence = np.float32(translation.confidence)
    return confidence * observed + (np.float32(1.0) - confidence) * baseline.astype(np.float32)


def compute_baseline(gear_sets: Iterable[Sequence[int]], lookup: ItemLookup) -> Optional[np.ndarray]:
    """Average bonus vector over the non-empty gear sets of a loadout."""
    sums = [sum_bonuses(gear, lookup) for gear in gear_sets if gear]
    if not sums:
        return None
    return np.mean(np.stack(sums), axis=0).astype(np.float32)


class TargetGearTracker:
    """
    Opponent defences now, and the offence/defence they had the last time
    each style hit the agent.
    """

    def __init__(self):
        self.current = StyleBonuses()
        self.last: Dict[CombatStyle, StyleBonuses] = {}

    def update_current(self, bonuses: Sequence[float]):
        self.current = StyleBonuses.from_bonuses(bonuses, CombatStyle.MELEE)

    def update_last(self, style: CombatStyle, bonuses: Sequence[float]):
        self.last[style] = StyleBonuses.from_bonuses(bonuses, style)

    def observation_fields(self) -> Dict[str, float]:
        fields = {
            "targetCurrentGearRangedDefence": self.current.ranged_defence,
            "targetCurrentGearMageDefence": self.current.mage_defence,
            "targetCurrentGearMeleeDefence": self.current.melee_defence,
        }
        for style, prefix in ((CombatStyle.MAGIC, "Magic"), (CombatStyle.RANGED, "Ranged"),
                              (CombatStyle.MELEE, "Melee")):
            b = self.last.get(style, StyleBonuses())
            fields[f"targetLast{prefix}GearAccuracy"] = b.accuracy
            fields[f"targetLast{prefix}GearStrength"] = b.strength
            fields[f"targetLast{prefix}GearRangedDefence"] = b.ranged_defence
            fields[f"targetLast{prefix}GearMageDefence"] = b.mage_defence
            fields[f"targetLast{prefix}GearMeleeDefence"] = b.melee_defence
        return fields


# =========================================================================
# Capabilities shared by the encoder and the mask builder
# =========================================================================

@dataclass(frozen=True)
class AgentCapabilities:
    """
    What the agent can do this cycle. The encoder's availability fields and
    the mask builder both read this one object, so they cannot disagree.
    """
    magic_level: int = 1
    prayer_level: int = 1
    special_percent: int = 0
    can_cast_spells: bool = False
    can_cast_ice: bool = False
    can_cast_blood: bool = False
    has_ranged_weapon: bool = False
    has_melee_spec: bool = False
    has_range_spec: bool = False
    has_mage_spec: bool = False
    has_tank_gear: bool = False
    resources: ResourceCounts = ResourceCounts()

    @property
    def melee_spec_ready(self) -> bool:
        return self.has_melee_spec and self.special_percent >= SPECIAL_THRESHOLD

    @property
    def range_spec_ready(self) -> bool:
        return self.has_range_spec and self.special_percent >= SPECIAL_THRESHOLD

    @property
    def mage_spec_ready(self) -> bool:
        return self.has_mage_spec and self.special_percent >= MAGE_SPECIAL_THRESHOLD


def build_capabilities(agent: AgentSnapshot, features: LoadoutFeatures,
                       extractor: GearFeatureExtractor, resources: ResourceCounts,
                       has_tank_gear: bool = False) -> AgentCapabilities:
    magic = agent.level(Skill.MAGIC)
    carried = tuple(agent.equipment) + tuple(item.item_id for item in agent.inventory)
    return AgentCapabilities(
        magic_level=magic,
        prayer_level=agent.level(Skill.PRAYER),
        special_percent=agent.special_percent,
        can_cast_spells=magic >= COMBAT_SPELL_LEVEL,
        can_cast_ice=magic >= ICE_BARRAGE_LEVEL,
        can_cast_blood=magic >= BLOOD_BARRAGE_LEVEL,
        has_ranged_weapon=(features.weapon_style is CombatStyle.RANGED
                           or extractor.carries_style(carried, CombatStyle.RANGED)),
        has_melee_spec=features.has_melee_spec,
        has_range_spec=features.has_range_spec,
        has_mage_spec=features.has_mage_spec,
        has_tank_gear=has_tank_gear,
        resources=resources,
    )
