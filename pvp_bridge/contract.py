"""
Observation and action contract shared with the decision service.

The index-to-name table and the head sizes are published: the decision
service is trained against them, so neither may change shape.
"""

from enum import IntEnum
from typing import Dict, List, Sequence, Tuple

import numpy as np
from gymnasium.spaces import Box, MultiDiscrete


class ContractViolation(ValueError):
    """Raised when an observation or mask drifts from the published contract."""


OBS_IDS: Tuple[str, ...] = (
    # Agent equipment (0-4)
    "isMeleeEquipped", "isRangedEquipped", "isMageEquipped",
    "isMeleeSpecialWeaponEquipped", "specialPercentage",
    # Agent prayers (5-9)
    "isProtectMeleeActive", "isProtectRangedActive", "isProtectMagicActive",
    "isSmiteActive", "isRedemptionActive",
    # Health (10-11)
    "healthPercent", "targetHealthPercent",
    # Opponent weapon class (12-15)
    "isTargetMeleeEquipped", "isTargetRangedEquipped", "isTargetMageEquipped",
    "isTargetMeleeSpecialWeaponEquipped",
    # Opponent prayers (16-20)
    "isTargetProtectMeleeActive", "isTargetProtectRangedActive",
    "isTargetProtectMagicActive", "isTargetSmiteActive", "isTargetRedemptionActive",
    # Resources (21-28)
    "targetSpecialPercentage", "remainingRangingPotionDoses",
    "remainingSuperCombatDoses", "remainingSuperRestoreDoses",
    "remainingSaradominBrewDoses", "foodCount", "karamCount", "prayerPointScale",
    # Freeze (29-32)
    "playerFrozenTicks", "targetFrozenTicks", "playerFrozenImmunityTicks",
    "targetFrozenImmunityTicks",
    # Position / levels (33-38)
    "isInMeleeRange", "relativeLevelStrength", "relativeLevelAttack",
    "relativeLevelDefence", "relativeLevelRanged", "relativeLevelMagic",
    # Cooldowns (39-45)
    "ticksUntilNextAttack", "ticksUntilNextFood", "ticksUntilNextPotionCycle",
    "ticksUntilNextKaramCycle", "foodAttackDelay", "ticksUntilNextTargetAttack",
    "ticksUntilNextTargetPotion",
    # Combat state (46-57)
    "pendingDamageOnTargetScale", "ticksUntilHitOnTarget", "ticksUntilHitOnPlayer",
    "didPlayerJustAttack", "didTargetJustAttack", "attackCalculatedDamageScale",
    "hitsplatsLandedOnAgentScale", "hitsplatsLandedOnTargetScale",
    "isAttackingTarget", "isMoving", "isTargetMoving", "isHavePidOverTarget",
    # Spells (58-59)
    "canCastIceBarrage", "canCastBloodBarrage",
    # Distances (60-62)
    "destinationDistanceToTarget", "distanceToDestination", "distanceToTarget",
    # Prayer correctness (63-64)
    "didPlayerPrayCorrectly", "didTargetPrayCorrectly",
    # Cumulative history (65-81)
    "damageDealtScale", "targetHitConfidence",
    "targetHitMeleeCount", "targetHitMageCount", "targetHitRangeCount",
    "playerHitMeleeCount", "playerHitMageCount", "playerHitRangeCount",
    "targetHitCorrectCount", "targetPrayConfidence",
    "targetPrayMageCount", "targetPrayRangeCount", "targetPrayMeleeCount",
    "playerPrayMageCount", "playerPrayRangeCount", "playerPrayMeleeCount",
    "targetPrayCorrectCount",
    # Recent history (82-95)
    "recentTargetHitMeleeCount", "recentTargetHitMageCount", "recentTargetHitRangeCount",
    "recentPlayerHitMeleeCount", "recentPlayerHitMageCount", "recentPlayerHitRangeCount",
    "recentTargetHitCorrectCount", "recentTargetPrayMageCount",
    "recentTargetPrayRangeCount", "recentTargetPrayMeleeCount",
    "recentPlayerPrayMageCount", "recentPlayerPrayRangeCount",
    "recentPlayerPrayMeleeCount", "recentTargetPrayCorrectCount",
    # Absolute levels (96-102)
    "absoluteLevelAttack", "absoluteLevelStrength", "absoluteLevelDefence",
    "absoluteLevelRanged", "absoluteLevelMagic", "absoluteLevelPrayer",
    "absoluteLevelHitpoints",
    # Gear flags (103-123)
    "isEnchantedDragonBolts", "isEnchantedOpalBolts", "isEnchantedDiamondBolts",
    "isMageSpecWeaponInLoadout", "isRangeSpecWeaponInLoadout", "isNightmareStaff",
    "isZaryteCrossbow", "isBallista", "isMorrigansJavelins", "isDragonKnives",
    "isDarkBow", "isMeleeSpecDclaws", "isMeleeSpecDds", "isMeleeSpecAgs",
    "isMeleeSpecVls", "isMeleeSpecStatHammer", "isMeleeSpecAncientGodsword",
    "isMeleeSpecGraniteMaul", "isBloodFury", "isDharoksSet", "isZurielStaff",
    # Agent gear bonuses (124-141)
    "magicGearAccuracy", "magicGearStrength", "rangedGearAccuracy",
    "rangedGearStrength", "rangedGearAttackSpeed", "rangedGearAttackRange",
    "meleeGearAccuracy", "meleeGearStrength", "meleeGearAttackSpeed",
    "magicGearRangedDefence", "magicGearMageDefence", "magicGearMeleeDefence",
    "rangedGearRangedDefence", "rangedGearMageDefence", "rangedGearMeleeDefence",
    "meleeGearRangedDefence", "meleeGearMageDefence", "meleeGearMeleeDefence",
    # Opponent gear (142-159)
    "targetCurrentGearRangedDefence", "targetCurrentGearMageDefence",
    "targetCurrentGearMeleeDefence",
    "targetLastMagicGearAccuracy", "targetLastMagicGearStrength",
    "targetLastRangedGearAccuracy", "targetLastRangedGearStrength",
    "targetLastMeleeGearAccuracy", "targetLastMeleeGearStrength",
    "targetLastMagicGearRangedDefence", "targetLastMagicGearMageDefence",
    "targetLastMagicGearMeleeDefence",
    "targetLastRangedGearRangedDefence", "targetLastRangedGearMageDefence",
    "targetLastRangedGearMeleeDefence",
    "targetLastMeleeGearRangedDefence", "targetLastMeleeGearMageDefence",
    "targetLastMeleeGearMeleeDefence",
    # Game mode (160-161)
    "isLms", "isPvpArena",
    # Vengeance / spellbook (162-167)
    "isVengActive", "isTargetVengActive", "isPlayerLunarSpellbook",
    "isTargetLunarSpellbook", "playerVengCooldownTicks", "targetVengCooldownTicks",
    # Attack availability (168-175)
    "isBloodAttackAvailable", "isIceAttackAvailable", "isMageSpecAttackAvailable",
    "isRangedAttackAvailable", "isRangedSpecAttackAvailable", "isMeleeAttackAvailable",
    "isMeleeSpecAttackAvailable", "isAnglerfish",
)

OBS_SIZE = 176
OBS_INDEX: Dict[str, int] = {name: i for i, name in enumerate(OBS_IDS)}

# Fields describing the opponent. With no opponent bound they must read as
# their neutral value: "no information", never "opponent defeated".
OPPONENT_NEUTRAL_DEFAULTS: Dict[str, float] = {
    "targetHealthPercent": 1.0,
    "targetSpecialPercentage": 1.0,
    "destinationDistanceToTarget": 1.0,
    "distanceToTarget": 1.0,
}

OPPONENT_FIELDS: Tuple[str, ...] = (
    "targetHealthPercent",
    "isTargetMeleeEquipped", "isTargetRangedEquipped", "isTargetMageEquipped",
    "isTargetMeleeSpecialWeaponEquipped",
    "isTargetProtectMeleeActive", "isTargetProtectRangedActive",
    "isTargetProtectMagicActive", "isTargetSmiteActive", "isTargetRedemptionActive",
    "targetSpecialPercentage", "targetFrozenTicks", "targetFrozenImmunityTicks",
    "isInMeleeRange", "ticksUntilNextTargetAttack", "ticksUntilNextTargetPotion",
    "ticksUntilHitOnPlayer", "didTargetJustAttack", "isAttackingTarget",
    "isTargetMoving", "isHavePidOverTarget",
    "destinationDistanceToTarget", "distanceToTarget", "didTargetPrayCorrectly",
    "targetCurrentGearRangedDefence", "targetCurrentGearMageDefence",
    "targetCurrentGearMeleeDefence",
    "targetLastMagicGearAccuracy", "targetLastMagicGearStrength",
    "targetLastRangedGearAccuracy", "targetLastRangedGearStrength",
    "targetLastMeleeGearAccuracy", "targetLastMeleeGearStrength",
    "targetLastMagicGearRangedDefence", "targetLastMagicGearMageDefence",
    "targetLastMagicGearMeleeDefence",
    "targetLastRangedGearRangedDefence", "targetLastRangedGearMageDefence",
    "targetLastRangedGearMeleeDefence",
    "targetLastMeleeGearRangedDefence", "targetLastMeleeGearMageDefence",
    "targetLastMeleeGearMeleeDefence",
    "isTargetVengActive", "isTargetLunarSpellbook", "targetVengCooldownTicks",
)


class Head(IntEnum):
    """Action heads in wire order."""
    ATTACK = 0
    MELEE = 1
    RANGED = 2
    MAGE = 3
    POTION = 4
    FOOD = 5
    KARAMBWAN = 6
    VENGEANCE = 7
    GEAR = 8
    MOVEMENT = 9
    DISTANCE = 10
    PRAYER = 11


ACTION_HEAD_SIZES: Tuple[int, ...] = (4, 3, 3, 4, 5, 2, 2, 2, 2, 5, 7, 6)
HEAD_COUNT = len(ACTION_HEAD_SIZES)
ACTION_HEAD_OFFSETS: Tuple[int, ...] = tuple(
    int(x) for x in np.concatenate(([0], np.cumsum(ACTION_HEAD_SIZES)[:-1]))
)
FLAT_ACTION_SIZE = sum(ACTION_HEAD_SIZES)

HEAD_NAMES: Tuple[str, ...] = (
    "Attack", "Melee", "Ranged", "Mage", "Potion", "Food",
    "Karamb", "Venge", "Gear", "Move", "Distance", "Prayer",
)

# Option labels per head, index 0 is always the no-op.
HEAD_OPTIONS: Tuple[Tuple[str, ...], ...] = (
    ("none", "mage", "ranged", "melee"),
    ("none", "basic", "spec"),
    ("none", "basic", "spec"),
    ("none", "ice", "blood", "spec"),
    ("none", "brew", "restore", "combat", "ranging"),
    ("none", "eat"),
    ("none", "eat"),
    ("none", "cast"),
    ("none", "tank"),
    ("none", "adjacent", "under", "farcast", "diagonal"),
    ("none", "2", "3", "4", "5", "6", "7"),
    ("none", "mage", "range", "melee", "smite", "redemption"),
)

NOOP = 0


def head_offset(head: int) -> int:
    """Offset of a head inside the flattened action layout."""
    if not 0 <= int(head) < HEAD_COUNT:
        raise ValueError(f"Invalid action head {head} (expected 0..{HEAD_COUNT - 1})")
    return ACTION_HEAD_OFFSETS[int(head)]


def safe_default_action() -> List[int]:
    """All heads set to no-op."""
    return [NOOP] * HEAD_COUNT


PER_CYCLE_DAMAGE_FIELDS = ("hitsplatsLandedOnAgentScale", "hitsplatsLandedOnTargetScale")


def observation_bounds() -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-field low/high bounds.

    Gear bonus sums are raw and can be negative, so they are unbounded.
    damageDealtScale is clamped to [0.5, 2.0]. The per-cycle damage sums can
    pass 1 on multi-hit cycles. Everything else is in [0, 1].
    """
    low = np.zeros(OBS_SIZE, dtype=np.float32)
    high = np.ones(OBS_SIZE, dtype=np.float32)
    for i, name in enumerate(OBS_IDS):
        if "Gear" in name:
            low[i], high[i] = -np.inf, np.inf
    high[OBS_INDEX["damageDealtScale"]] = 2.0
    for name in PER_CYCLE_DAMAGE_FIELDS:
        high[OBS_INDEX[name]] = np.inf
    return low, high


def get_observation_space() -> Box:
    low, high = observation_bounds()
    return Box(low=low, high=high, dtype=np.float32)


def get_action_space() -> MultiDiscrete:
    return MultiDiscrete(list(ACTION_HEAD_SIZES))


def validate_observation(observation: np.ndarray) -> np.ndarray:
    """
    Fail fast on observation shape drift.

    Args:
        observation: Encoded observation vector

    Returns:
        The same array, for chaining

    Raises:
        ContractViolation: If the length differs from OBS_SIZE or values are not finite
    """
    if observation.shape != (OBS_SIZE,):
        raise ContractViolation(
            f"CRITICAL OBS SIZE MISMATCH! Contract={OBS_SIZE}, Actual={observation.shape}"
        )
    if not np.isfinite(observation).all():
        bad = [OBS_IDS[i] for i in np.flatnonzero(~np.isfinite(observation))]
        raise ContractViolation(f"Non-finite observation fields: {bad}")
    return observation


def validate_mask(mask: Sequence[Sequence[bool]]) -> Sequence[Sequence[bool]]:
    """Fail fast on mask shape drift or a disabled no-op."""
    if len(mask) != HEAD_COUNT:
        raise ContractViolation(
            f"CRITICAL MASK SIZE MISMATCH! Contract={HEAD_COUNT} heads, Actual={len(mask)}"
        )
    for head, (row, size) in enumerate(zip(mask, ACTION_HEAD_SIZES)):
        if len(row) != size:
            raise ContractViolation(
                f"CRITICAL MASK SIZE MISMATCH! Head {HEAD_NAMES[head]} "
                f"Contract={size}, Actual={len(row)}"
            )
        if not row[NOOP]:
            raise ContractViolation(f"No-op disabled on head {HEAD_NAMES[head]}")
    return mask


# Import-time guard against editing one table without the other.
if len(OBS_IDS) != OBS_SIZE or len(OBS_INDEX) != OBS_SIZE:
    raise ContractViolation(
        f"CRITICAL OBS SIZE MISMATCH! Contract={OBS_SIZE}, Names={len(OBS_IDS)}"
    )
if len(HEAD_OPTIONS) != HEAD_COUNT or any(
    len(opts) != size for opts, size in zip(HEAD_OPTIONS, ACTION_HEAD_SIZES)
):
    raise ContractViolation("CRITICAL MASK SIZE MISMATCH! Option labels out of sync")
