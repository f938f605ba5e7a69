"""
Feature encoders for the PvP observation vector.

Each encoder owns a fixed set of named fields and computes them from one
EncodingContext. Encoders hold no state, so the same context always
produces the same values.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from .contract import OPPONENT_NEUTRAL_DEFAULTS
from .gear import AgentCapabilities, LoadoutFeatures
from .loadouts import FightType
from .opponent import OpponentProxy
from .state import AgentSnapshot, CombatStyle, Overhead, Side, Skill, Spellbook, WorldSnapshot
from .timers import CombatTimers, TimerKey

# Normalization caps, in ticks unless noted.
FREEZE_CAP = 32
FREEZE_IMMUNITY_CAP = 37
ATTACK_CAP = 10
CONSUMABLE_CAP = 3
HIT_DELAY_CAP = 4
VENGEANCE_CAP = 50
DISTANCE_CAP = 10       # tiles
RESOURCE_CAP = 10       # doses / items
LEVEL_CAP = 99
MELEE_RANGE = 1.0       # tiles
FOOD_ATTACK_DELAY = 3


def scale(value: float, cap: float) -> float:
    """Clamp to [0, cap] and divide by cap."""
    return min(max(float(value), 0.0), float(cap)) / float(cap)


def flag(value: bool) -> float:
    return 1.0 if value else 0.0


@dataclass(frozen=True)
class EncodingContext:
    """Everything one cycle's observation is computed from."""
    world: WorldSnapshot
    opponent: OpponentProxy
    timers: CombatTimers
    history: Mapping[str, float]
    features: LoadoutFeatures
    capabilities: AgentCapabilities
    fight_type: FightType = FightType.NORMAL

    @property
    def agent(self) -> AgentSnapshot:
        return self.world.agent

    @property
    def tick(self) -> int:
        return self.world.tick

    @property
    def has_opponent(self) -> bool:
        return self.opponent.is_bound


class FieldEncoder:
    """Base class: FIELDS names every observation field the encoder writes."""

    FIELDS: Tuple[str, ...] = ()

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        raise NotImplementedError


class AgentEquipmentEncoder(FieldEncoder):
    FIELDS = ("isMeleeEquipped", "isRangedEquipped", "isMageEquipped",
              "isMeleeSpecialWeaponEquipped", "specialPercentage")

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        style = ctx.features.weapon_style
        return {
            "isMeleeEquipped": flag(style is CombatStyle.MELEE),
            "isRangedEquipped": flag(style is CombatStyle.RANGED),
            "isMageEquipped": flag(style is CombatStyle.MAGIC),
            "isMeleeSpecialWeaponEquipped": flag(ctx.features.melee_spec_equipped),
            "specialPercentage": scale(ctx.agent.special_percent, 100),
        }


class PrayerEncoder(FieldEncoder):
    """Overheads for both sides, prayer points and prayer correctness."""

    FIELDS = (
        "isProtectMeleeActive", "isProtectRangedActive", "isProtectMagicActive",
        "isSmiteActive", "isRedemptionActive",
        "isTargetProtectMeleeActive", "isTargetProtectRangedActive",
        "isTargetProtectMagicActive", "isTargetSmiteActive", "isTargetRedemptionActive",
        "prayerPointScale", "didPlayerPrayCorrectly", "didTargetPrayCorrectly",
    )

    _ORDER = (
        ("ProtectMelee", Overhead.PROTECT_MELEE),
        ("ProtectRanged", Overhead.PROTECT_RANGED),
        ("ProtectMagic", Overhead.PROTECT_MAGIC),
        ("Smite", Overhead.SMITE),
        ("Redemption", Overhead.REDEMPTION),
    )

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        agent = ctx.agent
        target_overhead = ctx.opponent.overhead
        values: Dict[str, float] = {}
        for key, overhead in self._ORDER:
            values[f"is{key}Active"] = flag(overhead in agent.active_prayers)
            values[f"isTarget{key}Active"] = flag(target_overhead is overhead)

        real_prayer = agent.level(Skill.PRAYER)
        values["prayerPointScale"] = scale(agent.boosted(Skill.PRAYER), real_prayer) if real_prayer > 0 else 0.0
        values["didPlayerPrayCorrectly"] = flag(ctx.timers.agent_prayed_correctly)
        values["didTargetPrayCorrectly"] = flag(ctx.has_opponent and ctx.timers.opponent_prayed_correctly)
        return values


class HealthEncoder(FieldEncoder):
    FIELDS = ("healthPercent", "targetHealthPercent")

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        agent = ctx.agent
        health = agent.health_fraction
        if health is None:
            real = agent.level(Skill.HITPOINTS)
            health = scale(agent.boosted(Skill.HITPOINTS), real) if real > 0 else 1.0
        return {
            "healthPercent": health,
            "targetHealthPercent": ctx.opponent.health_fraction,
        }


class OpponentEquipmentEncoder(FieldEncoder):
    FIELDS = ("isTargetMeleeEquipped", "isTargetRangedEquipped", "isTargetMageEquipped",
              "isTargetMeleeSpecialWeaponEquipped", "targetSpecialPercentage")

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        style = ctx.opponent.weapon_style
        return {
            "isTargetMeleeEquipped": flag(style is CombatStyle.MELEE),
            "isTargetRangedEquipped": flag(style is CombatStyle.RANGED),
            "isTargetMageEquipped": flag(style is CombatStyle.MAGIC),
            "isTargetMeleeSpecialWeaponEquipped": flag(ctx.opponent.melee_spec_equipped),
            "targetSpecialPercentage": scale(ctx.opponent.special_percent, 100),
        }


class ResourceEncoder(FieldEncoder):
    FIELDS = ("remainingRangingPotionDoses", "remainingSuperCombatDoses",
              "remainingSuperRestoreDoses", "remainingSaradominBrewDoses",
              "foodCount", "karamCount", "isAnglerfish")

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        r = ctx.capabilities.resources
        return {
            "remainingRangingPotionDoses": scale(r.ranging_doses, RESOURCE_CAP),
            "remainingSuperCombatDoses": scale(r.combat_doses, RESOURCE_CAP),
            "remainingSuperRestoreDoses": scale(r.restore_doses, RESOURCE_CAP),
            "remainingSaradominBrewDoses": scale(r.brew_doses, RESOURCE_CAP),
            "foodCount": scale(r.food, RESOURCE_CAP),
            "karamCount": scale(r.karambwan, RESOURCE_CAP),
            "isAnglerfish": flag(r.anglerfish > 0),
        }


class CombatTimingEncoder(FieldEncoder):
    """Freezes, cooldowns, pending hits and attack order."""

    FIELDS = (
        "playerFrozenTicks", "targetFrozenTicks",
        "playerFrozenImmunityTicks", "targetFrozenImmunityTicks",
        "ticksUntilNextAttack", "ticksUntilNextFood", "ticksUntilNextPotionCycle",
        "ticksUntilNextKaramCycle", "foodAttackDelay", "ticksUntilNextTargetAttack",
        "ticksUntilNextTargetPotion", "pendingDamageOnTargetScale",
        "ticksUntilHitOnTarget", "ticksUntilHitOnPlayer", "didPlayerJustAttack",
        "didTargetJustAttack", "attackCalculatedDamageScale", "isHavePidOverTarget",
        "playerVengCooldownTicks", "targetVengCooldownTicks",
    )

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        timers = ctx.timers
        agent, opponent = timers.agent, timers.opponent
        attack_cooldown = agent.remaining(TimerKey.ATTACK_COOLDOWN)
        return {
            "playerFrozenTicks": scale(agent.remaining(TimerKey.FREEZE), FREEZE_CAP),
            "targetFrozenTicks": scale(opponent.remaining(TimerKey.FREEZE), FREEZE_CAP),
            "playerFrozenImmunityTicks": scale(agent.remaining(TimerKey.FREEZE_IMMUNITY), FREEZE_IMMUNITY_CAP),
            "targetFrozenImmunityTicks": scale(opponent.remaining(TimerKey.FREEZE_IMMUNITY), FREEZE_IMMUNITY_CAP),
            "ticksUntilNextAttack": scale(attack_cooldown, ATTACK_CAP),
            "ticksUntilNextFood": scale(agent.remaining(TimerKey.FOOD), CONSUMABLE_CAP),
            "ticksUntilNextPotionCycle": scale(agent.remaining(TimerKey.POTION), CONSUMABLE_CAP),
            "ticksUntilNextKaramCycle": scale(agent.remaining(TimerKey.KARAMBWAN), CONSUMABLE_CAP),
            # Eating pushes the attack timer to at least FOOD_ATTACK_DELAY ticks.
            "foodAttackDelay": scale(FOOD_ATTACK_DELAY - attack_cooldown, FOOD_ATTACK_DELAY),
            "ticksUntilNextTargetAttack": scale(opponent.remaining(TimerKey.ATTACK_COOLDOWN), ATTACK_CAP),
            "ticksUntilNextTargetPotion": scale(opponent.remaining(TimerKey.POTION), CONSUMABLE_CAP),
            # Damage rolls are server-side; no client signal carries them.
            "pendingDamageOnTargetScale": 0.0,
            "attackCalculatedDamageScale": 0.0,
            "ticksUntilHitOnTarget": scale(agent.remaining(TimerKey.PENDING_HIT), HIT_DELAY_CAP),
            "ticksUntilHitOnPlayer": scale(opponent.remaining(TimerKey.PENDING_HIT), HIT_DELAY_CAP),
            "didPlayerJustAttack": flag(timers.did_attack(Side.AGENT, ctx.tick)),
            "didTargetJustAttack": flag(ctx.has_opponent and timers.did_attack(Side.OPPONENT, ctx.tick)),
            "isHavePidOverTarget": flag(ctx.has_opponent and timers.agent_has_pid(ctx.tick)),
            "playerVengCooldownTicks": scale(agent.remaining(TimerKey.VENGEANCE_COOLDOWN), VENGEANCE_CAP),
            "targetVengCooldownTicks": scale(opponent.remaining(TimerKey.VENGEANCE_COOLDOWN), VENGEANCE_CAP),
        }


class PositionEncoder(FieldEncoder):
    FIELDS = ("isInMeleeRange", "isAttackingTarget", "isMoving", "isTargetMoving",
              "destinationDistanceToTarget", "distanceToDestination", "distanceToTarget")

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        agent = ctx.agent
        values = {
            "isMoving": flag(agent.is_moving),
            "distanceToDestination": scale(ctx.timers.distance_to_destination, DISTANCE_CAP),
        }
        distance = self._distance(ctx)
        if distance is None:
            values.update({
                "isInMeleeRange": 0.0,
                "isAttackingTarget": 0.0,
                "isTargetMoving": 0.0,
                "destinationDistanceToTarget": OPPONENT_NEUTRAL_DEFAULTS["destinationDistanceToTarget"],
                "distanceToTarget": OPPONENT_NEUTRAL_DEFAULTS["distanceToTarget"],
            })
            return values

        values.update({
            "isInMeleeRange": flag(distance <= MELEE_RANGE),
            "isAttackingTarget": flag(agent.interacting_id == ctx.opponent.opponent_id),
            "isTargetMoving": flag(ctx.opponent.is_moving),
            "destinationDistanceToTarget": scale(ctx.timers.destination_distance_to_target, DISTANCE_CAP),
            "distanceToTarget": scale(distance, DISTANCE_CAP),
        })
        return values

    @staticmethod
    def _distance(ctx: EncodingContext) -> Optional[float]:
        if not ctx.has_opponent:
            return None
        mine, theirs = ctx.agent.position, ctx.opponent.position
        if mine is None or theirs is None:
            return None
        return mine.distance_to(theirs)


class LevelEncoder(FieldEncoder):
    FIELDS = (
        "relativeLevelStrength", "relativeLevelAttack", "relativeLevelDefence",
        "relativeLevelRanged", "relativeLevelMagic",
        "absoluteLevelAttack", "absoluteLevelStrength", "absoluteLevelDefence",
        "absoluteLevelRanged", "absoluteLevelMagic", "absoluteLevelPrayer",
        "absoluteLevelHitpoints",
    )

    _ABSOLUTE = (
        ("Attack", Skill.ATTACK), ("Strength", Skill.STRENGTH), ("Defence", Skill.DEFENCE),
        ("Ranged", Skill.RANGED), ("Magic", Skill.MAGIC), ("Prayer", Skill.PRAYER),
        ("Hitpoints", Skill.HITPOINTS),
    )

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        # Opponent levels are not visible on a live client, so relative levels stay even.
        values = {name: 0.0 for name in self.FIELDS if name.startswith("relative")}
        for key, skill in self._ABSOLUTE:
            values[f"absoluteLevel{key}"] = scale(ctx.agent.level(skill), LEVEL_CAP)
        return values


class AvailabilityEncoder(FieldEncoder):
    FIELDS = (
        "canCastIceBarrage", "canCastBloodBarrage",
        "isBloodAttackAvailable", "isIceAttackAvailable", "isMageSpecAttackAvailable",
        "isRangedAttackAvailable", "isRangedSpecAttackAvailable", "isMeleeAttackAvailable",
        "isMeleeSpecAttackAvailable",
    )

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        caps = ctx.capabilities
        return {
            "canCastIceBarrage": flag(caps.can_cast_ice),
            "canCastBloodBarrage": flag(caps.can_cast_blood),
            "isBloodAttackAvailable": flag(caps.can_cast_blood),
            "isIceAttackAvailable": flag(caps.can_cast_ice),
            "isMageSpecAttackAvailable": flag(caps.mage_spec_ready),
            "isRangedAttackAvailable": flag(caps.has_ranged_weapon),
            "isRangedSpecAttackAvailable": flag(caps.range_spec_ready),
            "isMeleeAttackAvailable": 1.0,
            "isMeleeSpecAttackAvailable": flag(caps.melee_spec_ready),
        }


class HistoryEncoder(FieldEncoder):
    FIELDS = (
        "hitsplatsLandedOnAgentScale", "hitsplatsLandedOnTargetScale",
        "damageDealtScale", "targetHitConfidence",
        "targetHitMeleeCount", "targetHitMageCount", "targetHitRangeCount",
        "playerHitMeleeCount", "playerHitMageCount", "playerHitRangeCount",
        "targetHitCorrectCount", "targetPrayConfidence",
        "targetPrayMageCount", "targetPrayRangeCount", "targetPrayMeleeCount",
        "playerPrayMageCount", "playerPrayRangeCount", "playerPrayMeleeCount",
        "targetPrayCorrectCount",
        "recentTargetHitMeleeCount", "recentTargetHitMageCount", "recentTargetHitRangeCount",
        "recentPlayerHitMeleeCount", "recentPlayerHitMageCount", "recentPlayerHitRangeCount",
        "recentTargetHitCorrectCount", "recentTargetPrayMageCount",
        "recentTargetPrayRangeCount", "recentTargetPrayMeleeCount",
        "recentPlayerPrayMageCount", "recentPlayerPrayRangeCount",
        "recentPlayerPrayMeleeCount", "recentTargetPrayCorrectCount",
    )

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        return {name: float(ctx.history.get(name, 0.0)) for name in self.FIELDS}


class GearEncoder(FieldEncoder):
    """Agent loadout flags/bonuses and the opponent's blended gear stats."""

    FIELDS = (
        "isEnchantedDragonBolts", "isEnchantedOpalBolts", "isEnchantedDiamondBolts",
        "isMageSpecWeaponInLoadout", "isRangeSpecWeaponInLoadout", "isNightmareStaff",
        "isZaryteCrossbow", "isBallista", "isMorrigansJavelins", "isDragonKnives",
        "isDarkBow", "isMeleeSpecDclaws", "isMeleeSpecDds", "isMeleeSpecAgs",
        "isMeleeSpecVls", "isMeleeSpecStatHammer", "isMeleeSpecAncientGodsword",
        "isMeleeSpecGraniteMaul", "isBloodFury", "isDharoksSet", "isZurielStaff",
        "magicGearAccuracy", "magicGearStrength", "rangedGearAccuracy",
        "rangedGearStrength", "rangedGearAttackSpeed", "rangedGearAttackRange",
        "meleeGearAccuracy", "meleeGearStrength", "meleeGearAttackSpeed",
        "magicGearRangedDefence", "magicGearMageDefence", "magicGearMeleeDefence",
        "rangedGearRangedDefence", "rangedGearMageDefence", "rangedGearMeleeDefence",
        "meleeGearRangedDefence", "meleeGearMageDefence", "meleeGearMeleeDefence",
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
    )

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        values = ctx.features.observation_fields()
        values.update(ctx.opponent.gear.observation_fields())
        return values


class ModeEncoder(FieldEncoder):
    FIELDS = ("isLms", "isPvpArena", "isVengActive", "isTargetVengActive",
              "isPlayerLunarSpellbook", "isTargetLunarSpellbook")

    def encode(self, ctx: EncodingContext) -> Dict[str, float]:
        return {
            "isLms": flag(ctx.fight_type is FightType.LMS),
            "isPvpArena": flag(ctx.fight_type is FightType.PVP_ARENA),
            "isVengActive": flag(ctx.agent.has_vengeance),
            "isTargetVengActive": flag(ctx.opponent.has_vengeance),
            "isPlayerLunarSpellbook": flag(ctx.agent.spellbook is Spellbook.LUNAR),
            "isTargetLunarSpellbook": flag(ctx.opponent.spellbook is Spellbook.LUNAR),
        }
