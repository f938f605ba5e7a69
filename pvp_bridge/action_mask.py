"""
Action mask construction.

One boolean row per head. Index 0 is the no-op and is always valid; every
other option needs all of its preconditions to hold this cycle.
"""

import logging
from typing import List, Tuple

from .contract import ACTION_HEAD_SIZES, Head, validate_mask
from .encoders import EncodingContext
from .gear import VENGEANCE_LEVEL
from .state import Skill, Spellbook
from .timers import TimerKey

logger = logging.getLogger(__name__)

ActionMask = Tuple[Tuple[bool, ...], ...]

PROTECT_PRAYER_LEVEL = 43
REDEMPTION_LEVEL = 49
SMITE_LEVEL = 52

# Potion head option -> ResourceCounts family
POTION_OPTIONS = ("brew", "restore", "combat", "ranging")


class ActionMaskBuilder:
    """
    Builds the action mask from the same EncodingContext the observation
    uses, so the two never disagree about what is available.
    """

    def build(self, ctx: EncodingContext) -> ActionMask:
        rows: List[List[bool]] = [[False] * size for size in ACTION_HEAD_SIZES]
        for row in rows:
            row[0] = True

        agent = ctx.agent
        caps = ctx.capabilities
        timers = ctx.timers.agent
        target = ctx.has_opponent
        frozen = timers.has(TimerKey.FREEZE)

        # Attack: mage / ranged / melee
        attack = rows[Head.ATTACK]
        attack[1] = target and caps.can_cast_spells
        attack[2] = target and caps.has_ranged_weapon
        attack[3] = target

        melee = rows[Head.MELEE]
        melee[1] = target
        melee[2] = target and caps.melee_spec_ready

        ranged = rows[Head.RANGED]
        ranged[1] = target and caps.has_ranged_weapon
        ranged[2] = ranged[1] and caps.range_spec_ready

        mage = rows[Head.MAGE]
        mage[1] = target and caps.can_cast_ice
        mage[2] = target and caps.can_cast_blood
        mage[3] = target and caps.mage_spec_ready

        potion = rows[Head.POTION]
        potion_ready = not timers.has(TimerKey.POTION)
        for option, family in enumerate(POTION_OPTIONS, start=1):
            potion[option] = potion_ready and caps.resources.doses(family) > 0

        rows[Head.FOOD][1] = caps.resources.food > 0 and not timers.has(TimerKey.FOOD)
        rows[Head.KARAMBWAN][1] = caps.resources.karambwan > 0 and not timers.has(TimerKey.KARAMBWAN)

        rows[Head.VENGEANCE][1] = (
            caps.magic_level >= VENGEANCE_LEVEL
            and agent.spellbook is Spellbook.LUNAR
            and not agent.has_vengeance
            and not timers.has(TimerKey.VENGEANCE_COOLDOWN)
        )

        rows[Head.GEAR][1] = caps.has_tank_gear

        can_move = target and not frozen
        for option in range(1, ACTION_HEAD_SIZES[Head.MOVEMENT]):
            rows[Head.MOVEMENT][option] = can_move
        for option in range(1, ACTION_HEAD_SIZES[Head.DISTANCE]):
            rows[Head.DISTANCE][option] = can_move

        prayer = rows[Head.PRAYER]
        has_points = agent.boosted(Skill.PRAYER) > 0
        protect = has_points and caps.prayer_level >= PROTECT_PRAYER_LEVEL
        prayer[1] = prayer[2] = prayer[3] = protect
        prayer[4] = has_points and caps.prayer_level >= SMITE_LEVEL
        prayer[5] = has_points and caps.prayer_level >= REDEMPTION_LEVEL

        mask = tuple(tuple(bool(v) for v in row) for row in rows)
        return validate_mask(mask)


def available_counts(mask: ActionMask) -> List[int]:
    """Number of valid options per head, for debug logging."""
    return [sum(row) for row in mask]
