"""
Per-actor cooldown timers and the event interpretation that feeds them.

The client never exposes cooldowns directly, so they are inferred from
graphics, animations and hitsplats and counted down once per cycle.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .state import CombatStyle, Overhead, Position, Side
from .utils import (
    ATTACK_ANIMATIONS, CONSUMABLE_GUARD_TICKS, DEFAULT_ATTACK_SPEED, EAT_ANIMATION,
    FREEZE_GRAPHICS, FREEZE_IMMUNITY_EXTRA_TICKS, VENGEANCE_COOLDOWN_TICKS,
    VENGEANCE_GRAPHICS, hit_delay_ticks,
)

logger = logging.getLogger(__name__)


class TimerKey(str, Enum):
    FREEZE = "freeze"
    FREEZE_IMMUNITY = "freeze_immunity"
    ATTACK_COOLDOWN = "attack_cooldown"
    FOOD = "food"
    POTION = "potion"
    KARAMBWAN = "karambwan"
    VENGEANCE_COOLDOWN = "vengeance_cooldown"
    PENDING_HIT = "pending_hit"


class TimerRegistry:
    """Keyed countdowns for one actor. Absent keys read as zero."""

    def __init__(self):
        self._timers: Dict[TimerKey, int] = {}

    def register(self, key: TimerKey, ticks: int):
        """Set or overwrite a timer. Non-positive durations are ignored."""
        if ticks <= 0:
            return
        self._timers[key] = int(ticks)

    def cancel(self, key: TimerKey):
        self._timers.pop(key, None)

    def has(self, key: TimerKey) -> bool:
        return key in self._timers

    def remaining(self, key: TimerKey) -> int:
        return self._timers.get(key, 0)

    def will_end_in(self, key: TimerKey, ticks: int) -> bool:
        return self.has(key) and self.remaining(key) <= ticks

    def advance(self) -> List[TimerKey]:
        """Count every timer down by one cycle. Returns the keys that expired."""
        expired = []
        for key in list(self._timers):
            self._timers[key] -= 1
            if self._timers[key] <= 0:
                del self._timers[key]
                expired.append(key)
        return expired

    def clear(self):
        self._timers.clear()

    def to_dict(self) -> Dict[str, int]:
        return {key.value: ticks for key, ticks in self._timers.items()}

    def __contains__(self, key: object) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)


class CombatTimers:
    """
    Timer registries for the agent and the bound opponent, plus the attack
    bookkeeping derived from the same events (last attack cycle, style,
    prayer correctness, PID).

    The opponent registry belongs to whichever opponent is bound: binding a
    different one, or unbinding, drops it.
    """

    def __init__(self):
        self.agent = TimerRegistry()
        self.opponent = TimerRegistry()
        self.target_id: Optional[int] = None

        self.agent_style = CombatStyle.MELEE
        self.agent_last_attack_tick = -1
        self.opponent_style: Optional[CombatStyle] = None
        self.opponent_last_attack_tick = -1
        self.agent_prayed_correctly = False
        self.opponent_prayed_correctly = False

        self.destination_distance_to_target = 0.0
        self.distance_to_destination = 0.0

    def registry(self, side: Side) -> TimerRegistry:
        return self.agent if side is Side.AGENT else self.opponent

    def bind_target(self, target_id: Optional[int]):
        if target_id == self.target_id:
            return
        logger.debug(f"Timer target changed: {self.target_id} -> {target_id}")
        self.opponent.clear()
        self.opponent_style = None
        self.opponent_last_attack_tick = -1
        self.agent_prayed_correctly = False
        self.opponent_prayed_correctly = False
        self.target_id = target_id

    def advance(self, agent_prayers: FrozenSet[Overhead] = frozenset()):
        """Once per cycle, after the opponent rebind."""
        self.agent.advance()
        expired = self.opponent.advance()
        if TimerKey.PENDING_HIT in expired:
            self.agent_prayed_correctly = self._is_protected(agent_prayers, self.opponent_style)

    # =========================================================================
    # Event handlers
    # =========================================================================

    def on_graphic(self, side: Side, graphic: int):
        registry = self.registry(side)
        if graphic in VENGEANCE_GRAPHICS:
            registry.register(TimerKey.VENGEANCE_COOLDOWN, VENGEANCE_COOLDOWN_TICKS)
            return
        freeze = FREEZE_GRAPHICS.get(graphic)
        if freeze is None:
            return
        # Frozen targets are immune until the immunity timer runs out.
        if registry.has(TimerKey.FREEZE_IMMUNITY):
            return
        registry.register(TimerKey.FREEZE, freeze)
        registry.register(TimerKey.FREEZE_IMMUNITY, freeze + FREEZE_IMMUNITY_EXTRA_TICKS)

    def on_animation(self, side: Side, animation: int, tick: int,
                     attack_speed: Optional[int] = None,
                     defender_overhead: Optional[Overhead] = None):
        """
        Interpret an animation played by one side.

        Args:
            side: Who played the animation
            animation: Animation id
            tick: Current cycle index
            attack_speed: Weapon attack speed in ticks, when known
            defender_overhead: Overhead of the other side at the moment of the attack
        """
        registry = self.registry(side)
        if animation == EAT_ANIMATION:
            key = TimerKey.FOOD if side is Side.AGENT else TimerKey.POTION
            registry.register(key, CONSUMABLE_GUARD_TICKS)
            return

        style = ATTACK_ANIMATIONS.get(animation)
        if style is None:
            return

        registry.register(TimerKey.ATTACK_COOLDOWN, attack_speed or DEFAULT_ATTACK_SPEED)
        registry.register(TimerKey.PENDING_HIT, hit_delay_ticks(animation))
        if side is Side.AGENT:
            self.agent_style = style
            self.agent_last_attack_tick = tick
            self.opponent_prayed_correctly = (
                defender_overhead is not None and defender_overhead.protected_style is style
            )
        else:
            self.opponent_style = style
            self.opponent_last_attack_tick = tick

    def on_agent_damaged(self, agent_prayers: FrozenSet[Overhead]):
        self.opponent.cancel(TimerKey.PENDING_HIT)
        self.agent_prayed_correctly = self._is_protected(agent_prayers, self.opponent_style)

    def on_opponent_damaged(self):
        self.agent.cancel(TimerKey.PENDING_HIT)

    def on_consumable(self, key: TimerKey):
        """Agent-side guard after dispatching a food/potion/karambwan action."""
        self.agent.register(key, CONSUMABLE_GUARD_TICKS)

    def update_destination(self, agent: Optional[Position], destination: Optional[Position],
                           target: Optional[Position]):
        if destination is None:
            self.distance_to_destination = 0.0
            self.destination_distance_to_target = (
                agent.distance_to(target) if agent is not None and target is not None else 0.0
            )
            return
        self.distance_to_destination = agent.distance_to(destination) if agent is not None else 0.0
        self.destination_distance_to_target = (
            destination.distance_to(target) if target is not None else 0.0
        )

    # =========================================================================
    # Derived queries
    # =========================================================================

    def did_attack(self, side: Side, tick: int) -> bool:
        last = self.agent_last_attack_tick if side is Side.AGENT else self.opponent_last_attack_tick
        return last == tick

    def agent_has_pid(self, tick: int) -> bool:
        """
        Whether the agent's actions resolve before the opponent's this cycle.

        When both attacked on the same cycle, whoever's hit lands first has PID.
        """
        agent_attacked = self.did_attack(Side.AGENT, tick)
        opponent_attacked = self.did_attack(Side.OPPONENT, tick)
        if agent_attacked and not opponent_attacked:
            return True
        if opponent_attacked and not agent_attacked:
            return False
        if agent_attacked and opponent_attacked:
            if not self.opponent.has(TimerKey.PENDING_HIT) or not self.agent.has(TimerKey.PENDING_HIT):
                return True
            # Ties go to the agent.
            opponent_pending = self.opponent.remaining(TimerKey.PENDING_HIT)
            return self.agent.will_end_in(TimerKey.PENDING_HIT, opponent_pending)
        return self.agent_last_attack_tick >= self.opponent_last_attack_tick

    @staticmethod
    def _is_protected(prayers: FrozenSet[Overhead], style: Optional[CombatStyle]) -> bool:
        if style is None:
            style = CombatStyle.MELEE
        return any(p.protected_style is style for p in prayers)
