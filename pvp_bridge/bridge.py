"""
Per-cycle pipeline between the game client and the decision service.

Cycle order: rebind opponent -> advance timers -> encode observation and
mask -> collect any finished decision -> issue the next request -> reset
per-cycle history scales. Everything here runs on the simulation thread;
only the decision client's network I/O runs elsewhere.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .action_mask import ActionMask, ActionMaskBuilder, available_counts
from .actions import DecisionPolicy
from .combat_history import CombatHistoryTracker
from .config import DEFAULT_BRIDGE_CONFIG, BridgeConfig
from .contract import NOOP, Head
from .decision_client import DecisionClient
from .embeddings import ObservationBuilder
from .encoders import EncodingContext
from .gear import GearFeatureExtractor, build_capabilities, compute_baseline
from .loadouts import (
    FightType, LoadoutRegistry, LoadoutSelection, detect_account_build, detect_fight_type,
    select_loadout,
)
from .logger import configure_bridge_logging, log_metrics, log_observation
from .opponent import OpponentProxy
from .state import (
    ActionDispatcher, CombatStyle, CycleClock, ItemLookup, Side, Skill, WorldSnapshot,
    WorldStateProvider,
)
from .timers import CombatTimers, TimerKey
from .utils import count_resources

logger = logging.getLogger(__name__)

# Consumable head -> agent guard timer registered when the action is dispatched
CONSUMABLE_TIMERS = {
    Head.FOOD: TimerKey.FOOD,
    Head.KARAMBWAN: TimerKey.KARAMBWAN,
    Head.POTION: TimerKey.POTION,
}


class EnvironmentBridge:
    """
    Owns the timers, combat history and opponent proxy, and runs the
    observation/action pipeline once per cycle.
    """

    def __init__(self, world: WorldStateProvider, items: ItemLookup,
                 client: Optional[DecisionClient] = None,
                 dispatcher: Optional[ActionDispatcher] = None,
                 config: BridgeConfig = DEFAULT_BRIDGE_CONFIG,
                 loadouts: Optional[LoadoutRegistry] = None,
                 clock: Callable[[], float] = time.perf_counter):
        self.world = world
        self.items = items
        self.config = config
        self.client = client or DecisionClient(config.decision)
        self.dispatcher = dispatcher
        self.loadouts = loadouts or LoadoutRegistry()
        self._clock = clock

        self.extractor = GearFeatureExtractor(items)
        self.timers = CombatTimers()
        self.history = CombatHistoryTracker(
            recent_window=config.history.recent_window,
            target_max_hp=config.history.target_max_hp,
            confidence_events=config.history.confidence_events,
        )
        self.opponent = OpponentProxy(
            items,
            initial_special=config.opponent.initial_special,
            regen_interval=config.opponent.spec_regen_interval,
            regen_amount=config.opponent.spec_regen_amount,
        )
        self.observation_builder = ObservationBuilder()
        self.mask_builder = ActionMaskBuilder()
        self.policy = DecisionPolicy(self.client, config.policy)

        self.fight_type = FightType.NORMAL
        self.selection: Optional[LoadoutSelection] = None
        self._snapshot: Optional[WorldSnapshot] = None
        self._last_observation: Optional[np.ndarray] = None
        self._last_mask: Optional[ActionMask] = None
        self._cycles = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, cycle_clock: Optional[CycleClock] = None, setup_logging: bool = False):
        """
        Connect and subscribe to the cycle clock.

        Args:
            cycle_clock: Clock to register on_tick with, if the host has one
            setup_logging: Configure process logging from debug_mode and log_json.
                Hosts that own their logging leave this off.
        """
        if setup_logging:
            configure_bridge_logging(self.config)
        if self.config.policy.auto_connect:
            self.client.connect_async()
        if cycle_clock is not None:
            cycle_clock.register(self.on_tick)
        logger.info(f"Bridge started (safe_mode={self.config.policy.safe_mode}, "
                    f"override={self.config.loadout_override.value})")

    def stop(self):
        self.policy.reset()
        self.client.shutdown()

    def configure(self, snapshot: WorldSnapshot):
        """Detect fight type and build, pick the loadout and derive the opponent baseline."""
        agent = snapshot.agent
        self.fight_type = detect_fight_type(snapshot.world_types)
        detected = detect_account_build(agent.level(Skill.DEFENCE), self.fight_type)
        carried = list(agent.equipment) + [item.item_id for item in agent.inventory]
        self.selection = select_loadout(self.loadouts, self.config.loadout_override, detected, carried)

        baseline = None
        if self.selection.loadout is not None:
            baseline = compute_baseline(self.selection.loadout.gear_sets(), self.items)
        self.opponent.set_baseline(baseline)
        logger.info(
            f"Configured: fight={self.fight_type.value}, build={self.selection.build.value} "
            f"({self.selection.reason}), baseline={'yes' if baseline is not None else 'none'}"
        )

    # =========================================================================
    # Cycle pipeline
    # =========================================================================

    def on_tick(self, snapshot: Optional[WorldSnapshot] = None) -> Optional[List[int]]:
        """
        Run one cycle.

        Args:
            snapshot: World state for this cycle; read from the provider when omitted

        Returns:
            The action dispatched this cycle, if any
        """
        start = self._clock()
        snapshot = snapshot if snapshot is not None else self.world.snapshot()
        if self.selection is None:
            self.configure(snapshot)

        self.on_tick_start(snapshot)
        self.on_tick_processed(snapshot)

        ctx = self.build_context(snapshot)
        observation = self.observation_builder.build(ctx)
        mask = self.mask_builder.build(ctx)
        self._last_observation = observation
        self._last_mask = mask
        if self.config.debug_mode:
            log_observation(logger, observation, snapshot.tick)
            logger.debug(f"[tick={snapshot.tick}] Mask options per head: {available_counts(mask)}")

        action = None
        if self.opponent.is_bound and self.config.policy.enabled:
            action = self.policy.poll(snapshot.tick, mask, has_opponent=True)
            if action is not None:
                self._dispatch(action)
            reward = self.history.tick_damage_dealt - self.history.tick_damage_received
            self.policy.maybe_request(snapshot.tick, observation, mask, self.opponent.name, reward)

        self.on_tick_end()

        elapsed_ms = (self._clock() - start) * 1000.0
        if elapsed_ms > self.config.tick_budget_ms:
            logger.warning(f"[tick={snapshot.tick}] Cycle took {elapsed_ms:.1f}ms "
                           f"(budget {self.config.tick_budget_ms:.0f}ms)")
        self._cycles += 1
        if self._cycles % self.config.metrics_interval == 0:
            log_metrics(logger, self.metrics(), step=snapshot.tick)
        return action

    def on_tick_start(self, snapshot: WorldSnapshot):
        self._snapshot = snapshot
        target = snapshot.target
        if self.opponent.rebind(target):
            if target is None:
                self.policy.end_engagement()
            else:
                self.policy.begin_engagement(target.name)
        self.opponent.observe(target)
        self.timers.bind_target(self.opponent.opponent_id)

    def on_tick_processed(self, snapshot: WorldSnapshot):
        agent = snapshot.agent
        self.timers.advance(agent.active_prayers)
        self.opponent.advance()
        self.timers.update_destination(agent.position, agent.destination, self.opponent.position)

    def on_tick_end(self):
        self.history.on_cycle_end()

    def build_context(self, snapshot: WorldSnapshot) -> EncodingContext:
        agent = snapshot.agent
        inventory_ids = [item.item_id for item in agent.inventory]
        features = self.extractor.extract(agent.equipment, inventory_ids)
        resources = count_resources(agent.inventory, self.items)
        loadout = self.selection.loadout if self.selection is not None else None
        capabilities = build_capabilities(
            agent, features, self.extractor, resources,
            has_tank_gear=bool(loadout is not None and loadout.tank_gear),
        )
        return EncodingContext(
            world=snapshot,
            opponent=self.opponent,
            timers=self.timers,
            history=self.history.observation_fields(),
            features=features,
            capabilities=capabilities,
            fight_type=self.fight_type,
        )

    def _dispatch(self, action: List[int]):
        for head, key in CONSUMABLE_TIMERS.items():
            if action[head] != NOOP:
                self.timers.on_consumable(key)
        if self.dispatcher is not None:
            self.dispatcher.dispatch(action)

    # =========================================================================
    # Client events
    # =========================================================================

    def _side_of(self, actor_id: int) -> Optional[Side]:
        if self._snapshot is None:
            return None
        if actor_id == self._snapshot.agent.actor_id:
            return Side.AGENT
        if self.opponent.is_bound and actor_id == self.opponent.opponent_id:
            return Side.OPPONENT
        return None

    def on_animation(self, actor_id: int, animation: int, tick: int):
        side = self._side_of(actor_id)
        if side is Side.AGENT:
            speed = self.extractor.attack_speed(self._snapshot.agent.weapon_id)
            self.timers.on_animation(side, animation, tick, speed, self.opponent.overhead)
        elif side is Side.OPPONENT:
            speed = self.extractor.attack_speed(self.opponent.weapon_id)
            self.timers.on_animation(side, animation, tick, speed)
            self.opponent.on_animation(animation)

    def on_graphic(self, actor_id: int, graphic: int):
        side = self._side_of(actor_id)
        if side is None:
            return
        self.timers.on_graphic(side, graphic)
        if side is Side.OPPONENT:
            self.opponent.on_graphic(graphic)

    def on_hitsplat(self, actor_id: int, amount: int):
        side = self._side_of(actor_id)
        if side is Side.AGENT:
            agent = self._snapshot.agent
            self.timers.on_agent_damaged(agent.active_prayers)
            if not self.opponent.is_bound:
                return
            style = self.timers.opponent_style or CombatStyle.MELEE
            self.history.record_agent_damaged(style, amount, agent.protect_style,
                                              agent.level(Skill.HITPOINTS))
            self.opponent.gear.update_last(style, self.opponent.blended_bonuses)
        elif side is Side.OPPONENT:
            self.timers.on_opponent_damaged()
            overhead = self.opponent.overhead
            self.history.record_target_damaged(
                self.timers.agent_style, amount,
                overhead.protected_style if overhead is not None else None,
            )
            self.opponent.on_damaged(amount)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    @property
    def last_observation(self) -> Optional[np.ndarray]:
        return None if self._last_observation is None else self._last_observation.copy()

    @property
    def last_action_mask(self) -> Optional[ActionMask]:
        return self._last_mask

    def metrics(self) -> Dict[str, Any]:
        metrics = self.client.metrics()
        metrics.update({
            "discarded_stale": self.policy.discarded_stale,
            "skipped_noop": self.policy.skipped_noop,
            "blocked_unsafe": self.policy.blocked_unsafe,
            "bound": self.opponent.is_bound,
        })
        return metrics
