import logging
from concurrent.futures import Future

import pytest

from conftest import (
    AGENT_ID, DRAGON_DEFENDER, TARGET_ID, WHIP, _make_target, _make_world,
)
from pvp_bridge.bridge import EnvironmentBridge
from pvp_bridge.config import BridgeConfig, PolicyConfig
from pvp_bridge.contract import HEAD_COUNT, OBS_INDEX, Head
from pvp_bridge.loadouts import AccountBuild, GearLoadout, LoadoutRegistry
from pvp_bridge.state import CombatStyle, Overhead, Side
from pvp_bridge.timers import TimerKey


class _FakeClient:
    def __init__(self):
        self.futures = []
        self.connect_calls = 0
        self.closed = False

    def request_action_async(self, tick, reward, observation, mask):
        future = Future()
        self.futures.append(future)
        return future

    def connect_async(self):
        self.connect_calls += 1

    def metrics(self):
        return {"total_requests": len(self.futures)}

    def shutdown(self):
        self.closed = True


class _Dispatcher:
    def __init__(self):
        self.actions = []

    def dispatch(self, action):
        self.actions.append(list(action))


class _World:
    def __init__(self, snapshot):
        self.current = snapshot

    def snapshot(self):
        return self.current


class _CycleClock:
    def __init__(self):
        self.callbacks = []

    def register(self, callback):
        self.callbacks.append(callback)


def _bridge(catalog, config=None, loadouts=None, world=None, clock=None):
    client = _FakeClient()
    dispatcher = _Dispatcher()
    kwargs = {}
    if clock is not None:
        kwargs["clock"] = clock
    bridge = EnvironmentBridge(
        _World(world or _make_world()), catalog, client=client, dispatcher=dispatcher,
        config=config or BridgeConfig(), loadouts=loadouts, **kwargs,
    )
    return bridge, client, dispatcher


def _food_action():
    action = [0] * HEAD_COUNT
    action[Head.FOOD] = 1
    return action


def test_unbound_cycle_is_neutral_and_silent(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    assert bridge.on_tick(_make_world(tick=1)) is None

    obs = bridge.last_observation
    assert obs[OBS_INDEX["targetHealthPercent"]] == 1.0
    assert obs[OBS_INDEX["distanceToTarget"]] == 1.0
    assert client.futures == []
    assert bridge.last_action_mask[Head.FOOD][1]


def test_decision_is_dispatched_on_a_later_cycle(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    target = _make_target()
    assert bridge.on_tick(_make_world(tick=1, target=target)) is None
    assert len(client.futures) == 1
    assert bridge.policy.engagement_id == 1

    client.futures[0].set_result(_food_action())
    assert bridge.on_tick(_make_world(tick=2, target=target)) == _food_action()
    assert dispatcher.actions == [_food_action()]
    assert bridge.timers.agent.remaining(TimerKey.FOOD) == 3


def test_target_change_discards_in_flight_request(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    bridge.on_tick(_make_world(tick=1, target=_make_target()))
    bridge.on_hitsplat(TARGET_ID, 12)
    before = bridge.history.to_dict()

    bridge.on_tick(_make_world(tick=2, target=_make_target(actor_id=5, name="other")))
    assert client.futures[0].cancelled()
    bridge.on_tick(_make_world(tick=3, target=_make_target(actor_id=5, name="other")))

    assert dispatcher.actions == []
    assert bridge.policy.discarded_stale == 1
    assert bridge.history.to_dict() == before


def test_engagement_ends_when_target_leaves(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    bridge.on_tick(_make_world(tick=1, target=_make_target()))
    bridge.on_tick(_make_world(tick=2))
    assert not bridge.opponent.is_bound
    assert bridge.policy.pending is None
    assert bridge.policy.engagement_id == 2


def test_hitsplats_feed_history_and_timers(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    world = _make_world(tick=1, target=_make_target(),
                        active_prayers=frozenset({Overhead.PROTECT_RANGED}))
    bridge.on_tick(world)

    bridge.on_animation(TARGET_ID, 4230, tick=1)
    assert bridge.timers.opponent_style is CombatStyle.RANGED
    assert bridge.timers.opponent.has(TimerKey.ATTACK_COOLDOWN)

    bridge.on_hitsplat(AGENT_ID, 10)
    assert bridge.history.total_hits(Side.OPPONENT) == 1
    assert bridge.history.target_hit_correct_ratio == 0.0
    assert bridge.timers.agent_prayed_correctly
    assert CombatStyle.RANGED in bridge.opponent.gear.last

    bridge.on_hitsplat(TARGET_ID, 20)
    assert bridge.history.total_hits(Side.AGENT) == 1

    bridge.on_hitsplat(999, 50)
    assert bridge.history.total_hits(Side.OPPONENT) == 1


def test_events_before_first_cycle_are_ignored(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    bridge.on_hitsplat(AGENT_ID, 5)
    bridge.on_graphic(AGENT_ID, 369)
    assert bridge.history.total_hits(Side.OPPONENT) == 0
    assert len(bridge.timers.agent) == 0


def test_freeze_graphic_masks_movement(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    target = _make_target()
    bridge.on_tick(_make_world(tick=1, target=target))
    bridge.on_graphic(AGENT_ID, 369)
    bridge.on_tick(_make_world(tick=2, target=target))
    assert not any(bridge.last_action_mask[Head.MOVEMENT][1:])
    assert bridge.last_observation[OBS_INDEX["playerFrozenTicks"]] > 0.0


def test_loadout_selection_and_tank_gear(catalog):
    loadout = GearLoadout(
        build=AccountBuild.MAXED,
        equipment=[WHIP, DRAGON_DEFENDER],
        melee_gear=[WHIP],
        tank_gear=[DRAGON_DEFENDER],
    )
    bridge, client, dispatcher = _bridge(catalog, loadouts=LoadoutRegistry([loadout]))
    bridge.on_tick(_make_world(tick=1))

    assert bridge.selection.build is AccountBuild.MAXED
    assert bridge.selection.loadout is loadout
    assert bridge.last_action_mask[Head.GEAR][1]


def test_disabled_policy_never_requests(catalog):
    config = BridgeConfig(policy=PolicyConfig(enabled=False))
    bridge, client, dispatcher = _bridge(catalog, config=config)
    bridge.on_tick(_make_world(tick=1, target=_make_target()))
    assert client.futures == []


def test_start_registers_and_connects(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    cycle_clock = _CycleClock()
    bridge.start(cycle_clock)
    assert client.connect_calls == 1

    cycle_clock.callbacks[0]()
    assert bridge.last_observation is not None

    bridge.stop()
    assert client.closed


def test_metrics_and_debug_logging(catalog, caplog):
    config = BridgeConfig(metrics_interval=1, debug_mode=True)
    bridge, client, dispatcher = _bridge(catalog, config=config)
    with caplog.at_level(logging.DEBUG, logger="pvp_bridge"):
        bridge.on_tick(_make_world(tick=1))
    assert "Bridge metrics" in caplog.text
    assert "Observation" in caplog.text
    assert "Mask options per head" in caplog.text


def test_slow_cycle_warns(catalog, caplog):
    times = iter([0.0, 0.25])
    bridge, client, dispatcher = _bridge(catalog, clock=lambda: next(times))
    with caplog.at_level(logging.WARNING, logger="pvp_bridge"):
        bridge.on_tick(_make_world(tick=1))
    assert "Cycle took 250.0ms" in caplog.text


def test_metrics_include_policy_counters(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    metrics = bridge.metrics()
    assert metrics["discarded_stale"] == 0
    assert metrics["bound"] is False
    assert "total_requests" in metrics


def test_last_observation_is_a_copy(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    bridge.on_tick(_make_world(tick=1))
    obs = bridge.last_observation
    obs[:] = 5.0
    assert bridge.last_observation[OBS_INDEX["targetHealthPercent"]] == pytest.approx(1.0)


def test_opponent_attack_with_hidden_equipment(catalog):
    bridge, client, dispatcher = _bridge(catalog)
    bridge.on_tick(_make_world(tick=1, target=_make_target(equipment=())))
    assert bridge.opponent.weapon_id == -1

    bridge.on_animation(TARGET_ID, 422, tick=1)
    assert bridge.timers.opponent_style is CombatStyle.MELEE
    assert bridge.timers.opponent.remaining(TimerKey.ATTACK_COOLDOWN) == 4


def test_start_can_configure_logging_from_config(catalog, monkeypatch):
    configured = []
    monkeypatch.setattr("pvp_bridge.bridge.configure_bridge_logging", configured.append)
    config = BridgeConfig(log_json=True)
    bridge, client, dispatcher = _bridge(catalog, config=config)

    bridge.start()
    assert configured == []
    bridge.start(setup_logging=True)
    assert configured == [config]
