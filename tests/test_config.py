import json
import logging

import pytest

from pvp_bridge.config import (
    DEFAULT_BRIDGE_CONFIG, BridgeConfig, HistoryConfig, PolicyConfig, load_bridge_config,
)
from pvp_bridge.loadouts import (
    AccountBuild, FightType, GearLoadout, LoadoutOverride, LoadoutRegistry, detect_account_build,
    detect_fight_type, score_loadout, select_loadout,
)
from pvp_bridge.logger import JsonFormatter, configure_bridge_logging, log_metrics


def test_defaults():
    config = DEFAULT_BRIDGE_CONFIG
    assert config.decision.port == 5557
    assert config.decision.read_timeout_s < 0.6
    assert config.policy.action_delay_ms == 50
    assert config.history.recent_window == 5
    assert config.loadout_override is LoadoutOverride.AUTO


def test_invalid_values_rejected():
    with pytest.raises(ValueError):
        HistoryConfig(recent_window=0)
    with pytest.raises(ValueError):
        PolicyConfig(action_delay_ms=-1)
    with pytest.raises(ValueError):
        BridgeConfig(tick_budget_ms=700)


def test_load_bridge_config_keeps_missing_defaults(tmp_path):
    path = tmp_path / "bridge.json"
    path.write_text(json.dumps({
        "decision": {"port": 6000},
        "policy": {"safe_mode": True},
        "loadout_override": "lms_pure",
    }))
    config = load_bridge_config(path)
    assert config.decision.port == 6000
    assert config.decision.host == "127.0.0.1"
    assert config.policy.safe_mode
    assert config.loadout_override.build is AccountBuild.LMS_PURE


def test_fight_type_and_build_detection():
    assert detect_fight_type({"LAST_MAN_STANDING"}) is FightType.LMS
    assert detect_fight_type(["pvp_arena"]) is FightType.PVP_ARENA
    assert detect_fight_type([]) is FightType.NORMAL

    assert detect_account_build(1) is AccountBuild.PURE
    assert detect_account_build(1, FightType.LMS) is AccountBuild.LMS_PURE
    assert detect_account_build(45) is AccountBuild.ZERKER
    assert detect_account_build(70) is AccountBuild.MED
    assert detect_account_build(99, FightType.LMS) is AccountBuild.MAXED


def test_loadout_selection_order():
    pure = GearLoadout(build=AccountBuild.PURE, equipment=[1, 2], melee_gear=[3])
    maxed = GearLoadout(build=AccountBuild.MAXED, equipment=[4], ranged_gear=[5, 6])
    registry = LoadoutRegistry([pure, maxed])

    assert score_loadout(pure, [1, 2, 3]) == 210
    chosen = select_loadout(registry, LoadoutOverride.AUTO, AccountBuild.ZERKER, [4, 5])
    assert chosen.loadout is maxed

    fallback = select_loadout(registry, LoadoutOverride.AUTO, AccountBuild.PURE, [])
    assert fallback.loadout is pure
    assert fallback.reason == "detected from levels"

    forced = select_loadout(registry, LoadoutOverride.ZERKER, AccountBuild.PURE, [1, 2])
    assert forced.build is AccountBuild.ZERKER
    assert forced.loadout is None


def test_registry_from_json(tmp_path):
    path = tmp_path / "loadouts.json"
    path.write_text(json.dumps([{"build": "med", "equipment": [10], "tank_gear": [11]}]))
    registry = LoadoutRegistry.from_json(path)
    assert len(registry) == 1
    assert registry.get(AccountBuild.MED).tank_gear == [11]


def test_json_formatter_includes_metrics():
    logger = logging.getLogger("pvp_bridge.test")
    records = []

    class _Collect(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = _Collect()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        log_metrics(logger, {"failed_requests": 2}, step=40)
    finally:
        logger.removeHandler(handler)

    payload = json.loads(JsonFormatter().format(records[0]))
    assert payload["metrics"] == {"failed_requests": 2, "tick": 40}
    assert payload["level"] == "INFO"


@pytest.mark.parametrize("debug_mode, log_json, level, formatter_type", [
    (False, False, logging.INFO, logging.Formatter),
    (True, True, logging.DEBUG, JsonFormatter),
])
def test_configure_bridge_logging_follows_config(debug_mode, log_json, level, formatter_type):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_bridge_logging(BridgeConfig(debug_mode=debug_mode, log_json=log_json))
        assert root.level == level
        assert len(root.handlers) == 1
        assert type(root.handlers[0].formatter) is formatter_type
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
