import math

import pytest

from pvp_bridge.combat_history import CombatHistoryTracker
from pvp_bridge.state import CombatStyle, Side


def test_empty_history_ratios_are_zero():
    history = CombatHistoryTracker()
    for style in CombatStyle:
        for side in Side:
            assert history.style_ratio(side, style) == 0.0
            assert history.recent_style_ratio(side, style) == 0.0
            assert history.pray_ratio(side, style) == 0.0
    assert history.target_hit_correct_ratio == 0.0
    assert history.recent_target_pray_correct_ratio == 0.0
    assert all(math.isfinite(v) for v in history.observation_fields().values())


def test_damage_scale_midpoint_and_bounds():
    history = CombatHistoryTracker()
    assert history.damage_dealt_scale == 1.0

    history.record_target_damaged(CombatStyle.MELEE, 99 * 5, None)
    assert history.damage_dealt_scale == 2.0

    other = CombatHistoryTracker()
    other.record_agent_damaged(CombatStyle.MELEE, 99 * 5, None, 99)
    assert other.damage_dealt_scale == 0.5


def test_three_hits_two_defended_gives_one_third():
    history = CombatHistoryTracker(recent_window=3)
    history.record_agent_damaged(CombatStyle.MAGIC, 20, CombatStyle.MAGIC)
    history.record_agent_damaged(CombatStyle.RANGED, 25, CombatStyle.MAGIC)
    history.record_agent_damaged(CombatStyle.RANGED, 0, CombatStyle.RANGED)

    assert history.target_hit_correct_ratio == pytest.approx(1 / 3)
    assert history.recent_target_hit_correct_ratio == pytest.approx(1 / 3)


def test_style_ratios_cumulative_and_recent():
    history = CombatHistoryTracker(recent_window=2)
    history.record_target_damaged(CombatStyle.MELEE, 10, None)
    history.record_target_damaged(CombatStyle.MAGIC, 10, None)
    history.record_target_damaged(CombatStyle.MAGIC, 10, None)

    assert history.total_hits(Side.AGENT) == 3
    assert history.style_ratio(Side.AGENT, CombatStyle.MAGIC) == pytest.approx(2 / 3)
    assert history.style_ratio(Side.AGENT, CombatStyle.MELEE) == pytest.approx(1 / 3)
    # The window only holds the last two hits.
    assert history.recent_style_ratio(Side.AGENT, CombatStyle.MAGIC) == 1.0
    assert history.recent_style_ratio(Side.AGENT, CombatStyle.MELEE) == 0.0


def test_target_pray_correct_counts_opponent_protection():
    history = CombatHistoryTracker()
    history.record_target_damaged(CombatStyle.RANGED, 0, CombatStyle.RANGED)
    history.record_target_damaged(CombatStyle.MAGIC, 30, CombatStyle.RANGED)

    assert history.target_pray_correct_ratio == 0.5
    assert history.pray_ratio(Side.OPPONENT, CombatStyle.RANGED) == 1.0
    fields = history.observation_fields()
    assert fields["targetPrayCorrectCount"] == 0.5
    assert fields["targetPrayRangeCount"] == 1.0
    assert fields["playerHitMageCount"] == 0.5


def test_cycle_end_resets_only_per_cycle_scales():
    history = CombatHistoryTracker()
    history.record_target_damaged(CombatStyle.MELEE, 33, None)
    history.record_target_damaged(CombatStyle.MELEE, 17, None)
    history.record_agent_damaged(CombatStyle.RANGED, 20, None, agent_max_hp=80)
    assert history.tick_damage_dealt == pytest.approx(50 / 99)
    fields = history.observation_fields()
    assert fields["hitsplatsLandedOnTargetScale"] == pytest.approx(50 / 99)
    assert fields["hitsplatsLandedOnAgentScale"] == pytest.approx(0.25)

    history.on_cycle_end()
    assert history.tick_damage_dealt == 0.0
    assert history.observation_fields()["hitsplatsLandedOnTargetScale"] == 0.0
    assert history.observation_fields()["hitsplatsLandedOnAgentScale"] == 0.0
    assert history.total_hits(Side.AGENT) == 2


def test_confidence_grows_with_events():
    history = CombatHistoryTracker(confidence_events=4)
    history.record_agent_damaged(CombatStyle.MELEE, 5, None)
    assert history.target_hit_confidence == 0.25
    for _ in range(10):
        history.record_agent_damaged(CombatStyle.MELEE, 5, None)
    assert history.target_hit_confidence == 1.0


def test_window_must_hold_an_event():
    with pytest.raises(ValueError):
        CombatHistoryTracker(recent_window=0)


def test_observation_fields_cover_history_encoder():
    from pvp_bridge.encoders import HistoryEncoder

    assert set(CombatHistoryTracker().observation_fields()) == set(HistoryEncoder.FIELDS)
