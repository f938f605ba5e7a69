import numpy as np
import pytest

from pvp_bridge.contract import (
    ACTION_HEAD_SIZES, FLAT_ACTION_SIZE, HEAD_COUNT, HEAD_OPTIONS, OBS_IDS, OBS_INDEX, OBS_SIZE,
    OPPONENT_FIELDS, OPPONENT_NEUTRAL_DEFAULTS, ContractViolation, Head, get_action_space,
    get_observation_space, head_offset, safe_default_action, validate_mask, validate_observation,
)


def _full_mask():
    return [[True] * size for size in ACTION_HEAD_SIZES]


def test_observation_table_is_complete_and_unique():
    assert OBS_SIZE == 176
    assert len(OBS_IDS) == OBS_SIZE
    assert len(set(OBS_IDS)) == OBS_SIZE
    assert OBS_INDEX["isMeleeEquipped"] == 0
    assert OBS_INDEX[OBS_IDS[-1]] == OBS_SIZE - 1


def test_action_heads_match_published_sizes():
    assert ACTION_HEAD_SIZES == (4, 3, 3, 4, 5, 2, 2, 2, 2, 5, 7, 6)
    assert HEAD_COUNT == 12
    assert FLAT_ACTION_SIZE == 45
    assert len(HEAD_OPTIONS) == HEAD_COUNT
    assert all(options[0] == "none" for options in HEAD_OPTIONS)


def test_head_offsets_are_cumulative():
    assert head_offset(Head.ATTACK) == 0
    assert head_offset(Head.MELEE) == 4
    assert head_offset(Head.PRAYER) == FLAT_ACTION_SIZE - ACTION_HEAD_SIZES[Head.PRAYER]
    with pytest.raises(ValueError):
        head_offset(HEAD_COUNT)


def test_spaces_follow_contract():
    obs_space = get_observation_space()
    action_space = get_action_space()
    assert obs_space.shape == (OBS_SIZE,)
    assert obs_space.dtype == np.float32
    assert list(action_space.nvec) == list(ACTION_HEAD_SIZES)


def test_safe_default_is_all_noops_and_fresh():
    first = safe_default_action()
    assert first == [0] * 12
    first[0] = 3
    assert safe_default_action() == [0] * 12


def test_neutral_defaults_cover_known_opponent_fields():
    assert set(OPPONENT_NEUTRAL_DEFAULTS) <= set(OPPONENT_FIELDS)
    assert OPPONENT_NEUTRAL_DEFAULTS["targetHealthPercent"] == 1.0
    assert all(name in OBS_INDEX for name in OPPONENT_FIELDS)


def test_validate_observation_rejects_wrong_length():
    with pytest.raises(ContractViolation, match="CRITICAL OBS SIZE MISMATCH"):
        validate_observation(np.zeros(OBS_SIZE - 1, dtype=np.float32))


def test_validate_observation_rejects_non_finite():
    obs = np.zeros(OBS_SIZE, dtype=np.float32)
    obs[OBS_INDEX["healthPercent"]] = np.nan
    with pytest.raises(ContractViolation, match="healthPercent"):
        validate_observation(obs)


def test_validate_mask_checks_shape_and_noop():
    mask = _full_mask()
    assert validate_mask(mask) is mask

    with pytest.raises(ContractViolation, match="CRITICAL MASK SIZE MISMATCH"):
        validate_mask(mask[:-1])

    short_row = _full_mask()
    short_row[Head.DISTANCE] = [True] * 6
    with pytest.raises(ContractViolation, match="CRITICAL MASK SIZE MISMATCH"):
        validate_mask(short_row)

    no_noop = _full_mask()
    no_noop[Head.FOOD][0] = False
    with pytest.raises(ContractViolation, match="No-op"):
        validate_mask(no_noop)


def test_contract_violation_is_a_value_error():
    assert issubclass(ContractViolation, ValueError)
