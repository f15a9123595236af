# tests/test_multipliers.py
from __future__ import annotations

import math

import pytest

from pickem_api.errors import (
    AdminConfigError,
    InfiniteMultiplierError,
    InvalidDisabledSlotError,
    InvalidScoringConfigError,
    InvalidSlotIndexError,
    NaNMultiplierError,
    NegativeMultiplierError,
    NonFiniteMultiplierError,
    UnknownRuleVersionError,
)
from pickem_api.multipliers import (
    MatchScoringConfig,
    apply_multiplier,
    build_match_scoring_config,
    build_slot_config,
    neutral_slot_config,
    validate_slot_multipliers,
)


class TestApplyMultiplier:
    """Single rounding point for slot and runner scores."""

    def test_scales_and_rounds_half_up(self):
        assert apply_multiplier(255.0, 2.0, True) == 510
        assert apply_multiplier(165.0, 1.5, True) == 248  # 247.5
        assert apply_multiplier(3.0, 0.5, True) == 2  # 1.5

    def test_disabled_slot_is_zero(self):
        assert apply_multiplier(1000.0, 3.0, False) == 0

    @pytest.mark.parametrize("base", [0.0, 1.0, 99.5, 1234.0])
    @pytest.mark.parametrize("mult", [0.0, 0.25, 1.0, 7.0])
    def test_never_negative(self, base, mult):
        assert apply_multiplier(base, mult, True) >= 0


class TestAdminValidator:
    def test_valid_config(self):
        cfg = build_slot_config("wc_m1", {1: 2, 2: 1.5, 3: 0}, disabled_slots=[3])
        assert cfg.slot(1) == (2.0, True)
        assert cfg.slot(2) == (1.5, True)
        assert cfg.slot(3) == (0.0, False)
        # Unconfigured slots are neutral but disabled
        assert cfg.slot(4) == (1.0, False)
        assert cfg.enabled_slots() == [1, 2]

    @pytest.mark.parametrize(
        "multipliers,error",
        [
            ({1: float("nan")}, NaNMultiplierError),
            ({1: float("inf")}, InfiniteMultiplierError),
            ({1: -0.5}, NegativeMultiplierError),
            ({1: "2"}, NaNMultiplierError),
            ({0: 1.0}, InvalidSlotIndexError),
            ({12: 1.0}, InvalidSlotIndexError),
        ],
    )
    def test_rejects(self, multipliers, error):
        with pytest.raises(error) as exc:
            build_slot_config("wc_m1", multipliers)
        assert exc.value.kind == "VALIDATION"
        assert isinstance(exc.value, AdminConfigError)

    def test_non_finite_share_a_base(self):
        with pytest.raises(NonFiniteMultiplierError):
            build_slot_config("wc_m1", {2: -math.inf})

    def test_invalid_disabled_slot(self):
        with pytest.raises(InvalidDisabledSlotError) as exc:
            build_slot_config("wc_m1", {1: 1.0}, disabled_slots=[15])
        assert exc.value.code == "INVALID_DISABLED_SLOT"

    def test_collects_every_error(self):
        errors = validate_slot_multipliers({1: float("nan"), 2: -1, 3: 1.0, 40: 2.0})
        assert [type(e) for e in errors] == [NaNMultiplierError, NegativeMultiplierError, InvalidSlotIndexError]

        with pytest.raises(AdminConfigError) as exc:
            build_slot_config("wc_m1", {1: float("nan"), 2: -1})
        assert len(exc.value.errors) == 2
        assert "2 errors" in exc.value.message

    def test_empty_match_id(self):
        with pytest.raises(AdminConfigError):
            build_slot_config("", {1: 1.0})

    def test_neutral(self):
        cfg = neutral_slot_config("wc_m1")
        assert cfg.enabled_slots() == list(range(1, 12))
        assert all(cfg.slot(i) == (1.0, True) for i in range(1, 12))


class TestMatchScoringConfig:
    def test_defaults(self):
        cfg = MatchScoringConfig(match_id="wc_m1")
        assert cfg.winner_base_points == 1000
        assert cfg.super_over_multiplier == 5.0
        assert cfg.total_runs_base_points == 1000
        assert cfg.runner_count == 0
        assert cfg.slots().slot(11) == (1.0, True)
        assert cfg.runner_multiplier(1) == 1.0

    def test_build(self):
        cfg = build_match_scoring_config(
            "wc_m1",
            winner_base_points=500,
            super_over_multiplier=3,
            runner_count=2,
            slot_multipliers={1: 3.0, 2: 2.0},
            runner_multipliers={1: 0.5},
            disabled_runner_slots=[2],
            side_bet_points={"TOSS_WINNER": (100, -50)},
        )
        assert cfg.super_over_multiplier == 3.0
        assert cfg.slots().slot(1) == (3.0, True)
        assert cfg.slots().slot(3) == (1.0, False)
        assert cfg.runner_multiplier(1) == 0.5
        assert cfg.runner_multiplier(2) == 0.0
        assert cfg.side_points("TOSS_WINNER", 500, 0) == (100, -50)
        assert cfg.side_points("CENTURY", 500, 0) == (500, 0)

    def test_round_trip(self):
        cfg = build_match_scoring_config(
            "wc_m1", runner_count=1, slot_multipliers={1: 2.5}, runner_multipliers={1: 0.5}
        )
        again = MatchScoringConfig.from_dict(cfg.to_dict())
        assert again.to_dict() == cfg.to_dict()

    def test_unknown_rule_version(self):
        with pytest.raises(UnknownRuleVersionError):
            build_match_scoring_config("wc_m1", rule_version="0.0.1")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"winner_base_points": -1},
            {"total_runs_base_points": 1.5},
            {"super_over_multiplier": float("nan")},
            {"super_over_multiplier": -2},
            {"runner_count": 0, "runner_multipliers": {1: 2.0}},
            {"side_bet_points": {"TOSS_WINNER": (1.5, 0)}},
            {"side_bet_points": {"TOSS_WINNER": (100,)}},
            {"side_bet_points": {"TOSS_WINNER": 100}},
        ],
    )
    def test_rejects(self, kwargs):
        with pytest.raises(InvalidScoringConfigError):
            build_match_scoring_config("wc_m1", **kwargs)
