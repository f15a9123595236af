# pickem_api/multipliers.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pickem_api import config
from pickem_api.cricket_math import round_points
from pickem_api.errors import (
    AdminConfigError,
    InfiniteMultiplierError,
    InvalidDisabledSlotError,
    InvalidScoringConfigError,
    InvalidSlotIndexError,
    NaNMultiplierError,
    NegativeMultiplierError,
)
from pickem_api.rules import get_rule_set

logger = logging.getLogger(__name__)

NEUTRAL_MULTIPLIER = 1.0


# -----------------------------
# Validated slot configuration
# -----------------------------
@dataclass(frozen=True)
class SlotConfig:
    """
    Per-match slot -> multiplier table. Build it with build_slot_config();
    that validator is the only way admin multipliers reach scoring.

    A slot is enabled when it has a configured multiplier and is not listed
    in `disabled_slots`. Unconfigured slots read as (1.0, disabled).
    """
    match_id: str
    slot_count: int
    multipliers: Dict[int, float] = field(default_factory=dict)
    disabled_slots: Tuple[int, ...] = ()

    def slot(self, index: int) -> Tuple[float, bool]:
        if index in self.multipliers:
            return self.multipliers[index], index not in self.disabled_slots
        return NEUTRAL_MULTIPLIER, False

    def enabled_slots(self) -> List[int]:
        return [i for i in range(1, self.slot_count + 1) if self.slot(i)[1]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "slot_count": self.slot_count,
            "multipliers": {str(k): v for k, v in sorted(self.multipliers.items())},
            "disabled_slots": list(self.disabled_slots),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SlotConfig":
        return build_slot_config(
            data["match_id"],
            {int(k): v for k, v in (data.get("multipliers") or {}).items()},
            disabled_slots=data.get("disabled_slots") or (),
            slot_count=int(data["slot_count"]),
        )


def _slot_index_error(slot: Any, slot_count: int, *, disabled: bool = False) -> Optional[AdminConfigError]:
    cls = InvalidDisabledSlotError if disabled else InvalidSlotIndexError
    if isinstance(slot, bool) or not isinstance(slot, int):
        return cls(f"Slot index must be an integer, got {slot!r}", slot=slot, value=slot)
    if slot < 1 or slot > slot_count:
        return cls(f"Slot index must be between 1 and {slot_count}, got {slot}", slot=slot, value=slot)
    return None


def _multiplier_error(slot: int, value: Any) -> Optional[AdminConfigError]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return NaNMultiplierError(
            f"Multiplier for slot {slot} must be a number, got {type(value).__name__}",
            slot=slot,
            value=value,
        )
    if math.isnan(value):
        return NaNMultiplierError(f"Multiplier for slot {slot} cannot be NaN", slot=slot, value=value)
    if math.isinf(value):
        return InfiniteMultiplierError(f"Multiplier for slot {slot} must be finite, got {value}", slot=slot, value=value)
    if value < 0:
        return NegativeMultiplierError(f"Multiplier for slot {slot} must be >= 0, got {value}", slot=slot, value=value)
    return None


def validate_slot_multipliers(
    multipliers: Mapping[Any, Any],
    *,
    disabled_slots: Iterable[Any] = (),
    slot_count: int = config.SLOT_COUNT,
) -> List[AdminConfigError]:
    """Collects every problem instead of stopping at the first one."""
    errors: List[AdminConfigError] = []

    for slot, value in multipliers.items():
        slot_err = _slot_index_error(slot, slot_count)
        if slot_err is not None:
            errors.append(slot_err)
            continue
        value_err = _multiplier_error(slot, value)
        if value_err is not None:
            errors.append(value_err)

    for slot in disabled_slots:
        slot_err = _slot_index_error(slot, slot_count, disabled=True)
        if slot_err is not None:
            errors.append(slot_err)

    return errors


def build_slot_config(
    match_id: str,
    multipliers: Mapping[Any, Any],
    *,
    disabled_slots: Iterable[Any] = (),
    slot_count: int = config.SLOT_COUNT,
) -> SlotConfig:
    """
    Admin configuration validator. Raises the first AdminConfigError found;
    its `.errors` carries the full list. Missing slots are never an error.
    """
    disabled = list(disabled_slots)
    errors = validate_slot_multipliers(multipliers, disabled_slots=disabled, slot_count=slot_count)

    if not match_id or not str(match_id).strip():
        errors.insert(0, AdminConfigError("Match ID must be a non-empty string", value=match_id))

    if errors:
        first = errors[0]
        if len(errors) > 1:
            first.message = (
                f"Admin config validation failed with {len(errors)} errors: "
                + "; ".join(e.message for e in errors)
            )
            first.args = (first.message,)
        first.errors = errors
        logger.warning("Rejected slot config for %s: %s", match_id, first.message)
        raise first

    return SlotConfig(
        match_id=match_id,
        slot_count=slot_count,
        multipliers={int(k): float(v) for k, v in multipliers.items()},
        disabled_slots=tuple(sorted(set(disabled))),
    )


def neutral_slot_config(match_id: str, slot_count: int = config.SLOT_COUNT) -> SlotConfig:
    """Every slot enabled at 1x."""
    return build_slot_config(
        match_id,
        {i: NEUTRAL_MULTIPLIER for i in range(1, slot_count + 1)},
        slot_count=slot_count,
    )


# -----------------------------
# Multiplier application
# -----------------------------
def apply_multiplier(base: float, multiplier: float, enabled: bool) -> int:
    """
    max(0, round(base * multiplier)) for enabled slots, else 0.
    The single rounding point for player and runner scores.
    """
    if not enabled:
        return 0
    return max(0, round_points(base * multiplier))


# -----------------------------
# Match scoring configuration
# -----------------------------
@dataclass(frozen=True)
class MatchScoringConfig:
    match_id: str
    rule_version: str = config.DEFAULT_RULE_VERSION

    winner_base_points: int = config.DEFAULT_WINNER_BASE_POINTS
    super_over_multiplier: float = config.DEFAULT_SUPER_OVER_MULTIPLIER
    total_runs_base_points: int = config.DEFAULT_TOTAL_RUNS_BASE_POINTS

    runner_count: int = config.DEFAULT_RUNNER_COUNT
    slot_config: Optional[SlotConfig] = None
    runner_config: Optional[SlotConfig] = None

    # question_type -> (points if correct, points if wrong)
    side_bet_points: Dict[str, Tuple[int, int]] = field(default_factory=dict)

    def slots(self) -> SlotConfig:
        return self.slot_config or neutral_slot_config(self.match_id)

    def runner_multiplier(self, index: int) -> float:
        """Runner slots are 1-based; missing runner multipliers are neutral 1x, disabled ones 0x."""
        if self.runner_config is None:
            return NEUTRAL_MULTIPLIER
        if index in self.runner_config.disabled_slots:
            return 0.0
        return self.runner_config.multipliers.get(index, NEUTRAL_MULTIPLIER)

    def side_points(self, question_type: str, default_correct: int, default_wrong: int) -> Tuple[int, int]:
        return self.side_bet_points.get(question_type, (default_correct, default_wrong))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "rule_version": self.rule_version,
            "winner_base_points": self.winner_base_points,
            "super_over_multiplier": self.super_over_multiplier,
            "total_runs_base_points": self.total_runs_base_points,
            "runner_count": self.runner_count,
            "slot_config": self.slots().to_dict(),
            "runner_config": self.runner_config.to_dict() if self.runner_config else None,
            "side_bet_points": {k: list(v) for k, v in sorted(self.side_bet_points.items())},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MatchScoringConfig":
        runner_cfg = data.get("runner_config")
        return build_match_scoring_config(
            data["match_id"],
            rule_version=data.get("rule_version", config.DEFAULT_RULE_VERSION),
            winner_base_points=data.get("winner_base_points", config.DEFAULT_WINNER_BASE_POINTS),
            super_over_multiplier=data.get("super_over_multiplier", config.DEFAULT_SUPER_OVER_MULTIPLIER),
            total_runs_base_points=data.get("total_runs_base_points", config.DEFAULT_TOTAL_RUNS_BASE_POINTS),
            runner_count=data.get("runner_count", config.DEFAULT_RUNNER_COUNT),
            slot_config=SlotConfig.from_dict(data["slot_config"]) if data.get("slot_config") else None,
            runner_multipliers=(
                {int(k): v for k, v in runner_cfg["multipliers"].items()} if runner_cfg else None
            ),
            disabled_runner_slots=(runner_cfg or {}).get("disabled_slots") or (),
            side_bet_points={k: (int(v[0]), int(v[1])) for k, v in (data.get("side_bet_points") or {}).items()},
        )


def _require_points(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidScoringConfigError(f"{name} must be a non-negative integer, got {value!r}", context={"field": name})
    return value


def build_match_scoring_config(
    match_id: str,
    *,
    rule_version: str = config.DEFAULT_RULE_VERSION,
    winner_base_points: int = config.DEFAULT_WINNER_BASE_POINTS,
    super_over_multiplier: float = config.DEFAULT_SUPER_OVER_MULTIPLIER,
    total_runs_base_points: int = config.DEFAULT_TOTAL_RUNS_BASE_POINTS,
    runner_count: int = config.DEFAULT_RUNNER_COUNT,
    slot_config: Optional[SlotConfig] = None,
    slot_multipliers: Optional[Mapping[Any, Any]] = None,
    disabled_slots: Iterable[Any] = (),
    runner_multipliers: Optional[Mapping[Any, Any]] = None,
    disabled_runner_slots: Iterable[Any] = (),
    side_bet_points: Optional[Mapping[str, Tuple[int, int]]] = None,
) -> MatchScoringConfig:
    # Fails closed on unknown rule versions before anything is stored
    get_rule_set(rule_version)

    _require_points("winner_base_points", winner_base_points)
    _require_points("total_runs_base_points", total_runs_base_points)
    _require_points("runner_count", runner_count)

    if (
        isinstance(super_over_multiplier, bool)
        or not isinstance(super_over_multiplier, (int, float))
        or not math.isfinite(super_over_multiplier)
        or super_over_multiplier < 0
    ):
        raise InvalidScoringConfigError(
            f"super_over_multiplier must be a finite, non-negative number, got {super_over_multiplier!r}",
            context={"field": "super_over_multiplier"},
        )

    if slot_config is None and slot_multipliers is not None:
        slot_config = build_slot_config(match_id, slot_multipliers, disabled_slots=disabled_slots)

    runner_config = None
    disabled_runners = list(disabled_runner_slots)
    if runner_multipliers is not None or disabled_runners:
        if runner_count == 0 and (runner_multipliers or disabled_runners):
            raise InvalidScoringConfigError(
                "Runner multipliers configured while runner_count is 0",
                context={"field": "runner_multipliers"},
            )
        runner_config = build_slot_config(
            match_id,
            runner_multipliers or {},
            disabled_slots=disabled_runners,
            slot_count=max(runner_count, 1),
        )

    side: Dict[str, Tuple[int, int]] = {}
    for question_type, pair in (side_bet_points or {}).items():
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise InvalidScoringConfigError(
                f"side_bet_points[{question_type}] must be a (correct, wrong) pair, got {pair!r}",
                context={"field": "side_bet_points", "question_type": question_type},
            )
        correct, wrong = pair
        # "wrong" may be negative; the engine does not cap downside
        for label, v in (("correct", correct), ("wrong", wrong)):
            if isinstance(v, bool) or not isinstance(v, int):
                raise InvalidScoringConfigError(
                    f"side_bet_points[{question_type}] {label} must be an integer, got {v!r}",
                    context={"field": "side_bet_points", "question_type": question_type},
                )
        side[question_type] = (correct, wrong)

    return MatchScoringConfig(
        match_id=match_id,
        rule_version=rule_version,
        winner_base_points=winner_base_points,
        super_over_multiplier=float(super_over_multiplier),
        total_runs_base_points=total_runs_base_points,
        runner_count=runner_count,
        slot_config=slot_config,
        runner_config=runner_config,
        side_bet_points=side,
    )
