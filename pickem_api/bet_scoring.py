# pickem_api/bet_scoring.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pickem_api.cricket_math import round_points
from pickem_api.models import VOID_STATUSES, Bet, PlayerMatchStat, Question
from pickem_api.multipliers import MatchScoringConfig, apply_multiplier
from pickem_api.player_scoring import base_score
from pickem_api.rules import get_rule_set
from pickem_api.slot_conflict import detect_slot_conflicts

logger = logging.getLogger(__name__)

# (max distance from the real total, factor of base points), checked in order
TOTAL_RUNS_BANDS: Tuple[Tuple[int, float], ...] = (
    (0, 5.0),
    (1, 1.0),
    (5, 0.5),
    (10, 0.25),
    (15, 0.1),
)


# -----------------------------
# Scoring inputs (plain, serializable snapshot)
# -----------------------------
@dataclass(frozen=True)
class QuestionOutcome:
    question_id: str
    question_type: str
    status: str
    correct_option_id: Optional[str]
    points_correct: int
    points_wrong: int
    super_over_option_id: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.status == "RESOLVED" and self.correct_option_id is not None

    @classmethod
    def from_question(cls, question: Question) -> "QuestionOutcome":
        super_over = None
        if question.question_type == "MATCH_WINNER":
            for option in question.options:
                if option.kind == "OUTCOME":
                    super_over = option.option_id
        return cls(
            question_id=question.question_id,
            question_type=question.question_type,
            status=question.status,
            correct_option_id=question.correct_option_id,
            points_correct=question.points_correct,
            points_wrong=question.points_wrong,
            super_over_option_id=super_over,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "question_type": self.question_type,
            "status": self.status,
            "correct_option_id": self.correct_option_id,
            "points_correct": self.points_correct,
            "points_wrong": self.points_wrong,
            "super_over_option_id": self.super_over_option_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuestionOutcome":
        return cls(**dict(data))


@dataclass(frozen=True)
class BetEntry:
    user_id: str
    answers: Dict[str, str] = field(default_factory=dict)
    player_picks: Dict[int, str] = field(default_factory=dict)
    total_runs_guess: Any = None
    runner_user_ids: Tuple[str, ...] = ()

    @classmethod
    def from_bet(cls, bet: Bet) -> "BetEntry":
        return cls(
            user_id=bet.user_id,
            answers=dict(bet.answers),
            player_picks=dict(bet.player_picks),
            total_runs_guess=bet.total_runs_guess,
            runner_user_ids=tuple(bet.runner_user_ids),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "answers": dict(sorted(self.answers.items())),
            "player_picks": {str(k): v for k, v in sorted(self.player_picks.items())},
            "total_runs_guess": self.total_runs_guess,
            "runner_user_ids": list(self.runner_user_ids),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BetEntry":
        return cls(
            user_id=data["user_id"],
            answers=dict(data.get("answers") or {}),
            player_picks={int(k): v for k, v in (data.get("player_picks") or {}).items()},
            total_runs_guess=data.get("total_runs_guess"),
            runner_user_ids=tuple(data.get("runner_user_ids") or ()),
        )


@dataclass(frozen=True)
class ScoringInputs:
    """Everything score_match() reads. Nothing else influences a score."""
    match_id: str
    match_status: str
    rule_version: str
    scoring_config: MatchScoringConfig
    questions: Tuple[QuestionOutcome, ...]
    bets: Tuple[BetEntry, ...]
    total_runs: Optional[int] = None
    player_stats: Dict[str, PlayerMatchStat] = field(default_factory=dict)

    @property
    def is_void(self) -> bool:
        return self.match_status in VOID_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "match_status": self.match_status,
            "rule_version": self.rule_version,
            "scoring_config": self.scoring_config.to_dict(),
            "questions": [q.to_dict() for q in self.questions],
            "bets": [b.to_dict() for b in self.bets],
            "total_runs": self.total_runs,
            "player_stats": {pid: s.to_dict() for pid, s in sorted(self.player_stats.items())},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoringInputs":
        return cls(
            match_id=data["match_id"],
            match_status=data["match_status"],
            rule_version=data["rule_version"],
            scoring_config=MatchScoringConfig.from_dict(data["scoring_config"]),
            questions=tuple(QuestionOutcome.from_dict(q) for q in data.get("questions") or []),
            bets=tuple(BetEntry.from_dict(b) for b in data.get("bets") or []),
            total_runs=data.get("total_runs"),
            player_stats={
                pid: PlayerMatchStat.from_dict(s) for pid, s in (data.get("player_stats") or {}).items()
            },
        )


# -----------------------------
# Sub-scores
# -----------------------------
def winner_points(entry: BetEntry, questions: List[QuestionOutcome], cfg: MatchScoringConfig) -> int:
    """Full base points for the right winner; super-over outcome scales them."""
    for q in questions:
        if q.question_type != "MATCH_WINNER" or not q.is_resolved:
            continue
        if entry.answers.get(q.question_id) != q.correct_option_id:
            return 0
        if q.super_over_option_id is not None and q.correct_option_id == q.super_over_option_id:
            return round_points(cfg.winner_base_points * cfg.super_over_multiplier)
        return cfg.winner_base_points
    return 0


def parse_runs_guess(guess: Any) -> Optional[int]:
    """Whole-number guesses only; anything else is treated as no answer."""
    if guess is None or isinstance(guess, bool):
        return None
    if isinstance(guess, int):
        return guess
    if isinstance(guess, float):
        if math.isfinite(guess) and guess.is_integer():
            return int(guess)
        return None
    if isinstance(guess, str):
        s = guess.strip()
        try:
            return int(s)
        except ValueError:
            return None
    return None


def total_runs_points(guess: Any, actual: Optional[int], base_points: int) -> int:
    if actual is None:
        return 0
    value = parse_runs_guess(guess)
    if value is None:
        return 0

    distance = abs(value - actual)
    for max_distance, factor in TOTAL_RUNS_BANDS:
        if distance <= max_distance:
            return round_points(base_points * factor)
    return 0


def player_pick_points(
    entry: BetEntry,
    cfg: MatchScoringConfig,
    player_stats: Mapping[str, PlayerMatchStat],
    version: str,
) -> Tuple[int, List[Dict[str, Any]], List[int]]:
    """
    Conflict-resolve the picks, then score each populated slot through the
    multiplier layer. Returns (points, per-slot detail, cleared slots).
    """
    report = detect_slot_conflicts(entry.player_picks)
    slots = cfg.slots()

    total = 0
    detail: List[Dict[str, Any]] = []
    for slot_index, player_id in sorted(report.resolved.items()):
        if player_id is None:
            continue
        multiplier, enabled = slots.slot(slot_index)
        stats = player_stats.get(player_id)
        base = base_score(stats, version) if stats is not None else 0.0
        points = apply_multiplier(base, multiplier, enabled)
        total += points
        detail.append({
            "slot": slot_index,
            "player_id": player_id,
            "base_score": base,
            "multiplier": multiplier,
            "enabled": enabled,
            "points": points,
        })

    cleared = sorted(s for c in report.conflicts for s in c.cleared_slots)
    return total, detail, cleared


def side_bet_points(entry: BetEntry, questions: List[QuestionOutcome]) -> int:
    total = 0
    for q in questions:
        if q.question_type == "MATCH_WINNER" or not q.is_resolved:
            continue
        selected = entry.answers.get(q.question_id)
        if selected is None:
            continue
        total += q.points_correct if selected == q.correct_option_id else q.points_wrong
    return total


def tournament_points(question: QuestionOutcome, answers: Mapping[str, str]) -> Dict[str, int]:
    """
    user_id -> points for one resolved tournament question.
    Users who never answered it are left out rather than scored 0.
    """
    if not question.is_resolved:
        return {}
    return {
        user_id: question.points_correct if option_id == question.correct_option_id else question.points_wrong
        for user_id, option_id in sorted(answers.items())
    }


def eligible_runners(entry: BetEntry, runner_count: int) -> List[str]:
    """Drops self-picks and repeats, then caps at the configured runner count."""
    out: List[str] = []
    for runner_id in entry.runner_user_ids:
        if runner_id == entry.user_id or runner_id in out:
            continue
        out.append(runner_id)
    return out[:runner_count]


# -----------------------------
# Aggregation
# -----------------------------
def _empty_breakdown() -> Dict[str, Any]:
    return {
        "winner": 0,
        "total_runs": 0,
        "player_picks": 0,
        "side_bets": 0,
        "runners": 0,
        "total": 0,
        "picks": [],
        "cleared_slots": [],
        "runner_detail": [],
    }


def score_match(inputs: ScoringInputs, version: Optional[str] = None) -> Dict[str, Any]:
    """
    Score every bet on one match. Pure: the result depends only on
    `inputs` and the rule version, so a stored snapshot can be replayed.

    Void (abandoned / no-result) matches short-circuit to 0 for everyone.
    Runner contributions are summed over every runner picked.
    """
    version = version or inputs.rule_version
    get_rule_set(version)

    cfg = inputs.scoring_config
    questions = list(inputs.questions)
    breakdowns: Dict[str, Dict[str, Any]] = {}

    if inputs.is_void:
        for entry in inputs.bets:
            breakdowns[entry.user_id] = _empty_breakdown()
        return _outputs(inputs, version, breakdowns)

    # Pass 1: each user's own score (everything except runners)
    for entry in inputs.bets:
        b = _empty_breakdown()
        b["winner"] = winner_points(entry, questions, cfg)
        b["total_runs"] = total_runs_points(entry.total_runs_guess, inputs.total_runs, cfg.total_runs_base_points)
        b["player_picks"], b["picks"], b["cleared_slots"] = player_pick_points(
            entry, cfg, inputs.player_stats, version
        )
        b["side_bets"] = side_bet_points(entry, questions)
        b["own"] = b["winner"] + b["total_runs"] + b["player_picks"] + b["side_bets"]
        breakdowns[entry.user_id] = b

    # Pass 2: runners add the runner's own score (0 if the runner did not bet)
    for entry in inputs.bets:
        b = breakdowns[entry.user_id]
        runner_total = 0
        for index, runner_id in enumerate(eligible_runners(entry, cfg.runner_count), start=1):
            own = breakdowns[runner_id]["own"] if runner_id in breakdowns else 0
            points = apply_multiplier(float(own), cfg.runner_multiplier(index), True)
            runner_total += points
            b["runner_detail"].append({"runner_user_id": runner_id, "own_score": own, "points": points})
        b["runners"] = runner_total

    for b in breakdowns.values():
        b["total"] = b.pop("own") + b["runners"]

    return _outputs(inputs, version, breakdowns)


def _outputs(inputs: ScoringInputs, version: str, breakdowns: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    ordered = {user: breakdowns[user] for user in sorted(breakdowns)}
    return {
        "match_id": inputs.match_id,
        "rule_version": version,
        "is_void": inputs.is_void,
        "per_user_scores": {user: b["total"] for user, b in ordered.items()},
        "breakdowns": ordered,
    }
