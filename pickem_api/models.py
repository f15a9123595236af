# pickem_api/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

from pickem_api.cricket_math import balls_to_overs_notation, overs_to_balls
from pickem_api.errors import (
    InvalidMatchError,
    InvalidOversError,
    QuestionLockedError,
    SquadMismatchError,
    ValidationError,
)


# -----------------------------
# Status / tag vocabularies
# -----------------------------
MatchStatus = Literal["UPCOMING", "LIVE", "COMPLETED", "ABANDONED", "NO_RESULT"]
QuestionStatus = Literal["OPEN", "LOCKED", "RESOLVED"]
PlayerRole = Literal["BAT", "BOWL", "AR", "WK"]
OptionKind = Literal["PLAYER", "TEAM", "OUTCOME"]
QuestionType = Literal[
    "MATCH_WINNER",
    "TOSS_WINNER",
    "TOP_SCORER",
    "TOP_WICKET_TAKER",
    "MAN_OF_MATCH",
    "CENTURY",
    "FIVE_WICKET_HAUL",
    "CUSTOM",
]

MATCH_STATUSES: Tuple[str, ...] = ("UPCOMING", "LIVE", "COMPLETED", "ABANDONED", "NO_RESULT")
PLAYER_ROLES: Tuple[str, ...] = ("BAT", "BOWL", "AR", "WK")

# Matches that are scored flat 0 and never counted on the leaderboard
VOID_STATUSES = frozenset({"ABANDONED", "NO_RESULT"})
TERMINAL_STATUSES = frozenset({"COMPLETED", "ABANDONED", "NO_RESULT"})

# Placeholder team names used before knockout participants are known
TBC_MARKERS = frozenset({"TBC", "TBD"})


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_tbc(team: str) -> bool:
    return team.strip().upper().startswith(tuple(TBC_MARKERS))


# -----------------------------
# Match
# -----------------------------
@dataclass
class Match:
    match_id: str
    team_a: str
    team_b: str
    scheduled_time: datetime

    status: MatchStatus = "UPCOMING"
    includes_super_over: bool = False
    result: Optional[str] = None

    # Set by the UPCOMING -> LIVE cascade (official lock timestamp)
    locked_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.match_id or not str(self.match_id).strip():
            raise InvalidMatchError("match_id is required")
        if not self.team_a or not self.team_b:
            raise InvalidMatchError("Both teams are required", context={"match_id": self.match_id})
        if self.team_a.strip().upper() == self.team_b.strip().upper():
            raise InvalidMatchError(
                f"A match needs two distinct teams, got {self.team_a!r} twice",
                context={"match_id": self.match_id},
            )
        if self.status not in MATCH_STATUSES:
            raise InvalidMatchError(f"Invalid match status: {self.status}")
        if not isinstance(self.scheduled_time, datetime):
            raise InvalidMatchError("scheduled_time must be a datetime")
        self.scheduled_time = as_utc(self.scheduled_time)

    @property
    def teams(self) -> Tuple[str, str]:
        return (self.team_a, self.team_b)

    @property
    def is_abandoned(self) -> bool:
        return self.status == "ABANDONED"

    @property
    def is_void(self) -> bool:
        return self.status in VOID_STATUSES

    @property
    def is_locked(self) -> bool:
        return self.status != "UPCOMING"

    @property
    def has_tbc_participant(self) -> bool:
        return is_tbc(self.team_a) or is_tbc(self.team_b)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "team_a": self.team_a,
            "team_b": self.team_b,
            "scheduled_time": self.scheduled_time.isoformat(),
            "status": self.status,
            "is_abandoned": self.is_abandoned,
            "includes_super_over": self.includes_super_over,
            "result": self.result,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }


# -----------------------------
# Players & squads
# -----------------------------
@dataclass(frozen=True)
class Player:
    player_id: str
    name: str
    role: PlayerRole
    team_id: str

    def __post_init__(self) -> None:
        if not self.player_id:
            raise ValidationError("player_id is required")
        if self.role not in PLAYER_ROLES:
            raise ValidationError(
                f"Invalid player role: {self.role}",
                context={"player_id": self.player_id},
            )


@dataclass
class Squad:
    """
    One team's roster for one match. `playing_xi` must be a subset of
    `player_ids`. Once `is_final` is set the squad is never edited again.
    """
    match_id: str
    team_id: str
    player_ids: Tuple[str, ...]
    playing_xi: Tuple[str, ...] = ()
    is_final: bool = False

    def __post_init__(self) -> None:
        self.player_ids = tuple(self.player_ids)
        self.playing_xi = tuple(self.playing_xi)
        outside = [p for p in self.playing_xi if p not in set(self.player_ids)]
        if outside:
            raise SquadMismatchError(
                f"Playing XI for {self.team_id} contains players outside the squad: {outside}",
                context={"match_id": self.match_id, "team_id": self.team_id, "players": outside},
            )

    def contains(self, player_id: str) -> bool:
        return player_id in self.player_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "team_id": self.team_id,
            "player_ids": list(self.player_ids),
            "playing_xi": list(self.playing_xi),
            "is_final": self.is_final,
        }


# -----------------------------
# Raw per-match statistics
# -----------------------------
_STAT_COUNTS = (
    "runs",
    "balls_faced",
    "fours",
    "sixes",
    "wickets",
    "balls_bowled",
    "runs_conceded",
    "catches",
    "run_outs",
    "stumpings",
)
_STAT_FLAGS = ("has_century", "has_five_wicket_haul", "has_hat_trick", "is_man_of_match")


def parse_overs(value: Any, **context: Any) -> int:
    """Overs notation from outside ("3.4", 4) -> balls, as a ValidationError on bad input."""
    try:
        return overs_to_balls(value)
    except (ValueError, TypeError) as exc:
        raise InvalidOversError(
            f"Invalid overs {value!r}: {exc}",
            context={"overs": str(value), **context},
        ) from exc


@dataclass(frozen=True)
class PlayerMatchStat:
    """
    Raw counting stats for one player in one match.
    Overs bowled are stored as BALLS (3.4 overs -> 22) to avoid float overs.
    """
    match_id: str
    player_id: str

    # Batting
    runs: int = 0
    balls_faced: int = 0
    fours: int = 0
    sixes: int = 0

    # Bowling
    wickets: int = 0
    balls_bowled: int = 0
    runs_conceded: int = 0

    # Fielding
    catches: int = 0
    run_outs: int = 0
    stumpings: int = 0

    # Milestones / awards
    has_century: bool = False
    has_five_wicket_haul: bool = False
    has_hat_trick: bool = False
    is_man_of_match: bool = False

    def __post_init__(self) -> None:
        for name in _STAT_COUNTS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(
                    f"{name} must be a non-negative integer, got {value!r}",
                    context={"player_id": self.player_id, "field": name},
                )

    @property
    def overs_bowled(self) -> str:
        return balls_to_overs_notation(self.balls_bowled)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"match_id": self.match_id, "player_id": self.player_id}
        for name in _STAT_COUNTS + _STAT_FLAGS:
            out[name] = getattr(self, name)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerMatchStat":
        for key in ("match_id", "player_id"):
            if data.get(key) in (None, ""):
                raise ValidationError(f"Player stats need a {key}", context={"field": key})
        kwargs: Dict[str, Any] = {
            "match_id": str(data["match_id"]),
            "player_id": str(data["player_id"]),
        }
        for name in _STAT_COUNTS:
            if name in data and data[name] is not None:
                kwargs[name] = data[name]
        if "balls_bowled" not in kwargs and data.get("overs_bowled") not in (None, ""):
            kwargs["balls_bowled"] = parse_overs(data["overs_bowled"], player_id=kwargs["player_id"])
        for name in _STAT_FLAGS:
            kwargs[name] = bool(data.get(name, False))
        return cls(**kwargs)


@dataclass
class MatchResult:
    """Facts needed for scoring once a match is COMPLETED."""
    match_id: str
    total_runs: Optional[int]
    player_stats: Dict[str, PlayerMatchStat] = field(default_factory=dict)
    recorded_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "total_runs": self.total_runs,
            "player_stats": {pid: s.to_dict() for pid, s in sorted(self.player_stats.items())},
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }


# -----------------------------
# Questions & options
# -----------------------------
@dataclass(frozen=True)
class Option:
    """
    One selectable answer. `reference_id` points at a player (kind PLAYER)
    or a team (kind TEAM); OUTCOME options (super over, yes/no) carry none.
    """
    option_id: str
    label: str
    kind: OptionKind = "OUTCOME"
    reference_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "option_id": self.option_id,
            "label": self.label,
            "kind": self.kind,
            "reference_id": self.reference_id,
        }


# Fields that may still change after a question leaves OPEN
_QUESTION_MUTABLE_FIELDS = frozenset({"status", "correct_option_id", "resolved_at"})


@dataclass
class Question:
    question_id: str
    match_id: Optional[str]
    question_type: QuestionType
    text: str
    options: Tuple[Option, ...]
    points_correct: int
    points_wrong: int = 0

    status: QuestionStatus = "OPEN"
    correct_option_id: Optional[str] = None
    resolved_at: Optional[datetime] = None

    def __setattr__(self, name: str, value: Any) -> None:
        # LOCKED / RESOLVED questions are content-immutable
        if (
            name not in _QUESTION_MUTABLE_FIELDS
            and name in self.__dict__
            and self.__dict__.get("status", "OPEN") != "OPEN"
        ):
            raise QuestionLockedError(
                f"Question {self.question_id} is {self.status}; {name} can no longer change",
                context={"question_id": self.question_id, "field": name},
            )
        super().__setattr__(name, value)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", tuple(self.options))
        ids = [o.option_id for o in self.options]
        if len(ids) != len(set(ids)):
            raise ValidationError(
                f"Duplicate option ids on question {self.question_id}",
                context={"question_id": self.question_id},
            )

    @property
    def is_tournament(self) -> bool:
        return self.match_id is None

    def option_ids(self) -> List[str]:
        return [o.option_id for o in self.options]

    def has_option(self, option_id: str) -> bool:
        return any(o.option_id == option_id for o in self.options)

    def get_option(self, option_id: str) -> Optional[Option]:
        for o in self.options:
            if o.option_id == option_id:
                return o
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "match_id": self.match_id,
            "question_type": self.question_type,
            "text": self.text,
            "options": [o.to_dict() for o in self.options],
            "points_correct": self.points_correct,
            "points_wrong": self.points_wrong,
            "status": self.status,
            "correct_option_id": self.correct_option_id,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


# -----------------------------
# Bets
# -----------------------------
@dataclass
class Bet:
    """
    One bet per (user, match). `answers` maps question_id -> option_id and
    covers the winner question as well as every side question.
    """
    user_id: str
    match_id: str
    submitted_at: datetime

    answers: Dict[str, str] = field(default_factory=dict)
    player_picks: Dict[int, str] = field(default_factory=dict)
    total_runs_guess: Optional[int] = None
    runner_user_ids: Tuple[str, ...] = ()

    is_locked: bool = False
    locked_at: Optional[datetime] = None
    score: Optional[int] = None

    def lock(self, at: datetime) -> None:
        if self.is_locked:
            return
        self.is_locked = True
        self.locked_at = at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "match_id": self.match_id,
            "submitted_at": self.submitted_at.isoformat(),
            "answers": dict(sorted(self.answers.items())),
            "player_picks": {str(k): v for k, v in sorted(self.player_picks.items())},
            "total_runs_guess": self.total_runs_guess,
            "runner_user_ids": list(self.runner_user_ids),
            "is_locked": self.is_locked,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "score": self.score,
        }


@dataclass
class TournamentBet:
    """
    One user's long-term answers (cup winner, top run scorer, ...).
    Answers are upserted per question and freeze when that question locks.
    """
    user_id: str
    answers: Dict[str, str] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "answers": dict(sorted(self.answers.items())),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# -----------------------------
# Groups
# -----------------------------
@dataclass
class Group:
    group_id: str
    name: str
    created_by: str
    members: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "name": self.name,
            "created_by": self.created_by,
            "members": sorted(self.members),
        }
