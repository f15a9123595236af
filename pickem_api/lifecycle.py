# pickem_api/lifecycle.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pickem_api import config
from pickem_api.errors import (
    AlreadyAbandonedError,
    IllegalTransitionError,
    QuestionAlreadyResolvedError,
)
from pickem_api.models import TERMINAL_STATUSES, Match, Question, as_utc


# -----------------------------
# Transition tables
# -----------------------------
MATCH_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "UPCOMING": ("LIVE", "ABANDONED"),
    "LIVE": ("COMPLETED", "ABANDONED", "NO_RESULT"),
    "COMPLETED": (),
    "ABANDONED": (),
    "NO_RESULT": (),
}

QUESTION_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "OPEN": ("LOCKED",),
    "LOCKED": ("RESOLVED",),
    "RESOLVED": (),
}

# Position along the lifecycle; every legal transition strictly increases it
_MATCH_RANK: Dict[str, int] = {
    "UPCOMING": 0,
    "LIVE": 1,
    "COMPLETED": 2,
    "ABANDONED": 2,
    "NO_RESULT": 2,
}


@dataclass(frozen=True)
class Transition:
    match_id: str
    from_status: str
    to_status: str
    at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "from": self.from_status,
            "to": self.to_status,
            "at": self.at.isoformat(),
        }


@dataclass(frozen=True)
class Timeline:
    """lock_at = first ball = official bet lock time."""
    lock_at: datetime
    complete_at: datetime


def timeline_for(match: Match, duration_minutes: int = config.MATCH_DURATION_MINUTES) -> Timeline:
    lock_at = match.scheduled_time
    return Timeline(lock_at=lock_at, complete_at=lock_at + timedelta(minutes=duration_minutes))


# -----------------------------
# Guards
# -----------------------------
def check_match_transition(match_id: str, current: str, target: str) -> None:
    if current == "ABANDONED" and target == "ABANDONED":
        raise AlreadyAbandonedError(
            f"Match {match_id} is already abandoned",
            context={"match_id": match_id},
        )
    if target not in MATCH_TRANSITIONS.get(current, ()):
        raise IllegalTransitionError(
            f"Match {match_id} cannot move {current} -> {target}",
            context={"match_id": match_id, "from": current, "to": target},
        )
    if _MATCH_RANK[target] <= _MATCH_RANK[current]:
        raise IllegalTransitionError(
            f"Backward transition {current} -> {target} for match {match_id}",
            context={"match_id": match_id, "from": current, "to": target},
        )


def check_question_transition(question: Question, target: str) -> None:
    if question.status == "RESOLVED" and target == "RESOLVED":
        raise QuestionAlreadyResolvedError(
            f"Question {question.question_id} is already resolved",
            context={"question_id": question.question_id},
        )
    if target not in QUESTION_TRANSITIONS.get(question.status, ()):
        raise IllegalTransitionError(
            f"Question {question.question_id} cannot move {question.status} -> {target}",
            context={"question_id": question.question_id, "from": question.status, "to": target},
        )


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


# -----------------------------
# Clock-driven planning
# -----------------------------
def plan_transitions(
    match: Match,
    to_timestamp: datetime,
    *,
    clock: Optional[datetime] = None,
    duration_minutes: int = config.MATCH_DURATION_MINUTES,
) -> List[Transition]:
    """
    Transitions a match goes through when its logical clock moves to
    `to_timestamp`. `clock` is where the match's clock already stands.

    Moving to a time at or before `clock` is a no-op, as is advancing a
    terminal match. Each planned step is checked against the transition
    table, so a backward move raises instead of being applied.
    """
    to_timestamp = as_utc(to_timestamp)
    if clock is not None and to_timestamp <= as_utc(clock):
        return []
    if is_terminal(match.status):
        return []

    timeline = timeline_for(match, duration_minutes)
    status = match.status
    steps: List[Transition] = []

    if status == "UPCOMING" and to_timestamp >= timeline.lock_at:
        steps.append(Transition(match.match_id, "UPCOMING", "LIVE", timeline.lock_at))
        status = "LIVE"

    if status == "LIVE" and to_timestamp >= timeline.complete_at:
        steps.append(Transition(match.match_id, "LIVE", "COMPLETED", timeline.complete_at))

    for step in steps:
        check_match_transition(match.match_id, step.from_status, step.to_status)

    return steps
