# pickem_api/questions.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from pickem_api import config
from pickem_api.errors import (
    OptionReferenceError,
    SquadMismatchError,
    ValidationError,
)
from pickem_api.models import Match, Option, Player, Question, Squad
from pickem_api.multipliers import MatchScoringConfig

logger = logging.getLogger(__name__)

SUPER_OVER_LABEL = "Super Over"

# Question types whose options point at individual players
PLAYER_QUESTION_TYPES = ("TOP_SCORER", "TOP_WICKET_TAKER", "MAN_OF_MATCH")
WICKET_TAKER_ROLES = ("BOWL", "AR")

_QUESTION_TEXT: Dict[str, str] = {
    "MATCH_WINNER": "Who will win the match?",
    "TOSS_WINNER": "Who will win the toss?",
    "TOP_SCORER": "Who will be the top run scorer?",
    "TOP_WICKET_TAKER": "Who will take the most wickets?",
    "MAN_OF_MATCH": "Who will be player of the match?",
    "CENTURY": "Will anyone score a century?",
    "FIVE_WICKET_HAUL": "Will anyone take a five-wicket haul?",
}


def question_id_for(match_id: str, question_type: str) -> str:
    return f"q_{match_id}_{question_type.lower()}"


def super_over_option_id(match_id: str) -> str:
    return f"opt_{match_id}_match_winner_superover"


# -----------------------------
# Option construction (hard invariants)
# -----------------------------
def team_option(question_id: str, match: Match, team: str, *, suffix: str) -> Option:
    """A TEAM option may only name one of the match's own two teams."""
    if team not in match.teams:
        raise OptionReferenceError(
            f"Team {team!r} is not playing in match {match.match_id}",
            context={"question_id": question_id, "team": team},
        )
    return Option(
        option_id=f"opt_{match.match_id}_{_type_part(question_id, match)}_{suffix}",
        label=team,
        kind="TEAM",
        reference_id=team,
    )


def _type_part(question_id: str, match: Match) -> str:
    prefix = f"q_{match.match_id}_"
    return question_id[len(prefix):] if question_id.startswith(prefix) else question_id


def player_option(question_id: str, match: Match, player: Player, eligible: Set[str]) -> Option:
    """A PLAYER option may only name a player in one of the match's two squads."""
    if player.player_id not in eligible:
        raise OptionReferenceError(
            f"Player {player.player_id} is not in either squad for match {match.match_id}",
            context={"question_id": question_id, "player_id": player.player_id},
        )
    return Option(
        option_id=f"opt_{match.match_id}_{_type_part(question_id, match)}_{player.player_id}",
        label=player.name,
        kind="PLAYER",
        reference_id=player.player_id,
    )


def outcome_option(question_id: str, match: Match, label: str, *, suffix: str) -> Option:
    return Option(
        option_id=f"opt_{match.match_id}_{_type_part(question_id, match)}_{suffix}",
        label=label,
        kind="OUTCOME",
    )


# -----------------------------
# Squad checks
# -----------------------------
def check_squads(match: Match, squads: Sequence[Squad]) -> Dict[str, Squad]:
    """Exactly two squads, one per match team, both for this match."""
    if len(squads) != 2:
        raise SquadMismatchError(
            f"Match {match.match_id} needs exactly two squads, got {len(squads)}",
            context={"match_id": match.match_id},
        )

    by_team: Dict[str, Squad] = {}
    for squad in squads:
        if squad.match_id != match.match_id:
            raise SquadMismatchError(
                f"Squad for {squad.team_id} belongs to match {squad.match_id}, not {match.match_id}",
                context={"match_id": match.match_id, "team_id": squad.team_id},
            )
        by_team[squad.team_id] = squad

    if set(by_team) != set(match.teams):
        raise SquadMismatchError(
            f"Squads {sorted(by_team)} do not match teams {list(match.teams)}",
            context={"match_id": match.match_id},
        )
    return by_team


def eligible_player_ids(squads: Iterable[Squad]) -> Set[str]:
    out: Set[str] = set()
    for squad in squads:
        out.update(squad.player_ids)
    return out


def _pool(match: Match, by_team: Mapping[str, Squad], players: Mapping[str, Player]) -> List[Player]:
    """Playing XI where announced, else full roster; team A first, then by name."""
    pool: List[Player] = []
    for team in match.teams:
        squad = by_team[team]
        ids = squad.playing_xi or squad.player_ids
        missing = [pid for pid in ids if pid not in players]
        if missing:
            raise SquadMismatchError(
                f"Squad {team} references unknown players: {missing}",
                context={"match_id": match.match_id, "team_id": team, "players": missing},
            )
        pool.extend(sorted((players[pid] for pid in ids), key=lambda p: (p.name, p.player_id)))
    return pool


# -----------------------------
# Generator
# -----------------------------
def _question(
    match: Match,
    question_type: str,
    options: List[Option],
    points_correct: int,
    points_wrong: int,
) -> Question:
    return Question(
        question_id=question_id_for(match.match_id, question_type),
        match_id=match.match_id,
        question_type=question_type,  # type: ignore[arg-type]
        text=_QUESTION_TEXT[question_type],
        options=tuple(options),
        points_correct=points_correct,
        points_wrong=points_wrong,
    )


def generate_questions(
    match: Match,
    squads: Sequence[Squad],
    players: Mapping[str, Player],
    scoring_config: Optional[MatchScoringConfig] = None,
) -> List[Question]:
    """
    Deterministically derive the standard question set for one match.

    Same inputs -> same question ids, option ids and option order. Matches
    with a TBC/TBD participant get no player questions (and need no squads).
    """
    cfg = scoring_config or MatchScoringConfig(match_id=match.match_id)
    tbc = match.has_tbc_participant

    by_team: Dict[str, Squad] = {}
    if not tbc or squads:
        by_team = check_squads(match, squads)
    eligible = eligible_player_ids(by_team.values())

    def side_points(question_type: str):
        return cfg.side_points(
            question_type, config.DEFAULT_SIDE_BET_POINTS, config.DEFAULT_SIDE_BET_POINTS_WRONG
        )

    questions: List[Question] = []

    # Winner: both teams plus the super-over outcome
    qid = question_id_for(match.match_id, "MATCH_WINNER")
    questions.append(_question(
        match,
        "MATCH_WINNER",
        [
            team_option(qid, match, match.team_a, suffix="teamA"),
            team_option(qid, match, match.team_b, suffix="teamB"),
            outcome_option(qid, match, SUPER_OVER_LABEL, suffix="superover"),
        ],
        cfg.winner_base_points,
        0,
    ))

    qid = question_id_for(match.match_id, "TOSS_WINNER")
    questions.append(_question(
        match,
        "TOSS_WINNER",
        [
            team_option(qid, match, match.team_a, suffix="teamA"),
            team_option(qid, match, match.team_b, suffix="teamB"),
        ],
        *side_points("TOSS_WINNER"),
    ))

    if tbc:
        logger.info("Match %s has a TBC participant; skipping player questions", match.match_id)
    else:
        pool = _pool(match, by_team, players)
        for question_type in PLAYER_QUESTION_TYPES:
            qid = question_id_for(match.match_id, question_type)
            candidates = pool
            if question_type == "TOP_WICKET_TAKER":
                candidates = [p for p in pool if p.role in WICKET_TAKER_ROLES]
            if not candidates:
                logger.warning("No eligible players for %s in %s", question_type, match.match_id)
                continue
            questions.append(_question(
                match,
                question_type,
                [player_option(qid, match, p, eligible) for p in candidates],
                *side_points(question_type),
            ))

    for question_type in ("CENTURY", "FIVE_WICKET_HAUL"):
        qid = question_id_for(match.match_id, question_type)
        questions.append(_question(
            match,
            question_type,
            [
                outcome_option(qid, match, "Yes", suffix="yes"),
                outcome_option(qid, match, "No", suffix="no"),
            ],
            *side_points(question_type),
        ))

    return questions


def build_side_question(
    match: Match,
    slug: str,
    text: str,
    labels: Sequence[str],
    *,
    points_correct: int = config.DEFAULT_SIDE_BET_POINTS,
    points_wrong: int = config.DEFAULT_SIDE_BET_POINTS_WRONG,
) -> Question:
    """Admin-authored multiple-choice side bet with plain outcome options."""
    slug = slug.strip().lower()
    if not slug or not text.strip():
        raise ValidationError("Side question needs a slug and text", context={"match_id": match.match_id})
    if len(labels) < 2:
        raise ValidationError("Side question needs at least two options", context={"match_id": match.match_id})

    qid = f"q_{match.match_id}_side_{slug}"
    options = [outcome_option(qid, match, label, suffix=str(i)) for i, label in enumerate(labels, start=1)]
    return Question(
        question_id=qid,
        match_id=match.match_id,
        question_type="CUSTOM",
        text=text.strip(),
        options=tuple(options),
        points_correct=points_correct,
        points_wrong=points_wrong,
    )
