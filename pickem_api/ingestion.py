# pickem_api/ingestion.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from pickem_api.errors import EngineError
from pickem_api.models import Match, Option, Player, Question, Squad, as_utc

logger = logging.getLogger(__name__)


# -----------------------------
# Lookup tables
# -----------------------------
EXTERNAL_STATUS_MAP: Dict[str, str] = {
    "scheduled": "UPCOMING",
    "pre-match": "UPCOMING",
    "upcoming": "UPCOMING",
    "toss": "UPCOMING",
    "in_progress": "LIVE",
    "in progress": "LIVE",
    "innings break": "LIVE",
    "live": "LIVE",
    "stumps": "LIVE",
    "tea": "LIVE",
    "lunch": "LIVE",
    "drinks": "LIVE",
    "complete": "COMPLETED",
    "completed": "COMPLETED",
    "result": "COMPLETED",
    "abandoned": "ABANDONED",
    "cancelled": "ABANDONED",
    "no result": "NO_RESULT",
    "no_result": "NO_RESULT",
}

EXTERNAL_ROLE_MAP: Dict[str, str] = {
    "batsman": "BAT",
    "batter": "BAT",
    "bat": "BAT",
    "top order": "BAT",
    "middle order": "BAT",
    "opening batter": "BAT",
    "bowler": "BOWL",
    "bowl": "BOWL",
    "fast bowler": "BOWL",
    "spin bowler": "BOWL",
    "pace bowler": "BOWL",
    "all-rounder": "AR",
    "allrounder": "AR",
    "all rounder": "AR",
    "ar": "AR",
    "batting allrounder": "AR",
    "bowling allrounder": "AR",
    "wicketkeeper": "WK",
    "keeper": "WK",
    "wk": "WK",
    "wk-bat": "WK",
    "wicketkeeper batter": "WK",
}

DEFAULT_STATUS = "UPCOMING"
DEFAULT_ROLE = "BAT"


# -----------------------------
# Report
# -----------------------------
@dataclass
class ValidationReport:
    """Collects problems instead of raising; a shadow run never fails."""
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    ambiguities: List[Dict[str, Any]] = field(default_factory=list)
    passed: int = 0
    failed: int = 0

    def warn(self, category: str, message: str, **context: Any) -> None:
        self.warnings.append({"category": category, "message": message, "context": context})
        self.failed += 1
        logger.warning("[%s] %s", category, message)

    def ambiguity(self, field_name: str, message: str, **context: Any) -> None:
        self.ambiguities.append({"field": field_name, "message": message, "context": context})
        logger.debug("Ambiguity in %s: %s", field_name, message)

    def ok(self) -> None:
        self.passed += 1

    def summary(self) -> Dict[str, Any]:
        return {
            "total_checks": self.passed + self.failed,
            "passed": self.passed,
            "failed": self.failed,
            "warnings": list(self.warnings),
            "ambiguities": list(self.ambiguities),
        }


# -----------------------------
# Normalization helpers
# -----------------------------
def first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    """First non-empty value among alternative key spellings."""
    for k in keys:
        v = raw.get(k)
        if v is not None and v != "":
            return v
    return None


def as_text(val: Any, default: str = "") -> str:
    if val is None:
        return default
    s = str(val).strip()
    return s or default


def as_list(val: Any) -> List[Any]:
    if isinstance(val, list):
        return val
    if isinstance(val, tuple):
        return list(val)
    if val is None:
        return []
    return [val]


def entity_id(val: Any) -> str:
    """Accepts a bare id or a nested {id / playerId / player_id} object."""
    if isinstance(val, Mapping):
        return as_text(first_present(val, "id", "playerId", "player_id", "object_id"))
    return as_text(val)


def normalize_key(s: str) -> str:
    return re.sub(r"\s+", " ", str(s).strip().lower())


def map_status(raw_status: Any, report: ValidationReport) -> str:
    if raw_status is None or as_text(raw_status) == "":
        report.warn("STATUS", f"Missing status field, defaulting to {DEFAULT_STATUS}")
        return DEFAULT_STATUS
    mapped = EXTERNAL_STATUS_MAP.get(normalize_key(raw_status))
    if mapped is None:
        report.warn("STATUS", f"Unknown external status {raw_status!r}, defaulting to {DEFAULT_STATUS}", raw=raw_status)
        report.ambiguity("match_status", f"Unmapped status value: {raw_status!r}", raw=raw_status)
        return DEFAULT_STATUS
    report.ok()
    return mapped


def map_role(raw_role: Any, report: ValidationReport, player_id: str) -> str:
    if raw_role is None or as_text(raw_role) == "":
        report.warn("ROLE", f"Missing role for player {player_id}, defaulting to {DEFAULT_ROLE}")
        report.ambiguity("player_role", f"No role provided for player {player_id}", player_id=player_id)
        return DEFAULT_ROLE
    mapped = EXTERNAL_ROLE_MAP.get(normalize_key(raw_role))
    if mapped is None:
        report.warn("ROLE", f"Unknown role {raw_role!r} for player {player_id}, defaulting to {DEFAULT_ROLE}", raw=raw_role)
        report.ambiguity("player_role", f"Unmapped role {raw_role!r} for player {player_id}", player_id=player_id)
        return DEFAULT_ROLE
    report.ok()
    return mapped


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if isinstance(raw, datetime):
        return as_utc(raw)
    s = as_text(raw)
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(s))
    except ValueError:
        return None


def normalize_option(raw: Mapping[str, Any]) -> Optional[Option]:
    """One canonical Option from any of the feed's option spellings."""
    option_id = as_text(first_present(raw, "option_id", "optionId", "id"))
    if not option_id:
        return None
    label = as_text(first_present(raw, "label", "name", "text"), option_id)
    player_ref = as_text(first_present(raw, "player_id", "playerId"))
    team_ref = as_text(first_present(raw, "team_id", "teamId", "team"))
    if player_ref:
        return Option(option_id=option_id, label=label, kind="PLAYER", reference_id=player_ref)
    if team_ref:
        return Option(option_id=option_id, label=label, kind="TEAM", reference_id=team_ref)
    return Option(option_id=option_id, label=label, kind="OUTCOME")


# -----------------------------
# Shadow ingestor
# -----------------------------
class ShadowIngestor:
    """
    Read-only ingestion of feed-shaped dicts into canonical models.

    Nothing here talks to an Engine: the caller decides what (if anything)
    to load. Every consistency problem lands in `report`.
    """

    def __init__(self) -> None:
        self.report = ValidationReport()
        self.rosters: Dict[str, List[str]] = {}
        self.players: Dict[str, Player] = {}
        self.matches: Dict[str, Match] = {}
        self.squads: Dict[str, List[Squad]] = {}
        self.questions: Dict[str, Question] = {}

    # Teams only contribute rosters (and embedded players)
    def ingest_teams(self, raw_teams: Iterable[Mapping[str, Any]]) -> None:
        for raw in as_list(raw_teams):
            team_id = as_text(first_present(raw, "id", "teamId", "team_id", "object_id"))
            if not team_id:
                self.report.warn("TEAM", "Team missing ID, skipped")
                continue
            members = as_list(first_present(raw, "players", "squad", "roster"))
            self.rosters[team_id] = [pid for pid in (entity_id(p) for p in members) if pid]
            embedded = [p for p in members if isinstance(p, Mapping)]
            if embedded:
                self.ingest_players(embedded, team_id=team_id)
            self.report.ok()

    def ingest_players(self, raw_players: Iterable[Mapping[str, Any]], team_id: Optional[str] = None) -> None:
        for raw in as_list(raw_players):
            player_id = entity_id(raw)
            if not player_id:
                self.report.warn("PLAYER", "Player missing ID, skipped")
                continue
            full = f"{as_text(raw.get('first_name'))} {as_text(raw.get('last_name'))}".strip()
            name = as_text(first_present(raw, "name", "player_name", "full_name"), full or "Unknown Player")
            role = map_role(first_present(raw, "role", "playing_role"), self.report, player_id)
            team = as_text(team_id or first_present(raw, "teamId", "team_id"))
            if not team:
                team = next((t for t, ids in self.rosters.items() if player_id in ids), "")
                if not team:
                    self.report.ambiguity("player_team", f"No team known for player {player_id}", player_id=player_id)
            self.players[player_id] = Player(player_id=player_id, name=name, role=role, team_id=team)  # type: ignore[arg-type]
            self.report.ok()

    def ingest_matches(self, raw_matches: Iterable[Mapping[str, Any]]) -> None:
        for raw in as_list(raw_matches):
            match_id = as_text(first_present(raw, "id", "matchId", "match_id", "object_id"))
            if not match_id:
                self.report.warn("MATCH", "Match missing ID, skipped")
                continue

            teams = as_list(raw.get("teams"))
            team_a = as_text(first_present(raw, "teamA", "team_a", "team1", "home_team_id") or (teams[0] if teams else None))
            team_b = as_text(first_present(raw, "teamB", "team_b", "team2", "away_team_id") or (teams[1] if len(teams) > 1 else None))
            if len(teams) > 2:
                self.report.ambiguity(
                    "match_teams", f"Match {match_id} lists {len(teams)} teams; used the first two", teams=teams
                )

            status = map_status(first_present(raw, "status", "match_status"), self.report)
            scheduled = parse_timestamp(first_present(raw, "scheduledTime", "scheduled_time", "start_date", "date"))

            if not team_a or not team_b:
                self.report.warn("MATCH_TEAMS", f"Match {match_id} missing one or both team IDs", match_id=match_id)
                continue
            if team_a == team_b:
                self.report.warn("MATCH_TEAMS", f"Match {match_id} has identical teams: {team_a}", match_id=match_id)
                continue
            self.report.ok()
            if scheduled is None:
                self.report.warn("MATCH_TIME", f"Match {match_id} has no readable scheduled time", match_id=match_id)
                continue

            try:
                match = Match(
                    match_id=match_id,
                    team_a=team_a,
                    team_b=team_b,
                    scheduled_time=scheduled,
                    status=status,  # type: ignore[arg-type]
                    includes_super_over=bool(first_present(raw, "includesSuperOver", "super_over", "is_super_over")),
                    result=as_text(first_present(raw, "result", "status_text", "result_text")) or None,
                )
            except EngineError as e:
                self.report.warn("MATCH", f"Match {match_id} rejected: {e.message}", match_id=match_id)
                continue
            self.matches[match_id] = match
            self.report.ok()

    def ingest_squads(self, match_id: str, raw_squads: Iterable[Mapping[str, Any]]) -> None:
        match = self.matches.get(match_id)
        if match is None:
            self.report.warn("SQUAD", f"Cannot ingest squads: match {match_id} not found")
            return

        squads: List[Squad] = []
        for raw in as_list(raw_squads):
            team_id = as_text(first_present(raw, "teamId", "team_id"))
            if not team_id:
                self.report.warn("SQUAD", f"Squad entry missing teamId for match {match_id}")
                continue
            player_ids = [p for p in (entity_id(x) for x in as_list(first_present(raw, "playerIds", "player_ids", "players", "squad"))) if p]
            xi = [p for p in (entity_id(x) for x in as_list(first_present(raw, "playingXI", "playing_xi", "playing_11", "xi"))) if p]

            outside = [pid for pid in xi if pid not in set(player_ids)]
            for pid in outside:
                self.report.warn("SQUAD_SUBSET", f"Playing XI player {pid} not in squad for {team_id}, match {match_id}")
            if outside:
                xi = [pid for pid in xi if pid not in outside]

            roster = self.rosters.get(team_id)
            if roster:
                for pid in player_ids:
                    if pid not in roster:
                        self.report.warn("SQUAD_ROSTER", f"Squad player {pid} not in team {team_id} roster for match {match_id}")
                self.report.ok()
            else:
                self.report.ambiguity(
                    "squad_roster", f"No roster for team {team_id}; cannot check squad subset", team_id=team_id
                )

            for pid in player_ids:
                if pid in self.players:
                    self.report.ok()
                else:
                    self.report.warn("SQUAD_PLAYER_MISSING", f"Player {pid} in squad for {match_id} not in player registry")

            squads.append(Squad(
                match_id=match_id,
                team_id=team_id,
                player_ids=tuple(player_ids),
                playing_xi=tuple(xi),
                is_final=bool(first_present(raw, "isFinal", "is_final", "confirmed")),
            ))

        if len(squads) != 2:
            self.report.warn("SQUAD_COUNT", f"Match {match_id} has {len(squads)} squads, expected 2")
        else:
            self.report.ok()
            team_ids = {s.team_id for s in squads}
            for team in match.teams:
                if team not in team_ids:
                    self.report.warn("SQUAD_TEAM_MISMATCH", f"Match {match_id} team {team} has no squad")

        self.squads[match_id] = squads

    def ingest_questions(self, match_id: str, raw_questions: Iterable[Mapping[str, Any]]) -> None:
        match = self.matches.get(match_id)
        if match is None:
            self.report.warn("QUESTION", f"Cannot ingest questions: match {match_id} not found")
            return
        eligible: Set[str] = set()
        for squad in self.squads.get(match_id, []):
            eligible.update(squad.player_ids)

        for raw in as_list(raw_questions):
            question_id = as_text(first_present(raw, "question_id", "questionId", "id"))
            if not question_id:
                self.report.warn("QUESTION", f"Question without ID for {match_id}, skipped")
                continue

            options: List[Option] = []
            for raw_opt in as_list(raw.get("options")):
                opt = normalize_option(raw_opt) if isinstance(raw_opt, Mapping) else None
                if opt is None:
                    self.report.warn("OPTION", f"Unreadable option on {question_id}", question_id=question_id)
                    continue
                options.append(opt)

            bad = [
                o.option_id for o in options
                if (o.kind == "TEAM" and o.reference_id not in match.teams)
                or (o.kind == "PLAYER" and o.reference_id not in eligible)
            ]
            if bad:
                self.report.warn(
                    "OPTION_REFERENCE",
                    f"Question {question_id} has options pointing outside the match: {bad}",
                    question_id=question_id,
                )
                continue

            kind = as_text(first_present(raw, "question_type", "kind", "type"), "CUSTOM").upper()
            if kind == "WINNER":
                kind = "MATCH_WINNER"
            try:
                question = Question(
                    question_id=question_id,
                    match_id=match_id,
                    question_type=kind,  # type: ignore[arg-type]
                    text=as_text(raw.get("text"), question_id),
                    options=tuple(options),
                    points_correct=int(first_present(raw, "points", "points_correct") or 0),
                    points_wrong=int(first_present(raw, "points_wrong", "pointsWrong") or 0),
                )
            except (EngineError, ValueError, TypeError) as e:
                self.report.warn("QUESTION", f"Question {question_id} rejected: {e}", question_id=question_id)
                continue
            self.questions[question_id] = question
            self.report.ok()

    def summary(self) -> Dict[str, Any]:
        return {
            "players": len(self.players),
            "matches": len(self.matches),
            "squads": {mid: len(s) for mid, s in sorted(self.squads.items())},
            "questions": len(self.questions),
            "report": self.report.summary(),
        }


def shadow_ingest(payload: Mapping[str, Any]) -> ShadowIngestor:
    """
    One shadow pass over a feed payload:
      {"teams": [...], "players": [...], "matches": [...],
       "squads": {match_id: [...]}, "questions": {match_id: [...]}}
    """
    ingestor = ShadowIngestor()
    ingestor.ingest_teams(payload.get("teams") or [])
    ingestor.ingest_players(payload.get("players") or [])
    ingestor.ingest_matches(payload.get("matches") or [])
    for match_id, raw_squads in (payload.get("squads") or {}).items():
        ingestor.ingest_squads(match_id, raw_squads)
    for match_id, raw_questions in (payload.get("questions") or {}).items():
        ingestor.ingest_questions(match_id, raw_questions)

    logger.info(
        "Shadow ingest: %d match(es), %d player(s), %d warning(s)",
        len(ingestor.matches),
        len(ingestor.players),
        len(ingestor.report.warnings),
    )
    return ingestor
