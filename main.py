# main.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pickem_api.config import LOG_LEVEL, validate_config
from pickem_api.engine import Engine
from pickem_api.errors import EngineError, NotFoundError
from pickem_api.ingestion import shadow_ingest
from pickem_api.models import Match, Option, Player, PlayerMatchStat, Question, Squad
from pickem_api.multipliers import build_match_scoring_config
from pickem_api.scorecard import merge_scorecard

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# -----------------------
# App
# -----------------------
app = FastAPI(
    title="Cricket Pick'em Scoring API",
    version="0.1.0",
    description="Match lifecycle, bets, deterministic scoring, leaderboards and audit replay for cricket predictions",
)

_engine = Engine()


def get_engine() -> Engine:
    return _engine


# Kind -> HTTP status
STATUS_BY_KIND: Dict[str, int] = {
    "VALIDATION": 400,
    "STATE": 409,
    "CONSISTENCY": 422,
    "NOT_FOUND": 404,
}


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError):
    status = STATUS_BY_KIND.get(exc.kind, 400)
    logger.warning("%s %s -> %d %s: %s", request.method, request.url.path, status, exc.code, exc.message)
    return JSONResponse(status_code=status, content={"detail": exc.to_dict()})


@app.on_event("startup")
def on_startup():
    validate_config()


@app.get("/health")
def health_check():
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


# -----------------------
# Matches
# -----------------------
class PlayerIn(BaseModel):
    player_id: str
    name: str
    role: Literal["BAT", "BOWL", "AR", "WK"] = "BAT"
    team_id: str


class SquadIn(BaseModel):
    team_id: str
    player_ids: List[str] = Field(default_factory=list)
    playing_xi: List[str] = Field(default_factory=list)


class MatchIn(BaseModel):
    match_id: str
    team_a: str
    team_b: str
    scheduled_time: datetime
    includes_super_over: bool = False
    squads: List[SquadIn] = Field(default_factory=list)
    players: List[PlayerIn] = Field(default_factory=list)


def _squads(match_id: str, squads: List[SquadIn]) -> List[Squad]:
    return [
        Squad(match_id=match_id, team_id=s.team_id, player_ids=s.player_ids, playing_xi=s.playing_xi)
        for s in squads
    ]


@app.post("/api/matches")
def register_match(req: MatchIn, engine: Engine = Depends(get_engine)):
    match = Match(
        match_id=req.match_id,
        team_a=req.team_a,
        team_b=req.team_b,
        scheduled_time=req.scheduled_time,
        includes_super_over=req.includes_super_over,
    )
    players = [Player(**p.model_dump()) for p in req.players]
    engine.register_match(match, _squads(req.match_id, req.squads), players)
    return match.to_dict()


@app.get("/api/matches")
def list_matches(engine: Engine = Depends(get_engine)):
    return {"matches": [m.to_dict() for m in engine.list_matches()]}


@app.get("/api/matches/{match_id}")
def get_match(match_id: str, engine: Engine = Depends(get_engine)):
    return {
        "match": engine.get_match(match_id).to_dict(),
        "squads": [s.to_dict() for s in engine.get_squads(match_id)],
    }


@app.put("/api/matches/{match_id}/squads")
def set_squads(match_id: str, squads: List[SquadIn], engine: Engine = Depends(get_engine)):
    saved = engine.set_squads(match_id, _squads(match_id, squads))
    return {"squads": [s.to_dict() for s in saved]}


class ScoringConfigIn(BaseModel):
    rule_version: Optional[str] = None
    winner_base_points: Optional[int] = None
    super_over_multiplier: Optional[float] = None
    total_runs_base_points: Optional[int] = None
    runner_count: Optional[int] = None
    slot_multipliers: Optional[Dict[str, Any]] = None
    disabled_slots: List[Any] = Field(default_factory=list)
    runner_multipliers: Optional[Dict[str, Any]] = None
    disabled_runner_slots: List[Any] = Field(default_factory=list)
    side_bet_points: Optional[Dict[str, List[int]]] = None


def _slot_keys(raw: Optional[Dict[str, Any]]) -> Optional[Dict[Any, Any]]:
    # JSON object keys arrive as strings; numeric ones are slot indices
    if raw is None:
        return None
    return {int(k) if k.strip().lstrip("-").isdigit() else k: v for k, v in raw.items()}


@app.put("/api/matches/{match_id}/config")
def configure_match(match_id: str, req: ScoringConfigIn, engine: Engine = Depends(get_engine)):
    kwargs: Dict[str, Any] = {
        k: v
        for k, v in req.model_dump().items()
        if v is not None and k not in ("slot_multipliers", "runner_multipliers", "side_bet_points")
    }
    if req.side_bet_points is not None:
        kwargs["side_bet_points"] = {k: tuple(v) for k, v in req.side_bet_points.items()}
    cfg = build_match_scoring_config(
        match_id,
        slot_multipliers=_slot_keys(req.slot_multipliers),
        runner_multipliers=_slot_keys(req.runner_multipliers),
        **kwargs,
    )
    return engine.configure_match(cfg).to_dict()


# -----------------------
# Questions
# -----------------------
@app.post("/api/matches/{match_id}/questions/generate")
def generate_questions(match_id: str, engine: Engine = Depends(get_engine)):
    return {"questions": [q.to_dict() for q in engine.generate_questions(match_id)]}


class SideQuestionIn(BaseModel):
    slug: str
    text: str
    labels: List[str] = Field(..., min_length=2)
    points_correct: Optional[int] = None
    points_wrong: Optional[int] = None


@app.post("/api/matches/{match_id}/questions/side")
def add_side_question(match_id: str, req: SideQuestionIn, engine: Engine = Depends(get_engine)):
    kwargs = {k: v for k, v in (("points_correct", req.points_correct), ("points_wrong", req.points_wrong)) if v is not None}
    return engine.add_side_question(match_id, req.slug, req.text, req.labels, **kwargs).to_dict()


@app.get("/api/matches/{match_id}/questions")
def list_questions(match_id: str, engine: Engine = Depends(get_engine)):
    return {"questions": [q.to_dict() for q in engine.list_questions(match_id)]}


class ResolveIn(BaseModel):
    correct_option_id: str


@app.post("/api/questions/{question_id}/resolve")
def resolve_question(question_id: str, req: ResolveIn, engine: Engine = Depends(get_engine)):
    return engine.resolve_question(question_id, req.correct_option_id).to_dict()


# -----------------------
# Bets
# -----------------------
class BetIn(BaseModel):
    user_id: str
    answers: Dict[str, str] = Field(default_factory=dict)
    player_picks: Dict[int, str] = Field(default_factory=dict)
    # Non-numeric strings are accepted and score 0
    total_runs_guess: Optional[Union[int, str]] = None
    runner_user_ids: List[str] = Field(default_factory=list)


@app.post("/api/matches/{match_id}/bets")
def submit_bet(match_id: str, req: BetIn, engine: Engine = Depends(get_engine)):
    return engine.submit_bet(
        match_id,
        req.user_id,
        req.answers,
        player_picks=req.player_picks,
        total_runs_guess=req.total_runs_guess,
        runner_user_ids=req.runner_user_ids,
    )


@app.get("/api/matches/{match_id}/bets")
def list_bets(match_id: str, engine: Engine = Depends(get_engine)):
    return {"bets": [b.to_dict() for b in engine.list_bets(match_id)]}


# -----------------------
# Tournament (long-term) questions & bets
# -----------------------
class OptionIn(BaseModel):
    option_id: str
    label: str
    kind: Literal["PLAYER", "TEAM", "OUTCOME"] = "OUTCOME"
    reference_id: Optional[str] = None


class TournamentQuestionIn(BaseModel):
    question_id: str
    question_type: Literal["TOP_SCORER", "TOP_WICKET_TAKER", "CUSTOM"] = "CUSTOM"
    text: str
    options: List[OptionIn] = Field(..., min_length=2)
    points_correct: int
    points_wrong: int = 0


class TournamentBetIn(BaseModel):
    user_id: str
    answers: Dict[str, str]


@app.post("/api/tournament/questions")
def add_tournament_question(req: TournamentQuestionIn, engine: Engine = Depends(get_engine)):
    question = Question(
        question_id=req.question_id,
        match_id=None,
        question_type=req.question_type,
        text=req.text,
        options=tuple(Option(o.option_id, o.label, o.kind, o.reference_id) for o in req.options),
        points_correct=req.points_correct,
        points_wrong=req.points_wrong,
    )
    return engine.add_tournament_question(question).to_dict()


@app.get("/api/tournament/questions")
def list_tournament_questions(engine: Engine = Depends(get_engine)):
    return {"questions": [q.to_dict() for q in engine.list_tournament_questions()]}


@app.post("/api/tournament/questions/{question_id}/lock")
def lock_tournament_question(question_id: str, engine: Engine = Depends(get_engine)):
    return engine.lock_tournament_question(question_id).to_dict()


@app.post("/api/tournament/bets")
def submit_tournament_bet(req: TournamentBetIn, engine: Engine = Depends(get_engine)):
    return engine.submit_tournament_bet(req.user_id, req.answers)


@app.get("/api/tournament/bets/{user_id}")
def get_tournament_bet(user_id: str, engine: Engine = Depends(get_engine)):
    bet = engine.get_tournament_bet(user_id)
    if bet is None:
        raise NotFoundError(f"No tournament bet for {user_id}", context={"user_id": user_id})
    return bet.to_dict()


# -----------------------
# Lifecycle
# -----------------------
class AdvanceIn(BaseModel):
    to_timestamp: datetime


class ReasonIn(BaseModel):
    reason: Optional[str] = None


@app.post("/api/matches/{match_id}/advance")
def advance_match(match_id: str, req: AdvanceIn, engine: Engine = Depends(get_engine)):
    transitions = engine.advance_match(match_id, req.to_timestamp)
    return {"match": engine.get_match(match_id).to_dict(), "transitions": transitions}


@app.post("/api/matches/{match_id}/abandon")
def abandon_match(match_id: str, req: ReasonIn, engine: Engine = Depends(get_engine)):
    transitions = engine.abandon_match(match_id, req.reason)
    return {"match": engine.get_match(match_id).to_dict(), "transitions": transitions}


@app.post("/api/matches/{match_id}/no-result")
def declare_no_result(match_id: str, req: ReasonIn, engine: Engine = Depends(get_engine)):
    transitions = engine.declare_no_result(match_id, req.reason)
    return {"match": engine.get_match(match_id).to_dict(), "transitions": transitions}


# -----------------------
# Results & finalization
# -----------------------
class ResultIn(BaseModel):
    total_runs: Optional[int] = Field(None, ge=0)
    player_stats: List[Dict[str, Any]] = Field(default_factory=list)
    result_text: Optional[str] = None


@app.post("/api/matches/{match_id}/result")
def record_result(match_id: str, req: ResultIn, engine: Engine = Depends(get_engine)):
    stats = [PlayerMatchStat.from_dict({"match_id": match_id, **s}) for s in req.player_stats]
    return engine.record_result(match_id, req.total_runs, stats, result_text=req.result_text).to_dict()


class ScorecardIn(BaseModel):
    total_runs: Optional[int] = Field(None, ge=0)
    batting: List[Dict[str, Any]] = Field(default_factory=list)
    bowling: List[Dict[str, Any]] = Field(default_factory=list)
    fielding: Optional[List[Dict[str, Any]]] = None
    man_of_match: Optional[str] = None
    result_text: Optional[str] = None


@app.post("/api/matches/{match_id}/scorecard")
def record_scorecard(match_id: str, req: ScorecardIn, engine: Engine = Depends(get_engine)):
    player_ids = sorted({pid for s in engine.get_squads(match_id) for pid in s.player_ids})
    players = [engine.get_player(pid) for pid in player_ids]
    stats = merge_scorecard(
        match_id, players, req.batting, req.bowling, req.fielding, man_of_match=req.man_of_match
    )
    result = engine.record_result(match_id, req.total_runs, stats.values(), result_text=req.result_text)
    return result.to_dict()


@app.post("/api/matches/{match_id}/finalize")
def finalize_match(match_id: str, engine: Engine = Depends(get_engine)):
    return engine.finalize_match(match_id)


# -----------------------
# Leaderboards & groups
# -----------------------
@app.get("/api/leaderboard")
def get_leaderboard(
    scope: Literal["global", "group"] = "global",
    scope_id: Optional[str] = None,
    engine: Engine = Depends(get_engine),
):
    return {"scope": scope, "scope_id": scope_id, "rows": engine.get_leaderboard(scope, scope_id)}


class GroupIn(BaseModel):
    group_id: str
    name: str
    created_by: str


class JoinIn(BaseModel):
    user_id: str


@app.post("/api/groups")
def create_group(req: GroupIn, engine: Engine = Depends(get_engine)):
    return engine.create_group(req.group_id, req.name, req.created_by).to_dict()


@app.post("/api/groups/{group_id}/join")
def join_group(group_id: str, req: JoinIn, engine: Engine = Depends(get_engine)):
    return engine.join_group(group_id, req.user_id).to_dict()


@app.get("/api/groups/{group_id}")
def get_group(group_id: str, engine: Engine = Depends(get_engine)):
    return engine.get_group(group_id).to_dict()


# -----------------------
# Audit & replay
# -----------------------
@app.get("/api/audits")
def list_audits(match_id: Optional[str] = None, engine: Engine = Depends(get_engine)):
    return {"audits": [a.to_dict() for a in engine.list_audits(match_id)]}


@app.get("/api/audits/{audit_id}")
def get_audit(audit_id: str, engine: Engine = Depends(get_engine)):
    return engine.get_audit(audit_id).to_dict()


@app.post("/api/audits/{audit_id}/replay")
def replay_audit(audit_id: str, engine: Engine = Depends(get_engine)):
    return engine.replay(audit_id).to_dict()


# -----------------------
# Shadow ingestion (read-only)
# -----------------------
@app.post("/api/ingest/shadow")
def ingest_shadow(payload: Dict[str, Any]):
    return shadow_ingest(payload).summary()
