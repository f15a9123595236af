# pickem_api/engine.py
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pickem_api import config
from pickem_api.audit import AuditRecord, ReplayResult, audit_id_for, record, replay
from pickem_api.bet_scoring import (
    BetEntry,
    QuestionOutcome,
    ScoringInputs,
    parse_runs_guess,
    score_match,
    tournament_points,
)
from pickem_api.errors import (
    AlreadyFinalizedError,
    BetLockedError,
    BettingClosedError,
    DuplicateEntityError,
    IneligiblePlayerError,
    InvalidAnswerError,
    InvalidCorrectOptionError,
    InvalidPickError,
    InvalidRunnerError,
    InvalidScoringConfigError,
    MatchNotSettledError,
    MatchNotUpcomingError,
    MissingResultError,
    MissingUserError,
    NotFoundError,
    QuestionAlreadyResolvedError,
    QuestionLockedError,
    QuestionsAlreadyGeneratedError,
    SquadFinalError,
    SquadMismatchError,
    StatsAlreadyRecordedError,
    ValidationError,
)
from pickem_api.leaderboard import ScoredBet, compute_leaderboard
from pickem_api.lifecycle import (
    Transition,
    check_match_transition,
    check_question_transition,
    is_terminal,
    plan_transitions,
)
from pickem_api.models import (
    Bet,
    Group,
    Match,
    MatchResult,
    Player,
    PlayerMatchStat,
    Question,
    Squad,
    TournamentBet,
    as_utc,
)
from pickem_api.multipliers import MatchScoringConfig
from pickem_api.questions import build_side_question, check_squads, eligible_player_ids, generate_questions
from pickem_api.store import (
    AUDITS,
    BETS,
    CLOCKS,
    CONFIGS,
    GROUPS,
    MATCHES,
    PLAYERS,
    QUESTIONS,
    RESULTS,
    SCORES,
    SQUADS,
    TOURNAMENT_BETS,
    TOURNAMENT_SCORES,
    MemoryStore,
    key_prefix,
    make_key,
)

logger = logging.getLogger(__name__)

QUESTION_INDEX = "question_index"
# Own namespace so no match id can share the tournament index
TOURNAMENT_INDEX = "tournament_question_index"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Engine:
    """
    Match / question / bet lifecycle and scoring over an explicit store.

    Every mutating call runs under one re-entrant lock, so the
    UPCOMING -> LIVE cascade (questions locked, squads final, bets locked)
    is a single step from the point of view of a concurrent submit_bet.
    """

    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        duration_minutes: int = config.MATCH_DURATION_MINUTES,
    ) -> None:
        self.store = store if store is not None else MemoryStore()
        self._clock = clock
        self._duration_minutes = duration_minutes
        self._lock = threading.RLock()

    def _now(self) -> datetime:
        return as_utc(self._clock())

    # -----------------------------
    # Lookups
    # -----------------------------
    def get_match(self, match_id: str) -> Match:
        match = self.store.get(make_key(MATCHES, match_id))
        if match is None:
            raise NotFoundError(f"Match {match_id} not found", context={"match_id": match_id})
        return match

    def list_matches(self) -> List[Match]:
        return self.store.scan(key_prefix(MATCHES))

    def get_player(self, player_id: str) -> Player:
        player = self.store.get(make_key(PLAYERS, player_id))
        if player is None:
            raise NotFoundError(f"Player {player_id} not found", context={"player_id": player_id})
        return player

    def get_squads(self, match_id: str) -> List[Squad]:
        return self.store.scan(key_prefix(SQUADS, match_id))

    def get_question(self, question_id: str) -> Question:
        question = self.store.get(make_key(QUESTIONS, question_id))
        if question is None:
            raise NotFoundError(f"Question {question_id} not found", context={"question_id": question_id})
        return question

    @staticmethod
    def _question_index_key(match_id: Optional[str]) -> str:
        if match_id is None:
            return make_key(TOURNAMENT_INDEX, "all")
        return make_key(QUESTION_INDEX, match_id)

    def list_questions(self, match_id: str) -> List[Question]:
        ids = self.store.get(self._question_index_key(match_id)) or []
        return [self.get_question(qid) for qid in ids]

    def list_tournament_questions(self) -> List[Question]:
        ids = self.store.get(self._question_index_key(None)) or []
        return [self.get_question(qid) for qid in ids]

    def get_tournament_bet(self, user_id: str) -> Optional[TournamentBet]:
        return self.store.get(make_key(TOURNAMENT_BETS, user_id))

    def list_tournament_bets(self) -> List[TournamentBet]:
        return self.store.scan(key_prefix(TOURNAMENT_BETS))

    def get_bet(self, match_id: str, user_id: str) -> Optional[Bet]:
        return self.store.get(make_key(BETS, match_id, user_id))

    def list_bets(self, match_id: str) -> List[Bet]:
        return self.store.scan(key_prefix(BETS, match_id))

    def get_scoring_config(self, match_id: str) -> MatchScoringConfig:
        cfg = self.store.get(make_key(CONFIGS, match_id))
        return cfg if cfg is not None else MatchScoringConfig(match_id=match_id)

    def get_result(self, match_id: str) -> Optional[MatchResult]:
        return self.store.get(make_key(RESULTS, match_id))

    def _bet_key(self, match_id: str, user_id: str) -> str:
        return make_key(BETS, match_id, user_id)

    # -----------------------------
    # Match facts (ingestion / admin)
    # -----------------------------
    def register_player(self, player: Player) -> Player:
        with self._lock:
            self.store.put(make_key(PLAYERS, player.player_id), player)
            return player

    def register_match(
        self,
        match: Match,
        squads: Sequence[Squad] = (),
        players: Iterable[Player] = (),
    ) -> Match:
        with self._lock:
            if self.store.get(make_key(MATCHES, match.match_id)) is not None:
                raise DuplicateEntityError(
                    f"Match {match.match_id} is already registered",
                    context={"match_id": match.match_id},
                )
            if match.status != "UPCOMING":
                raise MatchNotUpcomingError(
                    f"New matches must start UPCOMING, got {match.status}",
                    context={"match_id": match.match_id},
                )
            if squads:
                check_squads(match, squads)

            for player in players:
                self.register_player(player)
            self.store.put(make_key(MATCHES, match.match_id), match)
            for squad in squads:
                self.store.put(make_key(SQUADS, match.match_id, squad.team_id), squad)

            logger.info("Registered match %s (%s vs %s)", match.match_id, match.team_a, match.team_b)
            return match

    def set_squads(self, match_id: str, squads: Sequence[Squad]) -> List[Squad]:
        with self._lock:
            match = self.get_match(match_id)
            existing = self.get_squads(match_id)
            if match.status != "UPCOMING" or any(s.is_final for s in existing):
                raise SquadFinalError(
                    f"Squads for {match_id} are final",
                    context={"match_id": match_id},
                )
            if self.store.get(make_key(QUESTION_INDEX, match_id)):
                raise QuestionsAlreadyGeneratedError(
                    f"Questions for {match_id} already reference the current squads",
                    context={"match_id": match_id},
                )
            check_squads(match, squads)
            for squad in squads:
                self.store.put(make_key(SQUADS, match_id, squad.team_id), squad)
            return list(squads)

    def configure_match(self, scoring_config: MatchScoringConfig) -> MatchScoringConfig:
        """
        Store a validated scoring config. Only while UPCOMING; OPEN questions
        pick up the new point values.
        """
        with self._lock:
            match = self.get_match(scoring_config.match_id)
            if match.status != "UPCOMING":
                raise MatchNotUpcomingError(
                    f"Match {match.match_id} is {match.status}; scoring config is frozen",
                    context={"match_id": match.match_id},
                )
            if scoring_config.slots().match_id != match.match_id:
                raise InvalidScoringConfigError(
                    "Slot config belongs to a different match",
                    context={"match_id": match.match_id},
                )

            self.store.put(make_key(CONFIGS, match.match_id), scoring_config)

            for q in self.list_questions(match.match_id):
                if q.status != "OPEN":
                    continue
                if q.question_type == "MATCH_WINNER":
                    q.points_correct = scoring_config.winner_base_points
                else:
                    q.points_correct, q.points_wrong = scoring_config.side_points(
                        q.question_type, q.points_correct, q.points_wrong
                    )

            logger.info("Configured scoring for %s", match.match_id)
            return scoring_config

    # -----------------------------
    # Questions
    # -----------------------------
    def _store_questions(self, match_id: Optional[str], questions: Sequence[Question]) -> None:
        index_key = self._question_index_key(match_id)
        ids: List[str] = list(self.store.get(index_key) or [])
        for q in questions:
            if self.store.get(make_key(QUESTIONS, q.question_id)) is not None:
                raise DuplicateEntityError(
                    f"Question {q.question_id} already exists",
                    context={"question_id": q.question_id},
                )
        for q in questions:
            self.store.put(make_key(QUESTIONS, q.question_id), q)
            ids.append(q.question_id)
        self.store.put(index_key, ids)

    def generate_questions(self, match_id: str) -> List[Question]:
        with self._lock:
            match = self.get_match(match_id)
            if match.status != "UPCOMING":
                raise MatchNotUpcomingError(
                    f"Match {match_id} is {match.status}; questions can only be generated before it starts",
                    context={"match_id": match_id},
                )
            if self.store.get(make_key(QUESTION_INDEX, match_id)):
                raise QuestionsAlreadyGeneratedError(
                    f"Questions for {match_id} were already generated",
                    context={"match_id": match_id},
                )

            squads = self.get_squads(match_id)
            players: Dict[str, Player] = {}
            for squad in squads:
                for pid in squad.player_ids:
                    player = self.store.get(make_key(PLAYERS, pid))
                    if player is not None:
                        players[pid] = player

            questions = generate_questions(match, squads, players, self.get_scoring_config(match_id))
            self._store_questions(match_id, questions)
            logger.info("Generated %d questions for %s", len(questions), match_id)
            return questions

    def add_side_question(
        self,
        match_id: str,
        slug: str,
        text: str,
        labels: Sequence[str],
        *,
        points_correct: int = config.DEFAULT_SIDE_BET_POINTS,
        points_wrong: int = config.DEFAULT_SIDE_BET_POINTS_WRONG,
    ) -> Question:
        with self._lock:
            match = self.get_match(match_id)
            if match.status != "UPCOMING":
                raise MatchNotUpcomingError(
                    f"Match {match_id} is {match.status}; side questions are closed",
                    context={"match_id": match_id},
                )
            question = build_side_question(
                match, slug, text, labels, points_correct=points_correct, points_wrong=points_wrong
            )
            self._store_questions(match_id, [question])
            return question

    def add_tournament_question(self, question: Question) -> Question:
        """Tournament-long question (match_id None), locked and resolved by hand."""
        with self._lock:
            if not question.is_tournament:
                raise ValidationError(
                    "Tournament questions must not belong to a match",
                    context={"question_id": question.question_id},
                )
            self._store_questions(None, [question])
            return question

    def lock_tournament_question(self, question_id: str) -> Question:
        with self._lock:
            question = self.get_question(question_id)
            if not question.is_tournament:
                raise ValidationError(
                    f"Question {question_id} belongs to match {question.match_id}; it locks with the match",
                    context={"question_id": question_id},
                )
            check_question_transition(question, "LOCKED")
            question.status = "LOCKED"
            logger.info("Locked tournament question %s", question_id)
            return question

    def submit_tournament_bet(self, user_id: str, answers: Mapping[str, str]) -> Dict[str, Any]:
        """
        Upsert long-term answers. Each answer can change until its own
        question locks; answers to already locked questions stay as they were.
        """
        with self._lock:
            if not user_id or not str(user_id).strip():
                raise MissingUserError("A user id is required to place a bet")
            if not answers:
                raise InvalidAnswerError("At least one tournament answer is required", context={"user_id": user_id})

            clean: Dict[str, str] = {}
            for question_id, option_id in answers.items():
                question = self.store.get(make_key(QUESTIONS, question_id))
                if question is None or not question.is_tournament:
                    raise InvalidAnswerError(
                        f"Question {question_id} is not a tournament question",
                        context={"question_id": question_id},
                    )
                if question.status != "OPEN":
                    raise QuestionLockedError(
                        f"Question {question_id} is {question.status}",
                        context={"question_id": question_id},
                    )
                if not question.has_option(option_id):
                    raise InvalidAnswerError(
                        f"Option {option_id!r} is not valid for question {question_id}",
                        context={"question_id": question_id, "option_id": option_id},
                    )
                clean[question_id] = option_id

            existing = self.get_tournament_bet(user_id)
            merged = dict(existing.answers) if existing is not None else {}
            merged.update(clean)
            bet = TournamentBet(user_id=user_id, answers=merged, updated_at=self._now())
            self.store.put(make_key(TOURNAMENT_BETS, user_id), bet)

            logger.info("Accepted tournament bet from %s (%d answer(s))", user_id, len(clean))
            return {"accepted": True, "updated_at": bet.updated_at.isoformat()}

    def _score_tournament_question(self, question: Question) -> Dict[str, int]:
        answers = {
            bet.user_id: bet.answers[question.question_id]
            for bet in self.list_tournament_bets()
            if question.question_id in bet.answers
        }
        scores = tournament_points(QuestionOutcome.from_question(question), answers)
        self.store.put(make_key(TOURNAMENT_SCORES, question.question_id), {
            "question_id": question.question_id,
            "per_user_scores": scores,
        })
        logger.info("Scored tournament question %s: %d answer(s)", question.question_id, len(scores))
        return scores

    # -----------------------------
    # Bets
    # -----------------------------
    def _validate_answers(self, match: Match, answers: Mapping[str, str]) -> Dict[str, str]:
        by_id = {q.question_id: q for q in self.list_questions(match.match_id)}
        clean: Dict[str, str] = {}
        for question_id, option_id in answers.items():
            question = by_id.get(question_id)
            if question is None:
                raise InvalidAnswerError(
                    f"Question {question_id} does not exist for match {match.match_id}",
                    context={"question_id": question_id},
                )
            if question.status != "OPEN":
                raise QuestionLockedError(
                    f"Question {question_id} is {question.status}",
                    context={"question_id": question_id},
                )
            if not question.has_option(option_id):
                raise InvalidAnswerError(
                    f"Option {option_id!r} is not valid for question {question_id}",
                    context={"question_id": question_id, "option_id": option_id},
                )
            clean[question_id] = option_id
        return clean

    def _validate_picks(self, match: Match, picks: Mapping[Any, str]) -> Dict[int, str]:
        eligible = eligible_player_ids(self.get_squads(match.match_id))
        clean: Dict[int, str] = {}
        for slot, player_id in picks.items():
            if isinstance(slot, bool) or not isinstance(slot, int) or not 1 <= slot <= config.SLOT_COUNT:
                raise InvalidPickError(
                    f"Pick slot must be an integer between 1 and {config.SLOT_COUNT}, got {slot!r}",
                    context={"slot": slot},
                )
            if player_id not in eligible:
                raise IneligiblePlayerError(
                    f"Player {player_id} is not in either squad for {match.match_id}",
                    context={"slot": slot, "player_id": player_id},
                )
            clean[slot] = player_id
        return clean

    def _validate_runners(self, match_id: str, user_id: str, runner_user_ids: Sequence[str]) -> tuple:
        runner_count = self.get_scoring_config(match_id).runner_count
        runners = tuple(runner_user_ids)
        if len(runners) > runner_count:
            raise InvalidRunnerError(
                f"At most {runner_count} runner(s) allowed for {match_id}, got {len(runners)}",
                context={"match_id": match_id},
            )
        for runner_id in runners:
            if not runner_id or not str(runner_id).strip():
                raise InvalidRunnerError("Runner user id must be non-empty", context={"match_id": match_id})
            if runner_id == user_id:
                raise InvalidRunnerError("A user cannot pick themselves as a runner", context={"user_id": user_id})
        if len(set(runners)) != len(runners):
            raise InvalidRunnerError("Duplicate runner picks", context={"runners": list(runners)})
        return runners

    def submit_bet(
        self,
        match_id: str,
        user_id: str,
        answers: Optional[Mapping[str, str]] = None,
        *,
        player_picks: Optional[Mapping[Any, str]] = None,
        total_runs_guess: Any = None,
        runner_user_ids: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """
        Create or replace the user's bet while the match is UPCOMING.
        Everything is validated before the store is touched, so a rejected
        submission leaves any earlier bet as it was.
        """
        with self._lock:
            if not user_id or not str(user_id).strip():
                raise MissingUserError("A user id is required to place a bet")

            match = self.get_match(match_id)
            existing = self.get_bet(match_id, user_id)
            if existing is not None and existing.is_locked:
                logger.warning("Rejected bet from %s on %s: bet locked", user_id, match_id)
                raise BetLockedError(
                    f"Bet for {user_id} on {match_id} is locked",
                    context={"match_id": match_id, "user_id": user_id},
                )
            if match.status != "UPCOMING":
                logger.warning("Rejected bet from %s on %s: match %s", user_id, match_id, match.status)
                raise BettingClosedError(
                    f"Betting on {match_id} is closed ({match.status})",
                    context={"match_id": match_id, "status": match.status},
                )

            bet = Bet(
                user_id=user_id,
                match_id=match_id,
                submitted_at=self._now(),
                answers=self._validate_answers(match, answers or {}),
                player_picks=self._validate_picks(match, player_picks or {}),
                # Stored as an int or None so the audit snapshot always serializes
                total_runs_guess=parse_runs_guess(total_runs_guess),
                runner_user_ids=self._validate_runners(match_id, user_id, runner_user_ids),
            )
            self.store.put(self._bet_key(match_id, user_id), bet)

            logger.info("Accepted bet from %s on %s", user_id, match_id)
            return {"accepted": True, "submitted_at": bet.submitted_at.isoformat()}

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def _lock_everything(self, match: Match, at: datetime) -> None:
        """Questions OPEN -> LOCKED, squads final, bets locked: one step."""
        for question in self.list_questions(match.match_id):
            if question.status == "OPEN":
                check_question_transition(question, "LOCKED")
                question.status = "LOCKED"
        for squad in self.get_squads(match.match_id):
            squad.is_final = True
        for bet in self.list_bets(match.match_id):
            bet.lock(at)

    def _apply(self, match: Match, step: Transition) -> None:
        check_match_transition(match.match_id, match.status, step.to_status)
        if step.from_status == "UPCOMING":
            match.locked_at = step.at
            self._lock_everything(match, step.at)
        match.status = step.to_status  # type: ignore[assignment]
        logger.info("Match %s: %s -> %s at %s", match.match_id, step.from_status, step.to_status, step.at.isoformat())

    def advance_match(self, match_id: str, to_timestamp: datetime) -> List[Dict[str, Any]]:
        """Move the match's logical clock forward; earlier times are a no-op."""
        with self._lock:
            match = self.get_match(match_id)
            clock_key = make_key(CLOCKS, match_id)
            clock = self.store.get(clock_key)

            steps = plan_transitions(
                match, to_timestamp, clock=clock, duration_minutes=self._duration_minutes
            )
            for step in steps:
                self._apply(match, step)

            target = as_utc(to_timestamp)
            if clock is None or target > clock:
                self.store.put(clock_key, target)
            return [s.to_dict() for s in steps]

    def _settle_void(self, match: Match, target: str, reason: Optional[str]) -> List[Dict[str, Any]]:
        check_match_transition(match.match_id, match.status, target)
        now = self._now()
        step = Transition(match.match_id, match.status, target, now)
        # From UPCOMING this also runs the lock cascade
        self._apply(match, step)
        if reason:
            match.result = reason
        if self.store.get(make_key(RESULTS, match.match_id)) is not None:
            logger.info("Clearing recorded stats for %s", match.match_id)
        self.store.delete(make_key(RESULTS, match.match_id))
        return [step.to_dict()]

    def abandon_match(self, match_id: str, reason: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return self._settle_void(self.get_match(match_id), "ABANDONED", reason or "Match abandoned")

    def declare_no_result(self, match_id: str, reason: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return self._settle_void(self.get_match(match_id), "NO_RESULT", reason or "No result")

    # -----------------------------
    # Results & resolution
    # -----------------------------
    def record_result(
        self,
        match_id: str,
        total_runs: Optional[int],
        player_stats: Iterable[PlayerMatchStat],
        *,
        result_text: Optional[str] = None,
    ) -> MatchResult:
        """Write-once stats for a COMPLETED match. Identical re-writes are a no-op."""
        with self._lock:
            match = self.get_match(match_id)
            if match.status != "COMPLETED":
                raise MatchNotSettledError(
                    f"Results can only be recorded for COMPLETED matches; {match_id} is {match.status}",
                    context={"match_id": match_id, "status": match.status},
                )
            if total_runs is not None and (
                isinstance(total_runs, bool) or not isinstance(total_runs, int) or total_runs < 0
            ):
                raise ValidationError(
                    f"total_runs must be a non-negative integer, got {total_runs!r}",
                    context={"match_id": match_id},
                )

            eligible = eligible_player_ids(self.get_squads(match_id))
            stats: Dict[str, PlayerMatchStat] = {}
            for s in player_stats:
                if s.match_id != match_id:
                    raise SquadMismatchError(
                        f"Stats for {s.player_id} belong to match {s.match_id}",
                        context={"match_id": match_id, "player_id": s.player_id},
                    )
                if s.player_id not in eligible:
                    raise SquadMismatchError(
                        f"Player {s.player_id} is not in either squad for {match_id}",
                        context={"match_id": match_id, "player_id": s.player_id},
                    )
                if s.player_id in stats:
                    raise ValidationError(
                        f"Duplicate stats for player {s.player_id}",
                        context={"match_id": match_id, "player_id": s.player_id},
                    )
                stats[s.player_id] = s

            existing = self.get_result(match_id)
            if existing is not None:
                if existing.total_runs == total_runs and existing.player_stats == stats:
                    return existing
                raise StatsAlreadyRecordedError(
                    f"Stats for {match_id} were already recorded",
                    context={"match_id": match_id},
                )

            result = MatchResult(
                match_id=match_id,
                total_runs=total_runs,
                player_stats=stats,
                recorded_at=self._now(),
            )
            self.store.put(make_key(RESULTS, match_id), result)
            if result_text:
                match.result = result_text
            logger.info("Recorded result for %s (%d player rows)", match_id, len(stats))
            return result

    def resolve_question(self, question_id: str, correct_option_id: str) -> Question:
        with self._lock:
            question = self.get_question(question_id)
            if question.status == "RESOLVED":
                raise QuestionAlreadyResolvedError(
                    f"Question {question_id} is already resolved",
                    context={"question_id": question_id},
                )

            if question.is_tournament:
                if question.status != "LOCKED":
                    raise MatchNotSettledError(
                        f"Tournament question {question_id} must be locked before it is resolved",
                        context={"question_id": question_id},
                    )
            else:
                match = self.get_match(question.match_id)
                if not is_terminal(match.status):
                    raise MatchNotSettledError(
                        f"Question {question_id} cannot be resolved while {match.match_id} is {match.status}",
                        context={"question_id": question_id, "status": match.status},
                    )

            if not question.has_option(correct_option_id):
                raise InvalidCorrectOptionError(
                    f"Option {correct_option_id!r} is not one of question {question_id}'s options",
                    context={"question_id": question_id, "option_id": correct_option_id},
                )

            check_question_transition(question, "RESOLVED")
            question.status = "RESOLVED"
            question.correct_option_id = correct_option_id
            question.resolved_at = self._now()
            logger.info("Resolved %s -> %s", question_id, correct_option_id)
            if question.is_tournament:
                self._score_tournament_question(question)
            return question

    # -----------------------------
    # Finalization & audit
    # -----------------------------
    def build_scoring_inputs(self, match_id: str) -> ScoringInputs:
        match = self.get_match(match_id)
        cfg = self.get_scoring_config(match_id)
        result = self.get_result(match_id)
        return ScoringInputs(
            match_id=match_id,
            match_status=match.status,
            rule_version=cfg.rule_version,
            scoring_config=cfg,
            questions=tuple(QuestionOutcome.from_question(q) for q in self.list_questions(match_id)),
            bets=tuple(BetEntry.from_bet(b) for b in self.list_bets(match_id)),
            total_runs=result.total_runs if result else None,
            player_stats=dict(result.player_stats) if result else {},
        )

    def finalize_match(self, match_id: str) -> Dict[str, Any]:
        with self._lock:
            match = self.get_match(match_id)
            if not is_terminal(match.status):
                raise MatchNotSettledError(
                    f"Match {match_id} is {match.status}; only finished matches can be finalized",
                    context={"match_id": match_id, "status": match.status},
                )
            if self.store.get(make_key(SCORES, match_id)) is not None:
                raise AlreadyFinalizedError(
                    f"Match {match_id} was already finalized",
                    context={"match_id": match_id},
                )
            if match.status == "COMPLETED" and self.get_result(match_id) is None:
                raise MissingResultError(
                    f"Record the result for {match_id} before finalizing",
                    context={"match_id": match_id},
                )

            inputs = self.build_scoring_inputs(match_id)
            outputs = score_match(inputs)

            seq = len([a for a in self.store.log(AUDITS) if a.match_id == match_id]) + 1
            audit = record(audit_id_for(match_id, seq), inputs, outputs, inputs.rule_version, self._now())
            self.store.append(AUDITS, audit)

            scores: Dict[str, int] = outputs["per_user_scores"]
            for bet in self.list_bets(match_id):
                bet.score = scores.get(bet.user_id, 0)
            self.store.put(make_key(SCORES, match_id), {
                "match_id": match_id,
                "is_void": match.is_void,
                "per_user_scores": dict(scores),
                "audit_id": audit.audit_id,
            })

            logger.info("Finalized %s: %d bet(s), void=%s, audit=%s", match_id, len(scores), match.is_void, audit.audit_id)
            return {
                "match_id": match_id,
                "status": match.status,
                "is_abandoned": match.is_void,
                "per_user_scores": dict(scores),
                "audit_id": audit.audit_id,
            }

    def list_audits(self, match_id: Optional[str] = None) -> List[AuditRecord]:
        records: List[AuditRecord] = self.store.log(AUDITS)
        if match_id is None:
            return records
        return [r for r in records if r.match_id == match_id]

    def get_audit(self, audit_id: str) -> AuditRecord:
        for r in self.store.log(AUDITS):
            if r.audit_id == audit_id:
                return r
        raise NotFoundError(f"Audit record {audit_id} not found", context={"audit_id": audit_id})

    def replay(self, audit: Union[str, AuditRecord]) -> ReplayResult:
        rec = self.get_audit(audit) if isinstance(audit, str) else audit
        return replay(rec)

    # -----------------------------
    # Leaderboard & groups
    # -----------------------------
    def scored_bets(self) -> List[ScoredBet]:
        out: List[ScoredBet] = []
        for row in self.store.scan(key_prefix(SCORES)):
            for user_id, score in sorted(row["per_user_scores"].items()):
                out.append(ScoredBet(user_id=user_id, match_id=row["match_id"], score=score, is_void=row["is_void"]))
        for row in self.store.scan(key_prefix(TOURNAMENT_SCORES)):
            for user_id, score in sorted(row["per_user_scores"].items()):
                out.append(ScoredBet(user_id=user_id, match_id=row["question_id"], score=score, counts_as_match=False))
        return out

    def get_leaderboard(self, scope: str = "global", scope_id: Optional[str] = None) -> List[dict]:
        with self._lock:
            scored = self.scored_bets()
            if scope == "global":
                return compute_leaderboard(scored)
            if scope == "group":
                if not scope_id:
                    raise ValidationError("Group leaderboards need a group id")
                return compute_leaderboard(scored, members=self.get_group(scope_id).members)
            raise ValidationError(f"Unknown leaderboard scope: {scope}", context={"scope": scope})

    def get_group(self, group_id: str) -> Group:
        group = self.store.get(make_key(GROUPS, group_id))
        if group is None:
            raise NotFoundError(f"Group {group_id} not found", context={"group_id": group_id})
        return group

    def create_group(self, group_id: str, name: str, created_by: str) -> Group:
        with self._lock:
            if not created_by or not str(created_by).strip():
                raise MissingUserError("A user id is required to create a group")
            if not group_id or not str(group_id).strip():
                raise ValidationError("group_id is required")
            if self.store.get(make_key(GROUPS, group_id)) is not None:
                raise DuplicateEntityError(f"Group {group_id} already exists", context={"group_id": group_id})
            group = Group(group_id=group_id, name=name, created_by=created_by, members={created_by})
            self.store.put(make_key(GROUPS, group_id), group)
            return group

    def join_group(self, group_id: str, user_id: str) -> Group:
        with self._lock:
            if not user_id or not str(user_id).strip():
                raise MissingUserError("A user id is required to join a group")
            group = self.get_group(group_id)
            group.members.add(user_id)
            return group
