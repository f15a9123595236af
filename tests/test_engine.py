# tests/test_engine.py
from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from conftest import KICKOFF, PLAYERS, make_match, make_squads, stat
from pickem_api.engine import Engine
from pickem_api.errors import (
    AlreadyAbandonedError,
    AlreadyFinalizedError,
    BetLockedError,
    BettingClosedError,
    DuplicateEntityError,
    EngineError,
    IllegalTransitionError,
    IneligiblePlayerError,
    InvalidAnswerError,
    InvalidCorrectOptionError,
    InvalidPickError,
    InvalidRunnerError,
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
from pickem_api.models import Option, Question
from pickem_api.multipliers import build_match_scoring_config

WINNER_Q = "q_wc_m1_match_winner"
TEAM_A = "opt_wc_m1_match_winner_teamA"
TEAM_B = "opt_wc_m1_match_winner_teamB"
AFTER_MATCH = KICKOFF + timedelta(hours=4)

RESULT_STATS = [
    stat("p_ind_1", runs=50, balls_faced=40, fours=4, sixes=2),  # 255
    stat("p_ind_3", wickets=3, balls_bowled=24, runs_conceded=20, catches=1),  # 165
]


def place_standard_bets(engine: Engine, match_id: str = "wc_m1") -> None:
    engine.submit_bet(
        match_id,
        "alice",
        {f"q_{match_id}_match_winner": f"opt_{match_id}_match_winner_teamA"},
        player_picks={1: "p_ind_1", 2: "p_ind_3"},
        total_runs_guess=315,
    )
    engine.submit_bet(
        match_id,
        "bob",
        {f"q_{match_id}_match_winner": f"opt_{match_id}_match_winner_teamB"},
        total_runs_guess=310,
    )


def play_and_finalize(engine: Engine) -> dict:
    place_standard_bets(engine)
    engine.advance_match("wc_m1", AFTER_MATCH)
    engine.record_result("wc_m1", 315, RESULT_STATS)
    engine.resolve_question(WINNER_Q, TEAM_A)
    return engine.finalize_match("wc_m1")


class TestRegistration:
    def test_register_and_lookup(self, ready_engine):
        assert ready_engine.get_match("wc_m1").status == "UPCOMING"
        assert [s.team_id for s in ready_engine.get_squads("wc_m1")] == ["AUS", "IND"]
        assert len(ready_engine.list_questions("wc_m1")) == 7

    def test_duplicate_match(self, ready_engine):
        with pytest.raises(DuplicateEntityError):
            ready_engine.register_match(make_match(), make_squads(), PLAYERS)

    def test_must_start_upcoming(self, engine):
        with pytest.raises(MatchNotUpcomingError):
            engine.register_match(make_match(status="LIVE"))

    def test_bad_squads(self, engine):
        with pytest.raises(SquadMismatchError):
            engine.register_match(make_match(), make_squads()[:1], PLAYERS)

    def test_unknown_match(self, engine):
        with pytest.raises(NotFoundError) as exc:
            engine.get_match("nope")
        assert exc.value.kind == "NOT_FOUND"

    def test_generate_once(self, ready_engine):
        with pytest.raises(QuestionsAlreadyGeneratedError):
            ready_engine.generate_questions("wc_m1")

    def test_squads_frozen_after_generation(self, ready_engine):
        with pytest.raises(QuestionsAlreadyGeneratedError):
            ready_engine.set_squads("wc_m1", make_squads())

    def test_configure_updates_open_questions(self, ready_engine):
        cfg = build_match_scoring_config(
            "wc_m1", winner_base_points=2000, side_bet_points={"TOSS_WINNER": (50, -10)}
        )
        ready_engine.configure_match(cfg)
        assert ready_engine.get_question(WINNER_Q).points_correct == 2000
        toss = ready_engine.get_question("q_wc_m1_toss_winner")
        assert (toss.points_correct, toss.points_wrong) == (50, -10)
        assert ready_engine.get_scoring_config("wc_m1").winner_base_points == 2000

    def test_side_question(self, ready_engine):
        q = ready_engine.add_side_question("wc_m1", "sixes", "Sixes in the match?", ["<10", "10+"], points_correct=200)
        assert q.question_id in [x.question_id for x in ready_engine.list_questions("wc_m1")]
        with pytest.raises(DuplicateEntityError):
            ready_engine.add_side_question("wc_m1", "sixes", "Again?", ["a", "b"])


class TestSubmitBet:
    def test_accepted(self, ready_engine, clock):
        out = ready_engine.submit_bet("wc_m1", "alice", {WINNER_Q: TEAM_A}, player_picks={1: "p_ind_1"})
        assert out == {"accepted": True, "submitted_at": clock.now.isoformat()}
        bet = ready_engine.get_bet("wc_m1", "alice")
        assert bet.answers == {WINNER_Q: TEAM_A}
        assert not bet.is_locked

    def test_resubmission_replaces(self, ready_engine):
        ready_engine.submit_bet("wc_m1", "alice", {WINNER_Q: TEAM_A})
        ready_engine.submit_bet("wc_m1", "alice", {WINNER_Q: TEAM_B})
        assert ready_engine.get_bet("wc_m1", "alice").answers == {WINNER_Q: TEAM_B}
        assert len(ready_engine.list_bets("wc_m1")) == 1

    @pytest.mark.parametrize(
        "kwargs,error",
        [
            ({"answers": {WINNER_Q: "opt_nope"}}, InvalidAnswerError),
            ({"answers": {"q_unknown": TEAM_A}}, InvalidAnswerError),
            ({"player_picks": {1: "p_eng_1"}}, IneligiblePlayerError),
            ({"player_picks": {12: "p_ind_1"}}, InvalidPickError),
            ({"player_picks": {0: "p_ind_1"}}, InvalidPickError),
            ({"runner_user_ids": ["bob"]}, InvalidRunnerError),
        ],
    )
    def test_rejected(self, ready_engine, kwargs, error):
        with pytest.raises(error) as exc:
            ready_engine.submit_bet("wc_m1", "alice", **kwargs)
        assert exc.value.kind == "VALIDATION"

    def test_rejection_keeps_previous_bet(self, ready_engine):
        ready_engine.submit_bet("wc_m1", "alice", {WINNER_Q: TEAM_A}, total_runs_guess=300)
        with pytest.raises(InvalidAnswerError):
            ready_engine.submit_bet("wc_m1", "alice", {WINNER_Q: "bogus"}, total_runs_guess=10)
        bet = ready_engine.get_bet("wc_m1", "alice")
        assert bet.answers == {WINNER_Q: TEAM_A}
        assert bet.total_runs_guess == 300

    def test_missing_user(self, ready_engine):
        with pytest.raises(MissingUserError):
            ready_engine.submit_bet("wc_m1", "  ", {WINNER_Q: TEAM_A})

    def test_unknown_match(self, ready_engine):
        with pytest.raises(NotFoundError):
            ready_engine.submit_bet("wc_m99", "alice")

    def test_runners(self, ready_engine):
        ready_engine.configure_match(build_match_scoring_config("wc_m1", runner_count=1))
        ready_engine.submit_bet("wc_m1", "alice", runner_user_ids=["bob"])
        with pytest.raises(InvalidRunnerError):
            ready_engine.submit_bet("wc_m1", "alice", runner_user_ids=["alice"])
        with pytest.raises(InvalidRunnerError):
            ready_engine.submit_bet("wc_m1", "alice", runner_user_ids=["bob", "carol"])

    def test_duplicate_picks_accepted(self, ready_engine):
        ready_engine.submit_bet("wc_m1", "alice", player_picks={1: "p_ind_1", 4: "p_ind_1"})
        assert ready_engine.get_bet("wc_m1", "alice").player_picks == {1: "p_ind_1", 4: "p_ind_1"}


class TestLockCascade:
    """UPCOMING -> LIVE locks questions, squads and bets in one step."""

    def test_everything_locks_at_kickoff(self, ready_engine):
        place_standard_bets(ready_engine)
        steps = ready_engine.advance_match("wc_m1", KICKOFF)
        assert [(s["from"], s["to"]) for s in steps] == [("UPCOMING", "LIVE")]

        match = ready_engine.get_match("wc_m1")
        assert match.status == "LIVE"
        assert match.locked_at == KICKOFF
        assert all(q.status == "LOCKED" for q in ready_engine.list_questions("wc_m1"))
        assert all(s.is_final for s in ready_engine.get_squads("wc_m1"))
        assert all(b.is_locked and b.locked_at == KICKOFF for b in ready_engine.list_bets("wc_m1"))

    def test_before_kickoff_nothing_moves(self, ready_engine):
        assert ready_engine.advance_match("wc_m1", KICKOFF - timedelta(seconds=1)) == []
        assert ready_engine.get_match("wc_m1").status == "UPCOMING"

    def test_bets_rejected_after_lock(self, ready_engine):
        place_standard_bets(ready_engine)
        ready_engine.advance_match("wc_m1", KICKOFF)
        with pytest.raises(BetLockedError) as exc:
            ready_engine.submit_bet("wc_m1", "alice", {WINNER_Q: TEAM_B})
        assert exc.value.kind == "STATE"
        with pytest.raises(BettingClosedError):
            ready_engine.submit_bet("wc_m1", "newcomer", {WINNER_Q: TEAM_B})
        assert ready_engine.get_bet("wc_m1", "alice").answers == {WINNER_Q: TEAM_A}

    def test_admin_changes_rejected_after_lock(self, ready_engine):
        ready_engine.advance_match("wc_m1", KICKOFF)
        with pytest.raises(MatchNotUpcomingError):
            ready_engine.configure_match(build_match_scoring_config("wc_m1"))
        with pytest.raises(SquadFinalError):
            ready_engine.set_squads("wc_m1", make_squads())

    def test_earlier_timestamp_is_noop(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        assert ready_engine.get_match("wc_m1").status == "COMPLETED"
        assert ready_engine.advance_match("wc_m1", KICKOFF + timedelta(minutes=5)) == []
        assert ready_engine.get_match("wc_m1").status == "COMPLETED"

    def test_concurrent_submissions_never_see_half_locked_state(self, ready_engine):
        errors = []

        def submit(user):
            try:
                ready_engine.submit_bet("wc_m1", user, {WINNER_Q: TEAM_A})
            except (BettingClosedError, BetLockedError):
                pass
            except EngineError as e:
                errors.append(e)

        threads = [threading.Thread(target=submit, args=(f"user{i}",)) for i in range(40)]
        for t in threads[:20]:
            t.start()
        ready_engine.advance_match("wc_m1", KICKOFF)
        for t in threads[20:]:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert all(b.is_locked for b in ready_engine.list_bets("wc_m1"))


class TestResolve:
    def test_only_after_match_ends(self, ready_engine):
        ready_engine.advance_match("wc_m1", KICKOFF)
        with pytest.raises(MatchNotSettledError):
            ready_engine.resolve_question(WINNER_Q, TEAM_A)

    def test_resolve_once(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        q = ready_engine.resolve_question(WINNER_Q, TEAM_A)
        assert q.status == "RESOLVED"
        assert q.correct_option_id == TEAM_A
        with pytest.raises(QuestionAlreadyResolvedError):
            ready_engine.resolve_question(WINNER_Q, TEAM_B)
        assert ready_engine.get_question(WINNER_Q).correct_option_id == TEAM_A

    def test_option_must_belong_to_question(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        with pytest.raises(InvalidCorrectOptionError):
            ready_engine.resolve_question(WINNER_Q, "opt_wc_m1_toss_winner_teamA")
        assert ready_engine.get_question(WINNER_Q).status == "LOCKED"

    def test_tournament_question(self, engine):
        q = Question(
            "q_cup_winner",
            None,
            "CUSTOM",
            "Who wins the cup?",
            (Option("cup_ind", "IND", "TEAM", "IND"), Option("cup_aus", "AUS", "TEAM", "AUS")),
            2000,
        )
        engine.add_tournament_question(q)
        with pytest.raises(MatchNotSettledError):
            engine.resolve_question("q_cup_winner", "cup_ind")
        engine.lock_tournament_question("q_cup_winner")
        assert engine.resolve_question("q_cup_winner", "cup_ind").status == "RESOLVED"


def cup_question(question_id: str = "q_cup_winner", points_wrong: int = 0) -> Question:
    return Question(
        question_id,
        None,
        "CUSTOM",
        "Who wins the cup?",
        (Option("cup_ind", "IND", "TEAM", "IND"), Option("cup_aus", "AUS", "TEAM", "AUS")),
        2000,
        points_wrong,
    )


class TestTournamentBets:
    """Long-term answers: upserted per question, frozen once it locks."""

    def test_upsert(self, engine, clock):
        engine.add_tournament_question(cup_question())
        engine.add_tournament_question(cup_question("q_cup_runner_up"))
        engine.submit_tournament_bet("alice", {"q_cup_winner": "cup_ind"})
        out = engine.submit_tournament_bet("alice", {"q_cup_runner_up": "cup_aus"})
        assert out == {"accepted": True, "updated_at": clock.now.isoformat()}
        assert engine.get_tournament_bet("alice").answers == {"q_cup_winner": "cup_ind", "q_cup_runner_up": "cup_aus"}

        engine.submit_tournament_bet("alice", {"q_cup_winner": "cup_aus"})
        assert engine.get_tournament_bet("alice").answers["q_cup_winner"] == "cup_aus"
        assert len(engine.list_tournament_bets()) == 1

    def test_locked_question_keeps_answer(self, engine):
        engine.add_tournament_question(cup_question())
        engine.submit_tournament_bet("alice", {"q_cup_winner": "cup_ind"})
        engine.lock_tournament_question("q_cup_winner")
        with pytest.raises(QuestionLockedError):
            engine.submit_tournament_bet("alice", {"q_cup_winner": "cup_aus"})
        with pytest.raises(QuestionLockedError):
            engine.submit_tournament_bet("bob", {"q_cup_winner": "cup_aus"})
        assert engine.get_tournament_bet("alice").answers == {"q_cup_winner": "cup_ind"}
        assert engine.get_tournament_bet("bob") is None

    @pytest.mark.parametrize(
        "user_id,answers,error",
        [
            ("", {"q_cup_winner": "cup_ind"}, MissingUserError),
            ("alice", {}, InvalidAnswerError),
            ("alice", {"q_cup_winner": "cup_eng"}, InvalidAnswerError),
            ("alice", {"q_unknown": "cup_ind"}, InvalidAnswerError),
            ("alice", {WINNER_Q: TEAM_A}, InvalidAnswerError),
        ],
    )
    def test_rejected(self, ready_engine, user_id, answers, error):
        ready_engine.add_tournament_question(cup_question())
        with pytest.raises(error):
            ready_engine.submit_tournament_bet(user_id, answers)
        assert ready_engine.list_tournament_bets() == []

    def test_resolved_answers_reach_the_leaderboard(self, ready_engine):
        ready_engine.add_tournament_question(cup_question(points_wrong=-100))
        ready_engine.submit_tournament_bet("alice", {"q_cup_winner": "cup_ind"})
        ready_engine.submit_tournament_bet("bob", {"q_cup_winner": "cup_aus"})
        play_and_finalize(ready_engine)

        ready_engine.lock_tournament_question("q_cup_winner")
        ready_engine.resolve_question("q_cup_winner", "cup_ind")
        board = ready_engine.get_leaderboard("global")
        assert [(r["user_id"], r["total_score"], r["matches_played"]) for r in board] == [
            ("alice", 8420, 1),
            ("bob", 400, 1),
        ]

    def test_tournament_only_player(self, engine):
        engine.add_tournament_question(cup_question())
        engine.submit_tournament_bet("carol", {"q_cup_winner": "cup_aus"})
        engine.lock_tournament_question("q_cup_winner")
        engine.resolve_question("q_cup_winner", "cup_aus")
        assert engine.get_leaderboard("global") == [
            {"rank": 1, "user_id": "carol", "total_score": 2000, "matches_played": 0},
        ]

    def test_match_named_tournament_has_its_own_questions(self, engine):
        engine.add_tournament_question(cup_question())
        engine.register_match(make_match("tournament"), make_squads("tournament"), PLAYERS)
        engine.generate_questions("tournament")
        assert [q.question_id for q in engine.list_tournament_questions()] == ["q_cup_winner"]
        assert len(engine.list_questions("tournament")) == 7
        assert all(q.match_id == "tournament" for q in engine.list_questions("tournament"))


class TestResults:
    def test_requires_completed(self, ready_engine):
        ready_engine.advance_match("wc_m1", KICKOFF)
        with pytest.raises(MatchNotSettledError):
            ready_engine.record_result("wc_m1", 315, RESULT_STATS)

    def test_write_once(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        first = ready_engine.record_result("wc_m1", 315, RESULT_STATS)
        assert ready_engine.record_result("wc_m1", 315, list(RESULT_STATS)) is first
        with pytest.raises(StatsAlreadyRecordedError):
            ready_engine.record_result("wc_m1", 316, RESULT_STATS)

    def test_players_must_be_in_squads(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        with pytest.raises(SquadMismatchError) as exc:
            ready_engine.record_result("wc_m1", 315, [stat("p_eng_1", runs=5)])
        assert exc.value.kind == "CONSISTENCY"

    def test_duplicate_rows(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        with pytest.raises(ValidationError):
            ready_engine.record_result("wc_m1", 315, [stat("p_ind_1"), stat("p_ind_1")])


class TestFinalize:
    def test_scores(self, ready_engine):
        out = play_and_finalize(ready_engine)
        # alice: winner 1000 + exact total 5000 + picks 255 + 165
        assert out["per_user_scores"] == {"alice": 6420, "bob": 500}
        assert out["is_abandoned"] is False
        assert out["audit_id"] == "AUDIT-wc_m1-001"
        assert ready_engine.get_bet("wc_m1", "alice").score == 6420

    def test_twice(self, ready_engine):
        play_and_finalize(ready_engine)
        with pytest.raises(AlreadyFinalizedError):
            ready_engine.finalize_match("wc_m1")

    def test_needs_finished_match(self, ready_engine):
        ready_engine.advance_match("wc_m1", KICKOFF)
        with pytest.raises(MatchNotSettledError):
            ready_engine.finalize_match("wc_m1")

    def test_needs_result(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        with pytest.raises(MissingResultError):
            ready_engine.finalize_match("wc_m1")

    def test_replay_of_finalized_match(self, ready_engine):
        out = play_and_finalize(ready_engine)
        assert ready_engine.replay(out["audit_id"]).matches

    def test_unusable_runs_guesses_score_zero(self, ready_engine):
        ready_engine.submit_bet("wc_m1", "alice", {WINNER_Q: TEAM_A}, total_runs_guess=float("nan"))
        ready_engine.submit_bet("wc_m1", "bob", {WINNER_Q: TEAM_B}, total_runs_guess={310, 315})
        ready_engine.submit_bet("wc_m1", "carol", {WINNER_Q: TEAM_B}, total_runs_guess="310")
        assert ready_engine.get_bet("wc_m1", "alice").total_runs_guess is None
        assert ready_engine.get_bet("wc_m1", "carol").total_runs_guess == 310

        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        ready_engine.record_result("wc_m1", 315, RESULT_STATS)
        ready_engine.resolve_question(WINNER_Q, TEAM_A)
        out = ready_engine.finalize_match("wc_m1")
        assert out["per_user_scores"] == {"alice": 1000, "bob": 0, "carol": 500}
        assert ready_engine.replay(out["audit_id"]).matches


class TestVoidMatches:
    def test_abandonment_zeroing(self, ready_engine):
        play_and_finalize(ready_engine)
        before = ready_engine.get_leaderboard("global")

        ready_engine.register_match(make_match("wc_mX"), make_squads("wc_mX"), PLAYERS)
        ready_engine.generate_questions("wc_mX")
        place_standard_bets(ready_engine, "wc_mX")
        ready_engine.submit_bet("wc_mX", "dave", total_runs_guess=200)
        ready_engine.advance_match("wc_mX", KICKOFF)
        ready_engine.abandon_match("wc_mX", "Rain")

        out = ready_engine.finalize_match("wc_mX")
        assert out["is_abandoned"] is True
        assert out["status"] == "ABANDONED"
        assert out["per_user_scores"] == {"alice": 0, "bob": 0, "dave": 0}
        assert ready_engine.get_leaderboard("global") == before

    def test_abandon_from_upcoming_locks(self, ready_engine):
        place_standard_bets(ready_engine)
        ready_engine.abandon_match("wc_m1")
        assert ready_engine.get_match("wc_m1").is_abandoned
        assert all(b.is_locked for b in ready_engine.list_bets("wc_m1"))
        assert all(q.status == "LOCKED" for q in ready_engine.list_questions("wc_m1"))

    def test_abandon_twice(self, ready_engine):
        ready_engine.abandon_match("wc_m1")
        with pytest.raises(AlreadyAbandonedError):
            ready_engine.abandon_match("wc_m1")

    def test_completed_cannot_be_abandoned(self, ready_engine):
        ready_engine.advance_match("wc_m1", AFTER_MATCH)
        with pytest.raises(IllegalTransitionError):
            ready_engine.abandon_match("wc_m1")

    def test_no_result(self, ready_engine):
        place_standard_bets(ready_engine)
        ready_engine.advance_match("wc_m1", KICKOFF)
        steps = ready_engine.declare_no_result("wc_m1")
        assert [(s["from"], s["to"]) for s in steps] == [("LIVE", "NO_RESULT")]
        out = ready_engine.finalize_match("wc_m1")
        assert out["per_user_scores"] == {"alice": 0, "bob": 0}
        assert ready_engine.get_leaderboard("global") == []

    def test_no_result_needs_live(self, ready_engine):
        with pytest.raises(IllegalTransitionError):
            ready_engine.declare_no_result("wc_m1")


class TestLeaderboardAndGroups:
    def test_deterministic(self, ready_engine):
        play_and_finalize(ready_engine)
        first = ready_engine.get_leaderboard("global")
        assert first == ready_engine.get_leaderboard("global")
        assert [(r["user_id"], r["total_score"]) for r in first] == [("alice", 6420), ("bob", 500)]

    def test_group_totals_match_global(self, ready_engine):
        play_and_finalize(ready_engine)
        ready_engine.create_group("g1", "Office", "bob")
        ready_engine.join_group("g1", "erin")
        global_totals = {r["user_id"]: r["total_score"] for r in ready_engine.get_leaderboard("global")}
        group = ready_engine.get_leaderboard("group", "g1")
        assert [r["user_id"] for r in group] == ["bob", "erin"]
        assert group[0]["total_score"] == global_totals["bob"]
        assert group[1]["total_score"] == 0

    def test_group_errors(self, engine):
        engine.create_group("g1", "Office", "bob")
        with pytest.raises(DuplicateEntityError):
            engine.create_group("g1", "Again", "alice")
        with pytest.raises(NotFoundError):
            engine.join_group("g2", "alice")
        with pytest.raises(MissingUserError):
            engine.join_group("g1", "")
        with pytest.raises(ValidationError):
            engine.get_leaderboard("league")
        with pytest.raises(ValidationError):
            engine.get_leaderboard("group")
