# tests/test_scorecard.py
from __future__ import annotations

import pytest

from conftest import PLAYERS
from pickem_api.errors import InvalidOversError, UnmatchedPlayersError
from pickem_api.models import Player
from pickem_api.scorecard import NameMatcher, fielding_from_dismissals, merge_scorecard, normalize_name

BATTING = [
    {"batter": "Rohit Sharma", "R": 104, "B": 60, "4s": 10, "6s": 5, "dismissal": "c Smith b Cummins"},
    {"batter": "V. Kohli", "R": 12, "B": 9, "4s": 1, "6s": 0, "dismissal": "run out (Head/Maxwell)"},
    {"batter": "Hardik Pandya", "R": 20, "B": 10, "4s": 2, "6s": 1, "dismissal": "not out"},
    {"batter": "Travis Head", "R": 45, "B": 30, "4s": 6, "6s": 1, "dismissal": "c & b Bumrah"},
    {"batter": "Steve Smith", "R": 3, "B": 7, "4s": 0, "6s": 0, "dismissal": "c sub (Jadeja) b Pandya"},
]

BOWLING = [
    {"bowler": "Jasprit Bumrah", "O": "4.0", "R": 18, "W": 5, "hat_trick": True},
    {"bowler": "Pat Cummins", "O": "3.4", "R": 40, "W": 1},
    {"bowler": "Pat Cummins", "overs": "0.2", "runs": 2, "wickets": 0},
]


class TestNameMatching:
    """Scorecard names -> squad player ids."""

    def test_normalize(self):
        assert normalize_name("  M.S.  Dhoni ") == "ms dhoni"
        assert normalize_name("†Alex Carey (c)") == "alex carey"

    def test_match_order(self):
        matcher = NameMatcher(PLAYERS)
        assert matcher.match("Rohit Sharma") == "p_ind_1"
        assert matcher.match("V. Kohli") == "p_ind_2"
        assert matcher.match("Maxwell") == "p_aus_4"
        assert matcher.match("Jasprit") == "p_ind_3"
        assert matcher.match("Joe Root") is None

    def test_ambiguous_last_name(self):
        matcher = NameMatcher([
            Player("a", "Mitchell Marsh", "AR", "AUS"),
            Player("b", "Shaun Marsh", "BAT", "AUS"),
        ])
        assert matcher.match("Marsh") is None
        assert matcher.match("Shaun Marsh") == "b"


class TestDismissals:
    def test_fielding_credits(self):
        credits = fielding_from_dismissals(BATTING)
        assert credits == [
            {"name": "Smith", "catches": 1},
            {"name": "Head", "run_outs": 1},
            {"name": "Maxwell", "run_outs": 1},
            {"name": "Bumrah", "catches": 1},
        ]

    def test_stumping(self):
        assert fielding_from_dismissals([{"dismissal": "st †Carey b Zampa"}]) == [{"name": "Carey", "stumpings": 1}]


class TestMergeScorecard:
    def test_merge(self):
        stats = merge_scorecard("wc_m1", PLAYERS, BATTING, BOWLING, man_of_match="Jasprit Bumrah")

        rohit = stats["p_ind_1"]
        assert (rohit.runs, rohit.balls_faced, rohit.fours, rohit.sixes) == (104, 60, 10, 5)
        assert rohit.has_century

        bumrah = stats["p_ind_3"]
        assert (bumrah.wickets, bumrah.balls_bowled, bumrah.runs_conceded) == (5, 24, 18)
        assert bumrah.has_five_wicket_haul
        assert bumrah.has_hat_trick
        assert bumrah.is_man_of_match
        assert bumrah.catches == 1

        # Two spells summed, overs converted to balls first
        cummins = stats["p_aus_3"]
        assert (cummins.balls_bowled, cummins.runs_conceded, cummins.wickets) == (24, 42, 1)
        assert cummins.overs_bowled == "4.0"

        assert stats["p_aus_2"].catches == 1
        assert stats["p_aus_1"].run_outs == 1
        assert stats["p_aus_4"].run_outs == 1
        assert not stats["p_ind_4"].has_century
        assert all(s.match_id == "wc_m1" for s in stats.values())
        assert all(isinstance(s.runs, int) for s in stats.values())

    def test_explicit_fielding(self):
        stats = merge_scorecard(
            "wc_m1",
            PLAYERS,
            BATTING[:1],
            [],
            [{"fielder": "Steve Smith", "ct": 2}, {"fielder": "Steve Smith", "st": 1}],
        )
        assert (stats["p_aus_2"].catches, stats["p_aus_2"].stumpings) == (2, 1)
        assert set(stats) == {"p_ind_1", "p_aus_2"}

    def test_unmatched_names_listed_together(self):
        batting = BATTING + [{"batter": "Joe Root", "R": 1, "B": 1}]
        bowling = BOWLING + [{"bowler": "Mark Wood", "O": "1.0", "R": 9, "W": 0}]
        with pytest.raises(UnmatchedPlayersError) as exc:
            merge_scorecard("wc_m1", PLAYERS, batting, bowling, man_of_match="Ben Stokes")
        assert exc.value.context["unmatched"] == ["Ben Stokes", "Joe Root", "Mark Wood"]
        assert exc.value.kind == "CONSISTENCY"

    def test_empty_scorecard(self):
        assert merge_scorecard("wc_m1", PLAYERS, [], []) == {}

    def test_bad_overs(self):
        bowling = [{"bowler": "Jasprit Bumrah", "O": "abc", "R": 18, "W": 1}]
        with pytest.raises(InvalidOversError) as exc:
            merge_scorecard("wc_m1", PLAYERS, BATTING, bowling)
        assert exc.value.context["bowler"] == "Jasprit Bumrah"
