# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pickem_api.engine import Engine
from pickem_api.models import Match, Player, PlayerMatchStat, Squad

KICKOFF = datetime(2026, 3, 1, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


PLAYERS = [
    Player("p_ind_1", "Rohit Sharma", "BAT", "IND"),
    Player("p_ind_2", "Virat Kohli", "BAT", "IND"),
    Player("p_ind_3", "Jasprit Bumrah", "BOWL", "IND"),
    Player("p_ind_4", "Hardik Pandya", "AR", "IND"),
    Player("p_aus_1", "Travis Head", "BAT", "AUS"),
    Player("p_aus_2", "Steve Smith", "BAT", "AUS"),
    Player("p_aus_3", "Pat Cummins", "BOWL", "AUS"),
    Player("p_aus_4", "Glenn Maxwell", "AR", "AUS"),
]


def make_match(
    match_id: str = "wc_m1",
    team_a: str = "IND",
    team_b: str = "AUS",
    scheduled_time: datetime = KICKOFF,
    **kwargs,
) -> Match:
    return Match(match_id=match_id, team_a=team_a, team_b=team_b, scheduled_time=scheduled_time, **kwargs)


def make_squads(match_id: str = "wc_m1"):
    return [
        Squad(match_id, "IND", ("p_ind_1", "p_ind_2", "p_ind_3", "p_ind_4")),
        Squad(match_id, "AUS", ("p_aus_1", "p_aus_2", "p_aus_3", "p_aus_4")),
    ]


def stat(player_id: str, match_id: str = "wc_m1", **counts) -> PlayerMatchStat:
    return PlayerMatchStat(match_id=match_id, player_id=player_id, **counts)


@pytest.fixture
def clock():
    return FakeClock(KICKOFF - timedelta(days=1))


@pytest.fixture
def players():
    return {p.player_id: p for p in PLAYERS}


@pytest.fixture
def match():
    return make_match()


@pytest.fixture
def squads():
    return make_squads()


@pytest.fixture
def engine(clock):
    return Engine(clock=clock, duration_minutes=210)


@pytest.fixture
def ready_engine(engine):
    """Engine with wc_m1 registered and its questions generated."""
    engine.register_match(make_match(), make_squads(), PLAYERS)
    engine.generate_questions("wc_m1")
    return engine
