# pickem_api/player_scoring.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict

from pickem_api.cricket_math import economy_rate, round_points, strike_rate
from pickem_api.models import PlayerMatchStat
from pickem_api.rules import RuleSet, get_rule_set


@dataclass(frozen=True)
class BaseScoreBreakdown:
    run_points: float
    four_points: float
    six_points: float
    strike_rate_points: float

    wicket_points: float
    economy_points: float

    catch_points: float
    run_out_points: float
    stumping_points: float

    century_bonus: float
    five_wicket_haul_bonus: float
    hat_trick_bonus: float
    man_of_match_bonus: float

    @property
    def batting(self) -> float:
        return self.run_points + self.four_points + self.six_points + self.strike_rate_points

    @property
    def bowling(self) -> float:
        return self.wicket_points + self.economy_points

    @property
    def fielding(self) -> float:
        return self.catch_points + self.run_out_points + self.stumping_points

    @property
    def milestones(self) -> float:
        return (
            self.century_bonus
            + self.five_wicket_haul_bonus
            + self.hat_trick_bonus
            + self.man_of_match_bonus
        )

    @property
    def total(self) -> float:
        return self.batting + self.bowling + self.fielding + self.milestones

    def to_dict(self) -> Dict[str, float]:
        out = asdict(self)
        out["total"] = self.total
        return out


def strike_rate_points(stats: PlayerMatchStat, rules: RuleSet) -> int:
    """SR -> points, rounded here and nowhere else in base scoring. 0 if no ball faced."""
    if stats.balls_faced <= 0:
        return 0
    return round_points(strike_rate(stats.runs, stats.balls_faced) * rules.strike_rate_weight)


def economy_points(stats: PlayerMatchStat, rules: RuleSet) -> int:
    """Band bonus, only once at least one full over has been bowled."""
    if stats.balls_bowled < rules.min_balls_for_economy:
        return 0
    return rules.economy_bonus(economy_rate(stats.runs_conceded, stats.balls_bowled))


def compute_breakdown(stats: PlayerMatchStat, version: str) -> BaseScoreBreakdown:
    rules = get_rule_set(version)

    return BaseScoreBreakdown(
        run_points=float(stats.runs * rules.per_run),
        four_points=float(stats.fours * rules.per_four),
        six_points=float(stats.sixes * rules.per_six),
        strike_rate_points=float(strike_rate_points(stats, rules)),
        wicket_points=float(stats.wickets * rules.per_wicket),
        economy_points=float(economy_points(stats, rules)),
        catch_points=float(stats.catches * rules.per_catch),
        run_out_points=float(stats.run_outs * rules.per_run_out),
        stumping_points=float(stats.stumpings * rules.per_stumping),
        century_bonus=float(rules.century_bonus if stats.has_century else 0),
        five_wicket_haul_bonus=float(rules.five_wicket_haul_bonus if stats.has_five_wicket_haul else 0),
        hat_trick_bonus=float(rules.hat_trick_bonus if stats.has_hat_trick else 0),
        man_of_match_bonus=float(rules.man_of_match_bonus if stats.is_man_of_match else 0),
    )


def base_score(stats: PlayerMatchStat, version: str) -> float:
    """
    Unscaled fantasy points for one player under an explicit rule version.

    Pure: same (stats, version) -> same float. Not rounded; the multiplier
    layer rounds once. Unknown versions raise UnknownRuleVersionError.
    """
    return compute_breakdown(stats, version).total


def has_valid_participation(stats: PlayerMatchStat) -> bool:
    """Even a single ball faced or bowled (or any fielding / award) counts."""
    return (
        stats.balls_faced > 0
        or stats.balls_bowled > 0
        or stats.catches > 0
        or stats.run_outs > 0
        or stats.stumpings > 0
        or stats.is_man_of_match
    )
