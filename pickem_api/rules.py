# pickem_api/rules.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from pickem_api.errors import UnknownRuleVersionError


@dataclass(frozen=True)
class EconomyBand:
    max_economy: float
    bonus: int


@dataclass(frozen=True)
class RuleSet:
    """
    Immutable fantasy-point coefficients for one rule version.

    Coefficients are never admin-configurable; slot multipliers are the
    only way a player's score is scaled.
    """
    version: str

    # Batting
    per_run: int
    per_four: int
    per_six: int
    strike_rate_weight: float

    # Bowling
    per_wicket: int
    economy_bands: Tuple[EconomyBand, ...]
    min_balls_for_economy: int

    # Fielding
    per_catch: int
    per_run_out: int
    per_stumping: int

    # Milestones
    century_bonus: int
    five_wicket_haul_bonus: int
    hat_trick_bonus: int
    man_of_match_bonus: int

    def economy_bonus(self, economy: float) -> int:
        # Bands are ordered tightest first; first match wins.
        for band in self.economy_bands:
            if economy <= band.max_economy:
                return band.bonus
        return 0


RULE_SET_V1 = RuleSet(
    version="1.0.0",
    per_run=1,
    per_four=10,
    per_six=20,
    strike_rate_weight=1.0,
    per_wicket=20,
    economy_bands=(
        EconomyBand(max_economy=6.0, bonus=100),
        EconomyBand(max_economy=8.0, bonus=50),
        EconomyBand(max_economy=10.0, bonus=25),
    ),
    min_balls_for_economy=6,
    per_catch=5,
    per_run_out=5,
    per_stumping=5,
    century_bonus=200,
    five_wicket_haul_bonus=200,
    hat_trick_bonus=200,
    man_of_match_bonus=200,
)

RULE_SETS: Dict[str, RuleSet] = {
    RULE_SET_V1.version: RULE_SET_V1,
}


def get_rule_set(version: str) -> RuleSet:
    """Fails closed: an unknown version never falls back to a default."""
    rule_set = RULE_SETS.get(version)
    if rule_set is None:
        raise UnknownRuleVersionError(
            f"Unknown rule-set version: {version!r}",
            context={"version": version, "known": known_versions()},
        )
    return rule_set


def known_versions() -> List[str]:
    return sorted(RULE_SETS.keys())
