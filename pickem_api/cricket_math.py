# pickem_api/cricket_math.py
from __future__ import annotations

import math
from typing import Union

BALLS_PER_OVER = 6
OversLike = Union[str, int, float]


def overs_to_balls(overs: OversLike) -> int:
    """
    Converts cricket overs notation to balls.

    Supported inputs:
    - "4.0", "3.4", "0.2" (string overs notation)
    - 4 (int overs)
    - 3.4 (float) -> treated as "3.4" (strings preferred)

    Rule: ".x" means x balls (0-5). Example: 3.4 = 3*6 + 4 = 22 balls.
    """
    if overs is None:
        raise ValueError("Overs cannot be None")
    if isinstance(overs, bool):
        raise ValueError(f"Invalid overs: {overs}")

    s = str(overs).strip()
    if not s:
        raise ValueError("Overs cannot be empty")

    if "." not in s:
        ov_i = int(s)
        if ov_i < 0:
            raise ValueError(f"Invalid overs: {overs}")
        return ov_i * BALLS_PER_OVER

    ov_part, ball_part = s.split(".", 1)
    ov_i = int(ov_part) if ov_part else 0

    ball_part = ball_part.strip()
    balls_i = int(ball_part) if ball_part else 0

    if ov_i < 0:
        raise ValueError(f"Invalid overs: {overs}")
    if balls_i < 0 or balls_i > 5:
        raise ValueError(f"Invalid overs format: {overs} (balls part must be 0-5)")

    return ov_i * BALLS_PER_OVER + balls_i


def balls_to_overs_float(balls: int) -> float:
    if balls <= 0:
        return 0.0
    return balls / float(BALLS_PER_OVER)


def balls_to_overs_notation(balls: int) -> str:
    """22 -> "3.4" """
    if balls < 0:
        raise ValueError("Balls cannot be negative")
    return f"{balls // BALLS_PER_OVER}.{balls % BALLS_PER_OVER}"


def strike_rate(runs: int, balls_faced: int) -> float:
    """Runs per 100 balls. 0.0 when no balls were faced."""
    if balls_faced <= 0:
        return 0.0
    return runs * 100.0 / balls_faced


def economy_rate(runs_conceded: int, balls_bowled: int) -> float:
    """Runs conceded per over. 0.0 when nothing was bowled."""
    overs = balls_to_overs_float(balls_bowled)
    if overs == 0.0:
        return 0.0
    return runs_conceded / overs


def round_points(x: float) -> int:
    """
    Round half up to an int point value (2.5 -> 3, 2.49 -> 2).

    Every point-rounding step goes through here. Do not use round():
    it rounds half to even (2.5 -> 2).
    """
    if not math.isfinite(x):
        raise ValueError(f"Cannot round non-finite value: {x}")
    return int(math.floor(x + 0.5))
