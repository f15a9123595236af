# pickem_api/config.py
from __future__ import annotations

import math
import os
from dotenv import load_dotenv

# Load .env from project root
load_dotenv()


def _get_env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, str(default))
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env(name, str(default))
    try:
        return float(raw)
    except ValueError:
        return default


# -------------------------
# Player slots
# -------------------------
# Slot indices run 1..SLOT_COUNT, lower index = higher priority
SLOT_COUNT: int = _get_env_int("SLOT_COUNT", 11)

# Rule set used for new scoring runs (audit records pin their own)
DEFAULT_RULE_VERSION: str = _get_env("DEFAULT_RULE_VERSION", "1.0.0")


# -------------------------
# Match-level point values (admin may override per match)
# -------------------------
DEFAULT_WINNER_BASE_POINTS: int = _get_env_int("DEFAULT_WINNER_BASE_POINTS", 1000)
DEFAULT_SUPER_OVER_MULTIPLIER: float = _get_env_float("DEFAULT_SUPER_OVER_MULTIPLIER", 5.0)
DEFAULT_TOTAL_RUNS_BASE_POINTS: int = _get_env_int("DEFAULT_TOTAL_RUNS_BASE_POINTS", 1000)

# Side questions (toss, top scorer, milestones ...)
DEFAULT_SIDE_BET_POINTS: int = _get_env_int("DEFAULT_SIDE_BET_POINTS", 500)
DEFAULT_SIDE_BET_POINTS_WRONG: int = _get_env_int("DEFAULT_SIDE_BET_POINTS_WRONG", 0)

# 0 disables runner picks
DEFAULT_RUNNER_COUNT: int = _get_env_int("DEFAULT_RUNNER_COUNT", 0)


# -------------------------
# Match timeline
# -------------------------
# First ball = scheduled time; match is treated as complete this long after it
MATCH_DURATION_MINUTES: int = _get_env_int("MATCH_DURATION_MINUTES", 210)


# -------------------------
# Logging
# -------------------------
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO").upper()


def validate_config() -> None:
    if SLOT_COUNT <= 0:
        raise RuntimeError("SLOT_COUNT must be positive")

    if not DEFAULT_RULE_VERSION:
        raise RuntimeError("DEFAULT_RULE_VERSION must be set")

    if DEFAULT_WINNER_BASE_POINTS < 0 or DEFAULT_TOTAL_RUNS_BASE_POINTS < 0:
        raise RuntimeError("Base points must be non-negative")

    if not math.isfinite(DEFAULT_SUPER_OVER_MULTIPLIER) or DEFAULT_SUPER_OVER_MULTIPLIER < 0:
        raise RuntimeError("DEFAULT_SUPER_OVER_MULTIPLIER must be a finite, non-negative number")

    if DEFAULT_RUNNER_COUNT < 0:
        raise RuntimeError("DEFAULT_RUNNER_COUNT must be >= 0")

    if MATCH_DURATION_MINUTES <= 0:
        raise RuntimeError("MATCH_DURATION_MINUTES must be positive")

    if LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise RuntimeError(f"Unsupported LOG_LEVEL: {LOG_LEVEL}")
