# pickem_api/leaderboard.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set


@dataclass(frozen=True)
class ScoredBet:
    """
    One finalized (user, match) score as stored after finalize_match.
    Resolved tournament answers come through here too, keyed by question id,
    with counts_as_match off.
    """
    user_id: str
    match_id: str
    score: int
    is_void: bool = False
    counts_as_match: bool = True


@dataclass
class UserRow:
    user_id: str
    total_score: int = 0
    matches_played: int = 0


def aggregate_rows(scored: Iterable[ScoredBet]) -> Dict[str, UserRow]:
    """
    Sum per-user totals and match counts.
    Void matches (abandoned / no result) count toward neither.
    """
    rows: Dict[str, UserRow] = {}
    for s in scored:
        if s.is_void:
            continue
        row = rows.setdefault(s.user_id, UserRow(user_id=s.user_id))
        row.total_score += s.score
        if s.counts_as_match:
            row.matches_played += 1
    return rows


def compute_sorted_leaderboard(rows: Iterable[UserRow]) -> List[dict]:
    """
    Returns leaderboard sorted by:
    1) Total score (desc)
    2) User id (asc), so ties never depend on input order
    """
    def key_fn(r: UserRow):
        return (-r.total_score, r.user_id)

    sorted_rows = sorted(rows, key=key_fn)

    out: List[dict] = []
    for idx, r in enumerate(sorted_rows, start=1):
        out.append({
            "rank": idx,
            "user_id": r.user_id,
            "total_score": r.total_score,
            "matches_played": r.matches_played,
        })
    return out


def compute_leaderboard(
    scored: Iterable[ScoredBet],
    *,
    members: Optional[Set[str]] = None,
) -> List[dict]:
    """
    Pure projection over stored scores. With `members`, the global rows are
    filtered (never recomputed) so a group total equals the global total.
    Members with nothing scored yet appear with zeros.
    """
    rows = aggregate_rows(scored)
    if members is None:
        return compute_sorted_leaderboard(rows.values())

    scoped = [rows.get(user_id) or UserRow(user_id=user_id) for user_id in members]
    return compute_sorted_leaderboard(scoped)
