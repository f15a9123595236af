# pickem_api/scorecard.py
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from pickem_api.errors import UnmatchedPlayersError
from pickem_api.models import Player, PlayerMatchStat, parse_overs

logger = logging.getLogger(__name__)

BATTING_COLUMNS = ["runs", "balls_faced", "fours", "sixes"]
BOWLING_COLUMNS = ["balls_bowled", "runs_conceded", "wickets", "hat_tricks"]
FIELDING_COLUMNS = ["catches", "run_outs", "stumpings"]

CENTURY_RUNS = 100
FIVE_WICKET_HAUL = 5


# -----------------------------
# Name matching
# -----------------------------
def normalize_name(name: Any) -> str:
    """'M.S. Dhoni ' -> 'ms dhoni'"""
    s = "" if name is None else str(name)
    s = s.replace("†", " ").replace("(c)", " ")
    s = re.sub(r"[.\-']", "", s.lower())
    return re.sub(r"\s+", " ", s).strip()


class NameMatcher:
    """
    Scorecard names -> squad player ids.
    Order: exact normalized name, then unique last name, then unique substring.
    Ambiguous names stay unmatched.
    """

    def __init__(self, players: Iterable[Player]):
        self._by_name: Dict[str, List[str]] = {}
        self._by_last: Dict[str, List[str]] = {}
        for p in players:
            norm = normalize_name(p.name)
            self._by_name.setdefault(norm, []).append(p.player_id)
            if norm:
                self._by_last.setdefault(norm.split(" ")[-1], []).append(p.player_id)

    def match(self, name: Any) -> Optional[str]:
        norm = normalize_name(name)
        if not norm:
            return None

        exact = self._by_name.get(norm, [])
        if len(exact) == 1:
            return exact[0]
        if len(exact) > 1:
            return None

        last = self._by_last.get(norm.split(" ")[-1], [])
        if len(last) == 1:
            return last[0]

        partial = sorted({
            pid
            for known, pids in self._by_name.items()
            if norm in known or known in norm
            for pid in pids
        })
        if len(partial) == 1:
            return partial[0]
        return None


# -----------------------------
# Frames
# -----------------------------
def _frame(rows: Iterable[Mapping[str, Any]], columns: List[str], colmap: Dict[str, str]) -> pd.DataFrame:
    df = pd.DataFrame(list(rows))
    df = df.rename(columns={c: colmap.get(str(c).strip().lower(), str(c).strip().lower()) for c in df.columns})
    df = df.reindex(columns=["name"] + columns)
    for c in columns:
        df[c] = pd.to_numeric(df[c], errors="coerce").fillna(0)
    return df


def _bowling_frame(rows: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    prepared: List[Dict[str, Any]] = []
    for r in rows:
        row = {str(k).strip().lower(): v for k, v in r.items()}
        # Overs notation does not sum; convert to balls first
        if row.get("balls_bowled") in (None, ""):
            overs = row.get("overs", row.get("o"))
            if overs in (None, ""):
                row["balls_bowled"] = 0
            else:
                row["balls_bowled"] = parse_overs(overs, bowler=str(row.get("bowler", row.get("player", ""))))
        if isinstance(row.get("hat_trick"), bool):
            row["hat_trick"] = int(row["hat_trick"])
        prepared.append(row)
    return _frame(prepared, BOWLING_COLUMNS, {
        "player": "name",
        "bowler": "name",
        "r": "runs_conceded",
        "runs": "runs_conceded",
        "w": "wickets",
        "wkts": "wickets",
        "hat_trick": "hat_tricks",
    })


def _batting_frame(rows: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    return _frame(rows, BATTING_COLUMNS, {
        "player": "name",
        "batter": "name",
        "batsman": "name",
        "r": "runs",
        "b": "balls_faced",
        "balls": "balls_faced",
        "4s": "fours",
        "6s": "sixes",
    })


def _fielding_frame(rows: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    return _frame(rows, FIELDING_COLUMNS, {
        "player": "name",
        "fielder": "name",
        "ct": "catches",
        "ro": "run_outs",
        "st": "stumpings",
    })


def fielding_from_dismissals(batting_rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Fielding credits from dismissal text on batting rows:
      "c Smith b Jones" -> catch Smith
      "c & b Jones"     -> catch Jones
      "st †Pant b Ali"  -> stumping Pant
      "run out (A/B)"   -> run out A and B
    Substitute fielders are not credited.
    """
    out: List[Dict[str, Any]] = []
    for row in batting_rows:
        text = str(row.get("dismissal") or "").replace("†", "").strip()
        if not text:
            continue

        m = re.match(r"^c\s*&\s*b\s+(.+)$", text, re.IGNORECASE)
        if m:
            out.append({"name": m.group(1).strip(), "catches": 1})
            continue
        m = re.match(r"^c\s+(.+?)\s+b\s+.+$", text, re.IGNORECASE)
        if m:
            if not m.group(1).lower().startswith("sub"):
                out.append({"name": m.group(1).strip(), "catches": 1})
            continue
        m = re.match(r"^st\s+(.+?)\s+b\s+.+$", text, re.IGNORECASE)
        if m:
            out.append({"name": m.group(1).strip(), "stumpings": 1})
            continue
        m = re.match(r"^run out\s*\(([^)]+)\)", text, re.IGNORECASE)
        if m:
            for name in m.group(1).split("/"):
                if name.strip() and not name.strip().lower().startswith("sub"):
                    out.append({"name": name.strip(), "run_outs": 1})
    return out


# -----------------------------
# Merge
# -----------------------------
def merge_scorecard(
    match_id: str,
    players: Sequence[Player],
    batting: Iterable[Mapping[str, Any]] = (),
    bowling: Iterable[Mapping[str, Any]] = (),
    fielding: Optional[Iterable[Mapping[str, Any]]] = None,
    *,
    man_of_match: Optional[str] = None,
) -> Dict[str, PlayerMatchStat]:
    """
    Batting, bowling and fielding rows (one row per innings / spell / credit,
    several allowed per player) -> one PlayerMatchStat per player id.

    When `fielding` is None, fielding credits come from batting dismissal text.
    Every unmatched name across all tables is reported in one error.
    """
    batting = list(batting)
    if fielding is None:
        fielding = fielding_from_dismissals(batting)

    matcher = NameMatcher(players)
    frames = [
        (_batting_frame(batting), BATTING_COLUMNS),
        (_bowling_frame(bowling), BOWLING_COLUMNS),
        (_fielding_frame(fielding), FIELDING_COLUMNS),
    ]

    unmatched: List[str] = []
    totals: List[pd.DataFrame] = []
    for df, cols in frames:
        df["player_id"] = df["name"].map(matcher.match)
        missing = df[df["player_id"].isna()]["name"]
        unmatched.extend(str(n) for n in missing if str(n) not in unmatched)
        totals.append(df.dropna(subset=["player_id"]).groupby("player_id")[cols].sum())

    mom_id: Optional[str] = None
    if man_of_match:
        mom_id = matcher.match(man_of_match)
        if mom_id is None and man_of_match not in unmatched:
            unmatched.append(man_of_match)

    if unmatched:
        logger.warning("Scorecard for %s has %d unmatched name(s)", match_id, len(unmatched))
        raise UnmatchedPlayersError(
            f"Scorecard names not in squads for {match_id}: {', '.join(sorted(unmatched))}",
            context={"match_id": match_id, "unmatched": sorted(unmatched)},
        )

    merged = pd.concat(totals, axis=1).fillna(0)
    ids = set(merged.index)
    if mom_id is not None:
        ids.add(mom_id)

    out: Dict[str, PlayerMatchStat] = {}
    for pid in sorted(ids):
        row = merged.loc[pid] if pid in merged.index else None

        def _count(col: str) -> int:
            return int(row[col]) if row is not None else 0

        runs = _count("runs")
        wickets = _count("wickets")
        out[pid] = PlayerMatchStat(
            match_id=match_id,
            player_id=pid,
            runs=runs,
            balls_faced=_count("balls_faced"),
            fours=_count("fours"),
            sixes=_count("sixes"),
            wickets=wickets,
            balls_bowled=_count("balls_bowled"),
            runs_conceded=_count("runs_conceded"),
            catches=_count("catches"),
            run_outs=_count("run_outs"),
            stumpings=_count("stumpings"),
            has_century=runs >= CENTURY_RUNS,
            has_five_wicket_haul=wickets >= FIVE_WICKET_HAUL,
            has_hat_trick=_count("hat_tricks") > 0,
            is_man_of_match=pid == mom_id,
        )

    logger.info("Merged scorecard for %s: %d player(s)", match_id, len(out))
    return out
