# pickem_api/store.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

# Namespaces used by the engine
MATCHES = "match"
SQUADS = "squad"
PLAYERS = "player"
QUESTIONS = "question"
BETS = "bet"
CONFIGS = "config"
RESULTS = "result"
SCORES = "score"
GROUPS = "group"
CLOCKS = "clock"
AUDITS = "audit"
TOURNAMENT_BETS = "tournament_bet"
TOURNAMENT_SCORES = "tournament_score"


def make_key(*parts: Any) -> str:
    """
    Enforce namespaced keys to avoid collisions.
    Example:
      make_key("bet", "wc_m1", "alice") -> "bet:wc_m1:alice"
    """
    cleaned = [str(p).strip() for p in parts]
    if len(cleaned) < 2 or not all(cleaned):
        raise ValueError("Store namespace and key parts must be non-empty")
    return ":".join(cleaned)


def key_prefix(*parts: Any) -> str:
    """make_key("bet", "wc_m1") would also match "wc_m10"; scan with this instead."""
    return ":".join(str(p).strip() for p in parts) + ":"


class MemoryStore:
    """
    In-memory keyed store (sufficient for single-instance deploys and tests).
    Stand-in for the external persistent store; the engine only uses
    get / put / scan / append / log, so any keyed backend can replace it.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, Any] = {}
        self._logs: Dict[str, List[Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._rows.get(key)

    def put(self, key: str, value: Any) -> None:
        self._rows[key] = value

    def delete(self, key: str) -> None:
        self._rows.pop(key, None)

    def scan(self, prefix: str) -> List[Any]:
        """Values whose key starts with `prefix`, in key order."""
        return [self._rows[k] for k in sorted(self._rows) if k.startswith(prefix)]

    # Append-only sequences (audit records)
    def append(self, namespace: str, value: Any) -> int:
        """Returns the 1-based position of the appended value."""
        items = self._logs.setdefault(namespace, [])
        items.append(value)
        return len(items)

    def log(self, namespace: str) -> List[Any]:
        return list(self._logs.get(namespace, []))

    def clear(self) -> None:
        self._rows.clear()
        self._logs.clear()

    def debug_snapshot(self) -> Dict[str, int]:
        """Row counts per namespace. Useful for debugging."""
        out: Dict[str, int] = {}
        for k in self._rows:
            ns = k.split(":", 1)[0]
            out[ns] = out.get(ns, 0) + 1
        for ns, items in self._logs.items():
            out[f"{ns}[log]"] = len(items)
        return out
