# pickem_api/slot_conflict.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

SlotAssignments = Union[Mapping[int, Optional[str]], Iterable[Tuple[int, Optional[str]]]]


@dataclass(frozen=True)
class SlotConflict:
    player_id: str
    slot_indices: Tuple[int, ...]
    kept_slot: int
    cleared_slots: Tuple[int, ...]


@dataclass(frozen=True)
class ConflictReport:
    resolved: Dict[int, Optional[str]]
    conflicts: Tuple[SlotConflict, ...]

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def slots_cleared(self) -> int:
        return sum(len(c.cleared_slots) for c in self.conflicts)


def _as_pairs(assignments: SlotAssignments) -> List[Tuple[int, Optional[str]]]:
    items = assignments.items() if isinstance(assignments, Mapping) else assignments
    pairs: List[Tuple[int, Optional[str]]] = []
    for slot, player_id in items:
        if isinstance(slot, bool):
            continue
        try:
            slot_i = int(slot)
        except (TypeError, ValueError):
            continue
        pid = player_id.strip() if isinstance(player_id, str) else None
        pairs.append((slot_i, pid or None))
    # Ascending slot index = descending priority. Stable for repeated slots.
    pairs.sort(key=lambda p: p[0])
    return pairs


def resolve_slot_conflicts(assignments: SlotAssignments) -> Dict[int, Optional[str]]:
    """
    Dedupe player picks so each player sits in at most one slot.

    Scans slots from the lowest index up; the first occurrence of a player
    stays, every later occurrence is cleared to None. Never raises: blanks
    and duplicates are resolved, not rejected; unreadable slot indices are
    dropped. If a slot index is given twice, its first non-empty pick wins.
    """
    resolved: Dict[int, Optional[str]] = {}
    seen: set = set()

    for slot, player_id in _as_pairs(assignments):
        if slot in resolved and resolved[slot] is not None:
            continue
        if player_id is None or player_id in seen:
            resolved.setdefault(slot, None)
            continue
        resolved[slot] = player_id
        seen.add(player_id)

    return resolved


def detect_slot_conflicts(assignments: SlotAssignments) -> ConflictReport:
    """resolve_slot_conflicts plus which slots each duplicated player was cleared from."""
    slots_by_player: Dict[str, List[int]] = {}
    for slot, player_id in _as_pairs(assignments):
        if player_id is not None:
            slots_by_player.setdefault(player_id, []).append(slot)

    conflicts: List[SlotConflict] = []
    for player_id in sorted(slots_by_player):
        slots = sorted(set(slots_by_player[player_id]))
        if len(slots) > 1:
            conflicts.append(SlotConflict(
                player_id=player_id,
                slot_indices=tuple(slots),
                kept_slot=slots[0],
                cleared_slots=tuple(slots[1:]),
            ))

    return ConflictReport(resolved=resolve_slot_conflicts(assignments), conflicts=tuple(conflicts))


def unique_player_ids(resolved: Mapping[int, Optional[str]]) -> List[str]:
    return [pid for _, pid in sorted(resolved.items()) if pid is not None]
