# pickem_api/audit.py
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pickem_api.bet_scoring import ScoringInputs, score_match
from pickem_api.errors import EngineError, ReplayMismatchError
from pickem_api.models import as_utc
from pickem_api.rules import get_rule_set

logger = logging.getLogger(__name__)


def canonical_json(obj: Any) -> str:
    """Sorted keys, no whitespace, no NaN. Same data -> same bytes."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), allow_nan=False)


def _plain(obj: Any) -> Any:
    # Detach from caller-owned structures and prove the data is JSON-safe
    return json.loads(canonical_json(obj))


def audit_id_for(match_id: str, seq: int) -> str:
    return f"AUDIT-{match_id}-{seq:03d}"


def compute_checksum(
    audit_id: str,
    match_id: str,
    rule_version: str,
    recorded_at: str,
    inputs: Mapping[str, Any],
    outputs: Mapping[str, Any],
) -> str:
    payload = canonical_json({
        "audit_id": audit_id,
        "match_id": match_id,
        "rule_version": rule_version,
        "recorded_at": recorded_at,
        "inputs": inputs,
        "outputs": outputs,
    })
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# -----------------------------
# Records
# -----------------------------
@dataclass(frozen=True)
class AuditRecord:
    """Immutable snapshot of one scoring run. Plain JSON data only."""
    audit_id: str
    match_id: str
    rule_version: str
    recorded_at: str
    inputs: Dict[str, Any]
    outputs: Dict[str, Any]
    checksum: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "AuditRecord":
        data = json.loads(raw)
        return cls(**data)


def record(
    audit_id: str,
    inputs: ScoringInputs,
    outputs: Mapping[str, Any],
    rule_version: str,
    recorded_at: datetime,
) -> AuditRecord:
    plain_inputs = _plain(inputs.to_dict())
    plain_outputs = _plain(dict(outputs))
    stamp = as_utc(recorded_at).isoformat()

    return AuditRecord(
        audit_id=audit_id,
        match_id=inputs.match_id,
        rule_version=rule_version,
        recorded_at=stamp,
        inputs=plain_inputs,
        outputs=plain_outputs,
        checksum=compute_checksum(audit_id, inputs.match_id, rule_version, stamp, plain_inputs, plain_outputs),
    )


# -----------------------------
# Replay
# -----------------------------
@dataclass
class ReplayResult:
    audit_id: str
    match_id: str
    diffs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return not self.diffs

    def add(self, field_name: str, expected: Any, actual: Any, message: str, **extra: Any) -> None:
        diff = {"field": field_name, "expected": expected, "actual": actual, "message": message}
        diff.update(extra)
        self.diffs.append(diff)

    def raise_for_mismatch(self) -> None:
        if self.diffs:
            raise ReplayMismatchError(
                f"Replay of {self.audit_id} does not match: {len(self.diffs)} difference(s)",
                context={"audit_id": self.audit_id, "diffs": self.diffs},
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "match_id": self.match_id,
            "matches": self.matches,
            "diffs": list(self.diffs),
        }


def _compare_outputs(result: ReplayResult, stored: Mapping[str, Any], recomputed: Mapping[str, Any]) -> None:
    if stored.get("is_void") != recomputed.get("is_void"):
        result.add("is_void", stored.get("is_void"), recomputed.get("is_void"), "Void flag differs")

    stored_scores: Dict[str, Any] = stored.get("per_user_scores") or {}
    new_scores: Dict[str, Any] = recomputed.get("per_user_scores") or {}
    for user_id in sorted(set(stored_scores) | set(new_scores)):
        expected = stored_scores.get(user_id)
        actual = new_scores.get(user_id)
        if expected != actual:
            result.add(
                "per_user_scores",
                expected,
                actual,
                f"Score for {user_id}: stored {expected}, recomputed {actual}",
                user_id=user_id,
            )

    stored_breakdowns: Dict[str, Any] = stored.get("breakdowns") or {}
    new_breakdowns: Dict[str, Any] = recomputed.get("breakdowns") or {}
    for user_id in sorted(set(stored_breakdowns) | set(new_breakdowns)):
        expected = stored_breakdowns.get(user_id)
        actual = new_breakdowns.get(user_id)
        if expected != actual:
            result.add(
                "breakdowns",
                expected,
                actual,
                f"Score breakdown for {user_id} differs",
                user_id=user_id,
            )

    # Anything outside the fields above (exact, not tolerant)
    rest_stored = {k: v for k, v in stored.items() if k not in ("is_void", "per_user_scores", "breakdowns")}
    rest_new = {k: v for k, v in recomputed.items() if k not in ("is_void", "per_user_scores", "breakdowns")}
    if rest_stored != rest_new:
        result.add("outputs", rest_stored, rest_new, "Output metadata differs")


def replay(rec: AuditRecord) -> ReplayResult:
    """
    Recompute outputs from the stored inputs under the record's own rule
    version and compare with exact equality. Differences are reported,
    never corrected.
    """
    result = ReplayResult(audit_id=rec.audit_id, match_id=rec.match_id)

    expected_checksum = compute_checksum(
        rec.audit_id, rec.match_id, rec.rule_version, rec.recorded_at, rec.inputs, rec.outputs
    )
    if expected_checksum != rec.checksum:
        result.add("checksum", rec.checksum, expected_checksum, "Record content does not match its checksum")

    recomputed: Optional[Dict[str, Any]] = None
    try:
        get_rule_set(rec.rule_version)
        inputs = ScoringInputs.from_dict(rec.inputs)
        recomputed = _plain(score_match(inputs, rec.rule_version))
    except EngineError as e:
        result.add(e.code.lower(), "replayable inputs", e.message, f"Replay could not run: {e.message}")
    except (KeyError, TypeError, ValueError) as e:
        result.add("inputs", "well-formed inputs", str(e), f"Stored inputs are malformed: {e}")

    if recomputed is not None:
        _compare_outputs(result, rec.outputs, recomputed)

    if result.matches:
        logger.info("Replay %s matches stored outputs", rec.audit_id)
    else:
        logger.warning("Replay %s mismatch: %d difference(s)", rec.audit_id, len(result.diffs))
    return result
