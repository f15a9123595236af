# pickem_api/errors.py
from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Sequence

ErrorKind = Literal["VALIDATION", "STATE", "CONSISTENCY", "NOT_FOUND"]


class EngineError(Exception):
    """
    Base class for every failure the engine raises on purpose.

    Callers branch on `kind` (or the class) and `code`, never on the message:
      - VALIDATION : malformed / out-of-bounds input, fix the input and retry
      - STATE      : operation not legal in the current lifecycle state
      - CONSISTENCY: stored data disagrees with itself (replay drift, roster mismatch)
      - NOT_FOUND  : referenced entity does not exist
    """
    kind: ErrorKind = "VALIDATION"
    code: str = "ENGINE_ERROR"

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(EngineError):
    kind: ErrorKind = "VALIDATION"
    code = "INVALID_INPUT"


class StateError(EngineError):
    kind: ErrorKind = "STATE"
    code = "INVALID_STATE"


class ConsistencyError(EngineError):
    kind: ErrorKind = "CONSISTENCY"
    code = "INCONSISTENT_DATA"


class NotFoundError(EngineError):
    kind: ErrorKind = "NOT_FOUND"
    code = "NOT_FOUND"


# -----------------------------
# Validation errors
# -----------------------------
class MissingUserError(ValidationError):
    code = "MISSING_USER"


class UnknownRuleVersionError(ValidationError):
    code = "UNKNOWN_RULE_VERSION"


class InvalidMatchError(ValidationError):
    code = "INVALID_MATCH"


class InvalidScoringConfigError(ValidationError):
    code = "INVALID_SCORING_CONFIG"


class AdminConfigError(ValidationError):
    """Raised when a proposed slot -> multiplier mapping is rejected."""
    code = "INVALID_ADMIN_CONFIG"

    def __init__(
        self,
        message: str,
        *,
        slot: Any = None,
        value: Any = None,
        errors: Sequence["AdminConfigError"] = (),
    ):
        super().__init__(message, context={"slot": slot, "value": value})
        self.slot = slot
        self.value = value
        self.errors = list(errors) or [self]


class InvalidSlotIndexError(AdminConfigError):
    code = "INVALID_SLOT_INDEX"


class InvalidDisabledSlotError(InvalidSlotIndexError):
    code = "INVALID_DISABLED_SLOT"


class NonFiniteMultiplierError(AdminConfigError):
    code = "INVALID_MULTIPLIER_NON_FINITE"


class NaNMultiplierError(NonFiniteMultiplierError):
    code = "INVALID_MULTIPLIER_NAN"


class InfiniteMultiplierError(NonFiniteMultiplierError):
    code = "INVALID_MULTIPLIER_INFINITY"


class NegativeMultiplierError(AdminConfigError):
    code = "INVALID_MULTIPLIER_NEGATIVE"


class OptionReferenceError(ValidationError):
    code = "INVALID_OPTION_REFERENCE"


class InvalidAnswerError(ValidationError):
    code = "INVALID_ANSWER"


class IneligiblePlayerError(ValidationError):
    code = "PLAYER_NOT_IN_SQUAD"


class InvalidRunnerError(ValidationError):
    code = "INVALID_RUNNER"


class InvalidCorrectOptionError(ValidationError):
    code = "INVALID_CORRECT_OPTION"


class InvalidPickError(ValidationError):
    code = "INVALID_PLAYER_PICK"


class InvalidOversError(ValidationError):
    code = "INVALID_OVERS"


class DuplicateEntityError(ValidationError):
    code = "ALREADY_EXISTS"


# -----------------------------
# State errors
# -----------------------------
class IllegalTransitionError(StateError):
    code = "ILLEGAL_TRANSITION"


class BettingClosedError(StateError):
    code = "BETTING_CLOSED"


class BetLockedError(StateError):
    code = "BET_LOCKED"


class QuestionLockedError(StateError):
    code = "QUESTION_LOCKED"


class QuestionAlreadyResolvedError(StateError):
    code = "QUESTION_ALREADY_RESOLVED"


class MatchNotSettledError(StateError):
    code = "MATCH_NOT_SETTLED"


class MatchNotUpcomingError(StateError):
    code = "MATCH_NOT_UPCOMING"


class AlreadyFinalizedError(StateError):
    code = "ALREADY_FINALIZED"


class AlreadyAbandonedError(StateError):
    code = "ALREADY_ABANDONED"


class StatsAlreadyRecordedError(StateError):
    code = "STATS_ALREADY_RECORDED"


class MissingResultError(StateError):
    code = "RESULT_NOT_RECORDED"


class QuestionsAlreadyGeneratedError(StateError):
    code = "QUESTIONS_ALREADY_GENERATED"


class SquadFinalError(StateError):
    code = "SQUAD_FINAL"


# -----------------------------
# Consistency errors
# -----------------------------
class SquadMismatchError(ConsistencyError):
    code = "SQUAD_MISMATCH"


class UnmatchedPlayersError(ConsistencyError):
    code = "UNMATCHED_PLAYERS"


class ReplayMismatchError(ConsistencyError):
    code = "REPLAY_MISMATCH"
