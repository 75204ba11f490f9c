"""
Error Taxonomy
==============

Exceptions raised by settlement components and the ``Outcome`` result type
returned by webhook reconciliation.

Every exception carries an ``ErrorKind`` discriminant so callers branch on
``err.kind`` instead of parsing messages. Messages are written to be safe for
display to dealers: they never contain buyer PII or provider response bodies.

Version: 0.1.0
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Discriminant for every failure the core can report."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_STATE = "invalid_state"
    EXTERNAL_SERVICE = "external_service"
    DUPLICATE_REQUEST = "duplicate_request"
    CONFLICT = "conflict"


# HTTP status for each kind, used by the API exception handlers
HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.QUOTA_EXCEEDED: 402,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.EXTERNAL_SERVICE: 502,
    ErrorKind.DUPLICATE_REQUEST: 200,
    ErrorKind.CONFLICT: 409,
}


class SettlementError(Exception):
    """Base class for all settlement errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ValidationError(SettlementError):
    """Malformed or unacceptable input."""

    kind = ErrorKind.VALIDATION


class NotFoundError(SettlementError):
    """Buyer, dealer, payment or session is absent."""

    kind = ErrorKind.NOT_FOUND


class QuotaExceededError(SettlementError):
    """Dealer has no remaining credits."""

    kind = ErrorKind.QUOTA_EXCEEDED


class InvalidStateError(SettlementError):
    """Transition not permitted from the current state."""

    kind = ErrorKind.INVALID_STATE


class ExternalServiceError(SettlementError):
    """Provider unreachable or returned an unexpected status."""

    kind = ErrorKind.EXTERNAL_SERVICE


class DuplicateRequestError(SettlementError):
    """Idempotent no-op. Not a failure."""

    kind = ErrorKind.DUPLICATE_REQUEST


class ConflictError(SettlementError):
    """A competing operation already owns the resource."""

    kind = ErrorKind.CONFLICT


# =============================================================================
# Result type
# =============================================================================


class OutcomeStatus(str, Enum):
    """How an asynchronous event was handled."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    DEFERRED = "deferred"
    IGNORED = "ignored"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Outcome:
    """
    Result of feeding one event into the settlement state machine.

    ``error_kind`` is set whenever the event did not advance state the way
    its sender intended: ``DUPLICATE_REQUEST`` for no-ops, ``EXTERNAL_SERVICE``
    or ``NOT_FOUND`` for deferrals, and the raising kind for rejections.
    """

    status: OutcomeStatus
    state: str | None = None
    error_kind: ErrorKind | None = None
    message: str = ""
    retry_after_ms: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True when the sender should consider the event delivered."""
        return self.status is not OutcomeStatus.DEFERRED

    @property
    def should_retry(self) -> bool:
        return self.status is OutcomeStatus.DEFERRED

    @classmethod
    def applied(cls, state: str, message: str = "", **details: Any) -> "Outcome":
        return cls(OutcomeStatus.APPLIED, state=state, message=message, details=details)

    @classmethod
    def duplicate(cls, state: str | None, message: str = "event already applied") -> "Outcome":
        return cls(
            OutcomeStatus.DUPLICATE,
            state=state,
            error_kind=ErrorKind.DUPLICATE_REQUEST,
            message=message,
        )

    @classmethod
    def deferred(
        cls,
        error_kind: ErrorKind,
        retry_after_ms: int,
        message: str = "retry later",
        state: str | None = None,
    ) -> "Outcome":
        return cls(
            OutcomeStatus.DEFERRED,
            state=state,
            error_kind=error_kind,
            message=message,
            retry_after_ms=retry_after_ms,
        )

    @classmethod
    def ignored(cls, message: str, state: str | None = None) -> "Outcome":
        return cls(OutcomeStatus.IGNORED, state=state, message=message)

    @classmethod
    def rejected(cls, error: SettlementError, state: str | None = None) -> "Outcome":
        return cls(
            OutcomeStatus.REJECTED,
            state=state,
            error_kind=error.kind,
            message=error.message,
        )
