"""
Settlement State Models
=======================

States of a buyer's verification attempt and the payment/verification
status projections stored alongside them.

Version: 0.1.0
"""

from enum import Enum


class SettlementState(str, Enum):
    """Authoritative state of a buyer's current verification attempt."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    CHECKING = "checking"
    PASSED = "passed"
    COMPLETED = "completed"
    REJECTED_REFUNDED = "rejected_refunded"
    COMPLETED_REFUNDED = "completed_refunded"
    FAILED = "failed"
    ERROR = "error"


class SettlementEvent(str, Enum):
    """Events that drive the settlement state machine."""

    START = "start"
    SESSION_OPENED = "sessionOpened"
    DECISION_APPROVED = "decisionApproved"
    DECISION_DECLINED = "decisionDeclined"
    CAPTURE_SUCCEEDED = "captureSucceeded"
    CAPTURE_FAILED = "captureFailed"
    AUTHORIZATION_FAILED = "authorizationFailed"
    HOLD_EXPIRED = "holdExpired"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    """Payment leg as reported to the buyer."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    COMPLETED = "completed"
    REJECTED_REFUNDED = "rejected_refunded"
    COMPLETED_REFUNDED = "completed_refunded"
    FAILED = "failed"
    ERROR = "error"


class VerificationStatus(str, Enum):
    """Verification leg as reported to the buyer."""

    PENDING = "pending"
    CHECKING = "checking"
    PASSED = "passed"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class KYCDecision(str, Enum):
    """Final decision reported by the KYC provider."""

    APPROVED = "approved"
    DECLINED = "declined"


TERMINAL_STATES = frozenset(
    {
        SettlementState.COMPLETED,
        SettlementState.REJECTED_REFUNDED,
        SettlementState.ERROR,
    }
)

# States a waiting client treats as resolved
RESOLVED_STATES = TERMINAL_STATES | {
    SettlementState.COMPLETED_REFUNDED,
    SettlementState.FAILED,
}

IN_FLIGHT_STATES = frozenset(
    {
        SettlementState.AUTHORIZED,
        SettlementState.CHECKING,
        SettlementState.PASSED,
    }
)

STATUS_PROJECTION: dict[SettlementState, tuple[PaymentStatus, VerificationStatus]] = {
    SettlementState.PENDING: (PaymentStatus.PENDING, VerificationStatus.PENDING),
    SettlementState.AUTHORIZED: (PaymentStatus.AUTHORIZED, VerificationStatus.PENDING),
    SettlementState.CHECKING: (PaymentStatus.AUTHORIZED, VerificationStatus.CHECKING),
    SettlementState.PASSED: (PaymentStatus.AUTHORIZED, VerificationStatus.PASSED),
    SettlementState.COMPLETED: (PaymentStatus.COMPLETED, VerificationStatus.VERIFIED),
    SettlementState.REJECTED_REFUNDED: (
        PaymentStatus.REJECTED_REFUNDED,
        VerificationStatus.REJECTED,
    ),
    SettlementState.COMPLETED_REFUNDED: (
        PaymentStatus.COMPLETED_REFUNDED,
        VerificationStatus.VERIFIED,
    ),
    SettlementState.FAILED: (PaymentStatus.FAILED, VerificationStatus.PENDING),
    SettlementState.ERROR: (PaymentStatus.ERROR, VerificationStatus.PASSED),
}


def project_statuses(state: SettlementState) -> tuple[PaymentStatus, VerificationStatus]:
    """Return the (payment_status, verification_status) pair for ``state``."""
    return STATUS_PROJECTION[state]
