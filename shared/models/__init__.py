"""
Shared Models
=============

Pydantic models shared across the settlement service.

Models:
- Account models (BuyerAccount, DealerAccount, Account, BuyerSecrets)
- Settlement states and status projections
- Payment models (PaymentEvent, HoldOperationResult)
- Compliance models (ComplianceEvent, ComplianceQuery)
"""

from shared.models.accounts import Account, BuyerAccount, BuyerSecrets, DealerAccount
from shared.models.common import (
    BaseResponse,
    ErrorResponse,
    HealthResponse,
    PaginatedResponse,
    Pagination,
    new_id,
    new_reference_id,
    utc_now,
)
from shared.models.compliance import (
    ComplianceEvent,
    ComplianceEventSummary,
    ComplianceQuery,
    LedgerPage,
)
from shared.models.payment import (
    HoldOperationResult,
    PaymentEvent,
    PaymentEventStatus,
    PaymentType,
)
from shared.models.settlement import (
    KYCDecision,
    PaymentStatus,
    SettlementEvent,
    SettlementState,
    VerificationStatus,
)

__all__ = [
    # Accounts
    "Account",
    "BuyerAccount",
    "BuyerSecrets",
    "DealerAccount",
    # Settlement
    "KYCDecision",
    "PaymentStatus",
    "SettlementEvent",
    "SettlementState",
    "VerificationStatus",
    # Payment
    "HoldOperationResult",
    "PaymentEvent",
    "PaymentEventStatus",
    "PaymentType",
    # Compliance
    "ComplianceEvent",
    "ComplianceEventSummary",
    "ComplianceQuery",
    "LedgerPage",
    # Common
    "BaseResponse",
    "ErrorResponse",
    "HealthResponse",
    "PaginatedResponse",
    "Pagination",
    "new_id",
    "new_reference_id",
    "utc_now",
]
