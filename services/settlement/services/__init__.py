"""
Settlement Core Components
==========================

- payment_hold: safe-capture payment holds
- identity: KYC sessions and encrypted buyer secrets
- state_machine: the settlement state machine
- reconciliation: webhook reconciliation and bounded waits
- ledger: append-only compliance ledger
- quota: dealer credit metering
- verification: dealer cross-party checks
- privacy: buyer deletion and export
"""

from services.settlement.services.identity import IdentityCoordinator
from services.settlement.services.ledger import (
    ComplianceLedger,
    buyer_attempt_key,
    dealer_attempt_key,
    event_digest,
)
from services.settlement.services.notifier import ResolutionNotifier
from services.settlement.services.payment_hold import PaymentHoldManager
from services.settlement.services.privacy import PrivacyService
from services.settlement.services.quota import QuotaMeter, QuotaUsage
from services.settlement.services.reconciliation import ReconciliationHandler
from services.settlement.services.state_machine import (
    PaymentEventKind,
    RetryResult,
    SettlementOrchestrator,
    next_state,
)
from services.settlement.services.verification import (
    DealerVerificationService,
    DealerVerifyRequest,
    DealerVerifyResult,
)

__all__ = [
    "ComplianceLedger",
    "DealerVerificationService",
    "DealerVerifyRequest",
    "DealerVerifyResult",
    "IdentityCoordinator",
    "PaymentEventKind",
    "PaymentHoldManager",
    "PrivacyService",
    "QuotaMeter",
    "QuotaUsage",
    "ReconciliationHandler",
    "ResolutionNotifier",
    "RetryResult",
    "SettlementOrchestrator",
    "buyer_attempt_key",
    "dealer_attempt_key",
    "event_digest",
    "next_state",
]
