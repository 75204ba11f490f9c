"""
Buyer Privacy Requests
======================

CCPA deletion and export for buyer accounts.

Deletion keeps the audit trail: compliance and payment events lose their
owning buyer key but keep the permanent ``buyer_reference_id``.

Version: 0.1.0
"""

from typing import Any

from pydantic import BaseModel

from services.settlement.services.identity import IdentityCoordinator
from services.settlement.services.ledger import ComplianceLedger
from services.settlement.storage.base import SettlementStore
from services.settlement.storage.locks import LockManager
from shared.errors import InvalidStateError, NotFoundError
from shared.logging import get_logger
from shared.models import (
    BuyerAccount,
    ComplianceEventSummary,
    ComplianceQuery,
    PaymentEvent,
    utc_now,
)
from shared.models.settlement import IN_FLIGHT_STATES

logger = get_logger(__name__)

EXPORT_PAGE_SIZE = 100


class DeletionReport(BaseModel):
    buyer_reference_id: str
    secrets_deleted: bool
    compliance_events_anonymized: int
    payment_events_anonymized: int


class BuyerDataExport(BaseModel):
    """Everything held about a buyer, without encrypted identity material."""

    account: dict[str, Any]
    payments: list[PaymentEvent]
    compliance_events: list[ComplianceEventSummary]
    has_verified_identity: bool


class PrivacyService:
    def __init__(
        self,
        store: SettlementStore,
        locks: LockManager,
        identity: IdentityCoordinator,
        ledger: ComplianceLedger,
    ) -> None:
        self.store = store
        self.locks = locks
        self.identity = identity
        self.ledger = ledger

    async def _load(self, buyer_id: str) -> BuyerAccount:
        buyer = await self.store.get_buyer(buyer_id)
        if buyer is None or buyer.is_deleted:
            raise NotFoundError("Buyer account not found")
        return buyer

    async def delete_buyer_data(self, buyer_id: str) -> DeletionReport:
        """
        Delete a buyer's personal data.

        Raises:
            NotFoundError: Unknown or already deleted buyer
            InvalidStateError: A verification attempt is in flight
        """
        async with self.locks.hold(buyer_id):
            buyer = await self._load(buyer_id)
            if buyer.settlement_state in IN_FLIGHT_STATES:
                raise InvalidStateError(
                    "Cannot delete data while a verification is in progress",
                    state=buyer.settlement_state.value,
                )

            secrets_deleted = await self.identity.purge(buyer.id)
            events = await self.ledger.anonymize(buyer.id)
            payments = await self.store.anonymize_payments(buyer.id)

            buyer.email = None
            buyer.first_name = None
            buyer.last_name = None
            buyer.kyc_session_id = None
            buyer.payment_hold_ref = None
            buyer.current_payment_id = None
            buyer.auth_id = f"deleted:{buyer.id}"
            buyer.deleted_at = utc_now()
            buyer.updated_at = buyer.deleted_at
            await self.store.save_buyer(buyer)

        logger.info(
            "buyer_data_deleted",
            buyer_reference_id=buyer.buyer_reference_id,
            compliance_events=events,
            payment_events=payments,
        )
        return DeletionReport(
            buyer_reference_id=buyer.buyer_reference_id,
            secrets_deleted=secrets_deleted,
            compliance_events_anonymized=events,
            payment_events_anonymized=payments,
        )

    async def export_buyer_data(self, buyer_id: str) -> BuyerDataExport:
        """Collect a buyer's profile, payments and compliance summaries."""
        buyer = await self._load(buyer_id)

        summaries: list[ComplianceEventSummary] = []
        page = 1
        while True:
            result = await self.ledger.query(
                ComplianceQuery(buyer_id=buyer.id, page=page, page_size=EXPORT_PAGE_SIZE)
            )
            summaries.extend(ComplianceEventSummary.from_event(e) for e in result.items)
            if page * EXPORT_PAGE_SIZE >= result.total or not result.items:
                break
            page += 1

        logger.info("buyer_data_exported", buyer_reference_id=buyer.buyer_reference_id)
        return BuyerDataExport(
            account=buyer.model_dump(
                mode="json",
                include={
                    "buyer_reference_id",
                    "email",
                    "first_name",
                    "last_name",
                    "settlement_state",
                    "payment_status",
                    "verification_status",
                    "attempt_count",
                    "verified_at",
                    "verification_expires_at",
                    "created_at",
                },
            ),
            payments=await self.store.list_payments(buyer.id),
            compliance_events=summaries,
            has_verified_identity=await self.store.get_secrets(buyer.id) is not None,
        )
