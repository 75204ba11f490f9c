"""
Compliance Ledger
=================

Append-only store of verification outcomes.

- One event per verification attempt, enforced by the ``attempt_key``
  natural key with insert-if-absent semantics.
- Events are never changed after creation, except to attach a ledger
  anchor reference that arrives later.
- Deleting a buyer nulls the owning key only; reference ids and outcomes
  stay.

Version: 0.1.0
"""

from typing import Any

from services.settlement.storage.base import SettlementStore
from shared.blockchain import LedgerAnchorClient
from shared.errors import NotFoundError
from shared.logging import get_logger
from shared.models import ComplianceEvent, ComplianceQuery, LedgerPage
from shared.zk import commitment_hash

logger = get_logger(__name__)


def buyer_attempt_key(buyer_id: str, payment_id: str) -> str:
    """Natural key of a buyer's settlement attempt."""
    return f"buyer:{buyer_id}:{payment_id}"


def dealer_attempt_key(dealer_id: str, request_id: str) -> str:
    """Natural key of a dealer verification request."""
    return f"dealer:{dealer_id}:{request_id}"


def event_digest(event: ComplianceEvent) -> str:
    """
    Commitment hash over the immutable content of an event.

    Owning keys and the anchor reference are excluded, so the digest
    survives anonymization and anchoring.
    """
    return commitment_hash(
        {
            "id": event.id,
            "attempt_key": event.attempt_key,
            "buyer_reference_id": event.buyer_reference_id,
            "dealer_reference_id": event.dealer_reference_id,
            "verification_data": event.verification_data,
            "age_verified": event.age_verified,
            "address_verified": event.address_verified,
            "confidence": event.confidence,
            "created_at": event.created_at,
        }
    )


class ComplianceLedger:
    """
    Compliance event ledger with optional anchoring.

    Usage:
        ledger = ComplianceLedger(store, MockLedgerAnchor())

        event, created = await ledger.append(draft)
        page = await ledger.query(ComplianceQuery(dealer_id=dealer.id))
    """

    def __init__(
        self,
        store: SettlementStore,
        anchor: LedgerAnchorClient | None = None,
        anchor_enabled: bool = True,
    ) -> None:
        self.store = store
        self.anchor = anchor
        self.anchor_enabled = anchor_enabled and anchor is not None

    async def append(self, draft: ComplianceEvent) -> tuple[ComplianceEvent, bool]:
        """
        Append ``draft`` unless its attempt already has an event.

        Returns:
            (stored event, created). A repeat returns the original event.
        """
        event, created = await self.store.insert_compliance_event_if_absent(draft)
        if created:
            logger.info(
                "compliance_event_appended",
                compliance_event_id=event.id,
                attempt_key=event.attempt_key,
                buyer_reference_id=event.buyer_reference_id,
                dealer_reference_id=event.dealer_reference_id,
                age_verified=event.age_verified,
                address_verified=event.address_verified,
            )
        else:
            logger.info(
                "compliance_event_exists",
                compliance_event_id=event.id,
                attempt_key=event.attempt_key,
            )

        if self.anchor_enabled and event.anchor_ref is None:
            event = await self._try_anchor(event)
        return event, created

    async def _try_anchor(self, event: ComplianceEvent) -> ComplianceEvent:
        # The event is already durable; a failed anchor is attached later
        try:
            return await self.attach_anchor(event.id)
        except Exception as e:
            logger.warning(
                "compliance_anchor_deferred",
                compliance_event_id=event.id,
                error_type=type(e).__name__,
            )
            return event

    async def attach_anchor(self, event_id: str) -> ComplianceEvent:
        """
        Anchor an event's digest and store the anchor reference.

        Raises:
            NotFoundError: Unknown event
        """
        event = await self.store.get_compliance_event(event_id)
        if event is None:
            raise NotFoundError("Compliance event not found")
        if event.anchor_ref is not None or self.anchor is None:
            return event

        metadata: dict[str, Any] = {
            "compliance_event_id": event.id,
            "buyer_reference_id": event.buyer_reference_id,
            "dealer_reference_id": event.dealer_reference_id,
        }
        anchor_ref = await self.anchor.store(event_digest(event), metadata=metadata)
        attached = await self.store.set_compliance_anchor(event.id, anchor_ref)

        stored = await self.store.get_compliance_event(event.id)
        if stored is None:
            raise NotFoundError("Compliance event not found")
        if attached:
            logger.info("compliance_event_anchored", compliance_event_id=event.id, anchor_ref=anchor_ref)
        return stored

    async def verify_anchor(self, event_id: str) -> bool:
        """Check that an event's anchor still matches its content."""
        event = await self.store.get_compliance_event(event_id)
        if event is None:
            raise NotFoundError("Compliance event not found")
        if event.anchor_ref is None or self.anchor is None:
            return False
        return await self.anchor.verify(event.anchor_ref, event_digest(event))

    async def get(self, event_id: str) -> ComplianceEvent:
        event = await self.store.get_compliance_event(event_id)
        if event is None:
            raise NotFoundError("Compliance event not found")
        return event

    async def get_by_attempt(self, attempt_key: str) -> ComplianceEvent | None:
        return await self.store.get_compliance_event_by_key(attempt_key)

    async def anonymize(self, buyer_id: str) -> int:
        """Null the owning buyer key on every event of ``buyer_id``."""
        changed = await self.store.anonymize_compliance_events(buyer_id)
        logger.info("compliance_events_anonymized", buyer_id=buyer_id, count=changed)
        return changed

    async def query(self, query: ComplianceQuery) -> LedgerPage:
        """Read-only, paginated, newest first."""
        return await self.store.query_compliance_events(query)
