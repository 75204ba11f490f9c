"""
Dealer Verification Service
===========================

Cross-party check: a dealer asks whether a verified buyer meets the age
threshold and ships to a given address, and receives booleans, a
confidence score and proof hashes. No buyer PII is ever returned.

Flow per request:
1. ``compliance_ack`` must be true
2. a repeated ``request_id`` returns the recorded event without charging
3. one credit is reserved before any buyer lookup
4. the buyer must be verified and unexpired
5. proofs are generated from the decrypted attributes
6. the outcome is appended to the compliance ledger

Version: 0.1.0
"""

from typing import Any

from pydantic import BaseModel, Field

from services.settlement.services.identity import IdentityCoordinator
from services.settlement.services.ledger import ComplianceLedger, dealer_attempt_key
from services.settlement.services.quota import QuotaMeter
from services.settlement.storage.base import SettlementStore
from shared.errors import (
    ErrorKind,
    InvalidStateError,
    NotFoundError,
    SettlementError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models import (
    BuyerAccount,
    ComplianceEvent,
    DealerAccount,
    VerificationStatus,
    new_id,
)
from shared.zk import VerificationProver

logger = get_logger(__name__)

BUYER_UNAVAILABLE = "Buyer is not verified"


class DealerVerifyRequest(BaseModel):
    """Dealer verification request."""

    buyer_email: str = Field(..., min_length=3, max_length=320)
    shipping_address: str | dict[str, Any]
    compliance_ack: bool = Field(
        default=False, description="Dealer acknowledges the AB1263 disclosure"
    )
    request_id: str | None = Field(
        default=None,
        max_length=128,
        description="Client idempotency key; a repeat returns the recorded result",
    )


class DealerVerifyResult(BaseModel):
    """PII-free verification outcome."""

    age_verified: bool
    address_verified: bool
    confidence: float
    compliance_event_id: str
    proof_hashes: dict[str, str]
    buyer_reference_id: str
    anchor_ref: str | None = None

    @classmethod
    def from_event(cls, event: ComplianceEvent) -> "DealerVerifyResult":
        return cls(
            age_verified=event.age_verified,
            address_verified=event.address_verified,
            confidence=event.confidence,
            compliance_event_id=event.id,
            proof_hashes=dict(event.verification_data.get("proof_hashes", {})),
            buyer_reference_id=event.buyer_reference_id,
            anchor_ref=event.anchor_ref,
        )


class BatchVerifyRequest(BaseModel):
    requests: list[DealerVerifyRequest] = Field(..., min_length=1)


class BatchItemResult(BaseModel):
    """One entry of a batch response: a result or an error kind."""

    index: int
    success: bool
    result: DealerVerifyResult | None = None
    error: ErrorKind | None = None
    message: str | None = None


class BatchVerifyResult(BaseModel):
    results: list[BatchItemResult]
    succeeded: int
    failed: int


class DealerVerificationService:
    """
    Dealer-facing verification.

    Usage:
        service = DealerVerificationService(store, quota, identity, prover, ledger)

        result = await service.verify(dealer, DealerVerifyRequest(
            buyer_email="buyer@example.com",
            shipping_address="123 Main St, Los Angeles, CA 90210",
            compliance_ack=True,
        ))
    """

    def __init__(
        self,
        store: SettlementStore,
        quota: QuotaMeter,
        identity: IdentityCoordinator,
        prover: VerificationProver,
        ledger: ComplianceLedger,
        batch_limit: int = 50,
    ) -> None:
        self.store = store
        self.quota = quota
        self.identity = identity
        self.prover = prover
        self.ledger = ledger
        self.batch_limit = batch_limit

    async def _verified_buyer(self, email: str) -> BuyerAccount:
        buyer = await self.store.get_buyer_by_email(email.strip().lower())
        if buyer is None or buyer.is_deleted:
            raise NotFoundError(BUYER_UNAVAILABLE)

        status = buyer.effective_verification_status()
        if status == VerificationStatus.EXPIRED:
            raise InvalidStateError(BUYER_UNAVAILABLE)
        if status != VerificationStatus.VERIFIED:
            raise NotFoundError(BUYER_UNAVAILABLE)
        return buyer

    async def verify(
        self, dealer: DealerAccount, request: DealerVerifyRequest
    ) -> DealerVerifyResult:
        """
        Verify a buyer for a dealer and record the outcome.

        Raises:
            ValidationError: Disclosure not acknowledged
            QuotaExceededError: No credits left
            NotFoundError: Buyer unknown or not verified
            InvalidStateError: Buyer verification expired
        """
        if not request.compliance_ack:
            raise ValidationError(
                "AB1263 compliance disclosure must be acknowledged", field="compliance_ack"
            )

        attempt_key = dealer_attempt_key(dealer.id, request.request_id or new_id())
        if request.request_id is not None:
            existing = await self.ledger.get_by_attempt(attempt_key)
            if existing is not None:
                logger.info("dealer_verification_repeat", compliance_event_id=existing.id)
                return DealerVerifyResult.from_event(existing)

        await self.quota.reserve(dealer.id)
        try:
            event, created = await self._check(dealer, request, attempt_key)
        except SettlementError as e:
            restored = await self.quota.settle_failed_attempt(dealer.id)
            logger.info(
                "dealer_verification_failed",
                dealer_reference_id=dealer.dealer_reference_id,
                error_kind=e.kind.value,
                credit_restored=restored,
            )
            raise

        if not created:
            # Concurrent repeat of the same request_id
            await self.quota.release(dealer.id)

        logger.info(
            "dealer_verification_completed",
            dealer_reference_id=dealer.dealer_reference_id,
            buyer_reference_id=event.buyer_reference_id,
            compliance_event_id=event.id,
            age_verified=event.age_verified,
            address_verified=event.address_verified,
        )
        return DealerVerifyResult.from_event(event)

    async def _check(
        self, dealer: DealerAccount, request: DealerVerifyRequest, attempt_key: str
    ) -> tuple[ComplianceEvent, bool]:
        buyer = await self._verified_buyer(request.buyer_email)
        attributes, secrets = await self.identity.load_identity(buyer.id)

        evaluation = self.prover.evaluate(
            attributes,
            subject=buyer.buyer_reference_id,
            salt=secrets.commitment_salt,
            candidate_address=request.shipping_address,
        )

        data = evaluation.to_payload()
        data["kind"] = "dealer_verification"
        return await self.ledger.append(
            ComplianceEvent(
                attempt_key=attempt_key,
                buyer_id=buyer.id,
                dealer_id=dealer.id,
                buyer_reference_id=buyer.buyer_reference_id,
                dealer_reference_id=dealer.dealer_reference_id,
                verification_data=data,
                age_verified=evaluation.age_verified,
                address_verified=evaluation.address_verified,
                confidence=evaluation.confidence,
            )
        )

    async def verify_batch(
        self, dealer: DealerAccount, requests: list[DealerVerifyRequest]
    ) -> BatchVerifyResult:
        """
        Verify up to ``batch_limit`` requests in order.

        Each item is charged and recorded like a single ``verify``; one
        failing item does not stop the rest.

        Raises:
            ValidationError: Empty batch or more than ``batch_limit`` items
        """
        if not requests:
            raise ValidationError("Batch is empty")
        if len(requests) > self.batch_limit:
            raise ValidationError(
                f"Batch exceeds the limit of {self.batch_limit} requests",
                limit=self.batch_limit,
            )

        results: list[BatchItemResult] = []
        for index, request in enumerate(requests):
            try:
                result = await self.verify(dealer, request)
            except SettlementError as e:
                results.append(
                    BatchItemResult(index=index, success=False, error=e.kind, message=e.message)
                )
            else:
                results.append(BatchItemResult(index=index, success=True, result=result))

        succeeded = sum(1 for item in results if item.success)
        return BatchVerifyResult(
            results=results, succeeded=succeeded, failed=len(results) - succeeded
        )
