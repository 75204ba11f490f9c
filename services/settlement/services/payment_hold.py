"""
Payment Hold Manager
====================

Safe-capture payments: authorize a hold before verification, then capture
it once or release it once.

Capture and release are idempotent per hold reference. The persisted
``PaymentEvent`` is checked before the provider is called, so a repeat never
reaches the provider and never charges twice.

Version: 0.1.0
"""

from services.settlement.providers.payment import PaymentProvider
from services.settlement.services.external import call_provider
from services.settlement.storage.base import SettlementStore
from shared.config.settings import ReconciliationSettings
from shared.errors import ConflictError, ExternalServiceError, InvalidStateError, NotFoundError
from shared.logging import get_logger
from shared.models import (
    BuyerAccount,
    HoldOperationResult,
    PaymentEvent,
    PaymentEventStatus,
    PaymentType,
    utc_now,
)

logger = get_logger(__name__)


def _result(payment: PaymentEvent, repeat: bool) -> HoldOperationResult:
    occurred_at = (
        payment.captured_at
        if payment.status == PaymentEventStatus.CAPTURED
        else payment.refunded_at
    )
    return HoldOperationResult(
        payment_id=payment.id,
        hold_id=payment.hold_id or "",
        status=payment.status,
        amount_cents=payment.amount_cents,
        captured_amount_cents=payment.captured_amount_cents,
        occurred_at=occurred_at,
        repeat=repeat,
    )


class PaymentHoldManager:
    """
    Authorize, capture and release verification payments.

    Usage:
        holds = PaymentHoldManager(store, MockPaymentProvider(), retry_policy)

        payment = await holds.authorize(buyer)
        result = await holds.capture(payment.hold_id)
        again = await holds.capture(payment.hold_id)  # again.repeat is True
    """

    def __init__(
        self,
        store: SettlementStore,
        provider: PaymentProvider,
        retry_policy: ReconciliationSettings,
        amount_cents: int = 200,
        currency: str = "usd",
    ) -> None:
        self.store = store
        self.provider = provider
        self.retry_policy = retry_policy
        self.amount_cents = amount_cents
        self.currency = currency

    async def authorize(
        self,
        buyer: BuyerAccount,
        amount_cents: int | None = None,
    ) -> PaymentEvent:
        """
        Create a PaymentEvent and place a manual-capture hold.

        Raises:
            ConflictError: The buyer already has a non-terminal payment
            ExternalServiceError: The hold could not be placed; the payment
                is stored as failed
        """
        existing = await self.store.get_open_payment(buyer.id)
        if existing is not None:
            logger.warning(
                "hold_conflict",
                buyer_reference_id=buyer.buyer_reference_id,
                payment_id=existing.id,
                status=existing.status.value,
            )
            raise ConflictError(
                "A verification payment is already in progress",
                payment_id=existing.id,
            )

        payment = PaymentEvent(
            buyer_id=buyer.id,
            customer_reference_id=buyer.buyer_reference_id,
            type=PaymentType.VERIFICATION,
            amount_cents=amount_cents or self.amount_cents,
            currency=self.currency,
            provider=self.provider.name,
        )
        await self.store.add_payment(payment)

        try:
            hold = await call_provider(
                self.retry_policy,
                "create_hold",
                self.provider.create_hold,
                payment.amount_cents,
                payment.customer_reference_id,
                idempotency_key=payment.idempotency_key,
                currency=payment.currency,
            )
        except ExternalServiceError:
            payment.status = PaymentEventStatus.FAILED
            payment.failure_reason = "hold_failed"
            await self.store.save_payment(payment)
            raise

        payment.hold_id = hold.hold_id
        payment.status = PaymentEventStatus.AUTHORIZED
        payment.authorized_at = utc_now()
        await self.store.save_payment(payment)

        logger.info(
            "hold_authorized",
            payment_id=payment.id,
            hold_id=payment.hold_id,
            amount_cents=payment.amount_cents,
            buyer_reference_id=buyer.buyer_reference_id,
        )
        return payment

    async def _get(self, hold_ref: str) -> PaymentEvent:
        payment = await self.store.get_payment_by_hold(hold_ref)
        if payment is None:
            raise NotFoundError("Payment hold not found", hold_id=hold_ref)
        return payment

    async def capture(self, hold_ref: str) -> HoldOperationResult:
        """
        Charge a held payment.

        A hold that is already captured returns the stored result with
        ``repeat=True`` and no provider call.

        Raises:
            NotFoundError: Unknown hold
            InvalidStateError: Hold is released, refunded or failed
            ExternalServiceError: Provider capture failed after retries
        """
        payment = await self._get(hold_ref)

        if payment.status == PaymentEventStatus.CAPTURED:
            logger.info("capture_repeat", payment_id=payment.id, hold_id=hold_ref)
            return _result(payment, repeat=True)

        if payment.status != PaymentEventStatus.AUTHORIZED:
            raise InvalidStateError(
                f"Payment cannot be captured from status '{payment.status.value}'",
                payment_id=payment.id,
                status=payment.status.value,
            )

        captured = await call_provider(
            self.retry_policy, "capture", self.provider.capture, hold_ref
        )
        return await self.record_capture(payment, captured.captured_amount_cents)

    async def record_capture(
        self, payment: PaymentEvent, captured_amount_cents: int | None = None
    ) -> HoldOperationResult:
        """Persist a capture confirmed by the provider."""
        payment.status = PaymentEventStatus.CAPTURED
        payment.captured_amount_cents = (
            captured_amount_cents if captured_amount_cents is not None else payment.amount_cents
        )
        payment.captured_at = utc_now()
        await self.store.save_payment(payment)

        logger.info(
            "hold_captured",
            payment_id=payment.id,
            hold_id=payment.hold_id,
            captured_amount_cents=payment.captured_amount_cents,
        )
        return _result(payment, repeat=False)

    async def release(self, hold_ref: str) -> HoldOperationResult:
        """
        Release a hold without charging.

        A hold that is already released returns the stored result with
        ``repeat=True`` and no provider call.

        Raises:
            NotFoundError: Unknown hold
            InvalidStateError: Hold is captured, refunded or failed
            ExternalServiceError: Provider release failed after retries
        """
        payment = await self._get(hold_ref)

        if payment.status == PaymentEventStatus.RELEASED:
            logger.info("release_repeat", payment_id=payment.id, hold_id=hold_ref)
            return _result(payment, repeat=True)

        if payment.status != PaymentEventStatus.AUTHORIZED:
            raise InvalidStateError(
                f"Payment cannot be released from status '{payment.status.value}'",
                payment_id=payment.id,
                status=payment.status.value,
            )

        await call_provider(self.retry_policy, "release", self.provider.release, hold_ref)
        return await self.record_release(payment)

    async def record_release(
        self, payment: PaymentEvent, reason: str | None = None
    ) -> HoldOperationResult:
        """Persist a release, whether requested by us or reported by the provider."""
        payment.status = PaymentEventStatus.RELEASED
        payment.refunded_at = utc_now()
        payment.failure_reason = reason
        await self.store.save_payment(payment)

        logger.info("hold_released", payment_id=payment.id, hold_id=payment.hold_id, reason=reason)
        return _result(payment, repeat=False)

    async def record_refund(self, payment: PaymentEvent) -> HoldOperationResult:
        """Persist a refund of a captured payment issued at the provider."""
        if payment.status == PaymentEventStatus.REFUNDED:
            return _result(payment, repeat=True)
        if payment.status != PaymentEventStatus.CAPTURED:
            raise InvalidStateError(
                "Only captured payments can be refunded",
                payment_id=payment.id,
                status=payment.status.value,
            )
        payment.status = PaymentEventStatus.REFUNDED
        payment.refunded_at = utc_now()
        await self.store.save_payment(payment)

        logger.info("payment_refunded", payment_id=payment.id, hold_id=payment.hold_id)
        return _result(payment, repeat=False)

    async def mark_error(self, payment: PaymentEvent, reason: str) -> None:
        """Flag a payment for manual reconciliation."""
        payment.status = PaymentEventStatus.ERROR
        payment.failure_reason = reason
        await self.store.save_payment(payment)
        logger.error(
            "payment_needs_reconciliation",
            payment_id=payment.id,
            hold_id=payment.hold_id,
            reason=reason,
        )
