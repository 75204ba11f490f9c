"""
Stripe Payment Provider
=======================

Manual-capture PaymentIntents: ``capture_method="manual"`` places the hold,
``capture`` charges it and ``cancel`` releases it.

The Stripe SDK is synchronous, so calls run in a worker thread.

Version: 0.1.0
"""

import asyncio
from typing import Any

import stripe

from services.settlement.providers.errors import ProviderError
from services.settlement.providers.payment import (
    CaptureResult,
    HoldResult,
    PaymentProvider,
    ReleaseResult,
)
from shared.logging import get_logger

logger = get_logger(__name__)

_TRANSIENT_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


class StripePaymentProvider(PaymentProvider):
    """
    Payment holds via Stripe.

    Usage:
        provider = StripePaymentProvider(api_key=settings.payment.stripe_secret_key.get_secret_value())
        hold = await provider.create_hold(200, "BUY_1A2B3C4D", idempotency_key=payment.id)
    """

    name = "stripe"

    def __init__(self, api_key: str, currency: str = "usd", webhook_secret: str = "") -> None:
        if not api_key:
            raise ValueError("Stripe secret key is required for the stripe provider")
        self.client = stripe.StripeClient(api_key)
        self.currency = currency
        self.webhook_secret = webhook_secret

    def _wrap(self, error: stripe.StripeError, operation: str) -> ProviderError:
        transient = isinstance(error, _TRANSIENT_ERRORS)
        logger.warning(
            "stripe_call_failed",
            operation=operation,
            error_type=type(error).__name__,
            code=getattr(error, "code", None),
            transient=transient,
        )
        return ProviderError(
            f"stripe {operation} failed",
            provider=self.name,
            transient=transient,
            status=getattr(error, "code", None),
        )

    async def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            raise self._wrap(e, operation) from e

    async def create_hold(
        self,
        amount_cents: int,
        customer_ref: str,
        idempotency_key: str,
        currency: str = "usd",
    ) -> HoldResult:
        intent = await self._call(
            "create_hold",
            self.client.payment_intents.create,
            params={
                "amount": amount_cents,
                "currency": currency or self.currency,
                "capture_method": "manual",
                "metadata": {"customer_reference_id": customer_ref},
                "description": "Age and address verification",
            },
            options={"idempotency_key": f"hold-{idempotency_key}"},
        )
        logger.info("stripe_hold_created", hold_id=intent.id, status=intent.status)
        return HoldResult(
            hold_id=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
        )

    async def capture(self, hold_id: str) -> CaptureResult:
        intent = await self._call(
            "capture",
            self.client.payment_intents.capture,
            hold_id,
            options={"idempotency_key": f"capture-{hold_id}"},
        )
        if intent.status != "succeeded":
            raise ProviderError(
                "capture did not succeed",
                provider=self.name,
                transient=intent.status == "processing",
                status=intent.status,
            )
        return CaptureResult(
            hold_id=intent.id,
            status=intent.status,
            captured_amount_cents=intent.amount_received,
        )

    async def release(self, hold_id: str) -> ReleaseResult:
        intent = await self._call(
            "release",
            self.client.payment_intents.cancel,
            hold_id,
            options={"idempotency_key": f"release-{hold_id}"},
        )
        return ReleaseResult(hold_id=intent.id, status=intent.status)

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        if not self.webhook_secret:
            logger.warning("stripe_webhook_secret_missing")
            return False
        if not signature:
            return False

        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self.webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("stripe_webhook_signature_invalid", error=str(e))
            return False
        except ValueError:
            logger.warning("stripe_webhook_payload_invalid")
            return False

        logger.info("stripe_webhook_signature_verified", event_id=event.id, event_type=event.type)
        return True

    async def health_check(self) -> dict[str, Any]:
        try:
            await self._call("health_check", self.client.balance.retrieve)
        except ProviderError as e:
            return {"status": "unhealthy", "provider": self.name, "transient": e.transient}
        return {"status": "healthy", "provider": self.name}
