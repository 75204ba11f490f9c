"""
Webhook Reconciliation Handler
==============================

Feeds at-least-once, possibly duplicated or out-of-order provider events
into the settlement state machine.

- Events whose effect is already in persisted state are acknowledged as
  duplicates, never applied twice.
- Events for sessions or holds that are not known yet, and events whose
  provider calls failed, are deferred: the sender should deliver again.
- Callers may wait a bounded time for an attempt to resolve. Waiters are
  woken by the state machine and fall back to polling persisted state.

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from services.settlement.services.notifier import ResolutionNotifier
from services.settlement.services.state_machine import (
    PaymentEventKind,
    RetryReport,
    RetryResult,
    SettlementOrchestrator,
)
from services.settlement.storage.base import SettlementStore
from shared.config.settings import ReconciliationSettings
from shared.errors import (
    ConflictError,
    DuplicateRequestError,
    ExternalServiceError,
    NotFoundError,
    Outcome,
    SettlementError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models import BuyerAccount, KYCDecision, SettlementState
from shared.models.settlement import RESOLVED_STATES

logger = get_logger(__name__)

KYC_STATUS_DECISIONS: dict[str, KYCDecision] = {
    "approved": KYCDecision.APPROVED,
    "completed": KYCDecision.APPROVED,
    "passed": KYCDecision.APPROVED,
    "declined": KYCDecision.DECLINED,
    "failed": KYCDecision.DECLINED,
}

RESOLUTION_MESSAGES: dict[SettlementState, str] = {
    SettlementState.COMPLETED: "Verification complete! Your account is ready.",
    SettlementState.REJECTED_REFUNDED: (
        "ID verification unsuccessful. No charge made. You can try again."
    ),
    SettlementState.COMPLETED_REFUNDED: "Verification complete. Your payment was refunded.",
    SettlementState.FAILED: "Payment authorization lapsed. No charge made. You can try again.",
    SettlementState.ERROR: (
        "Verification passed but the payment could not be settled. "
        "Our team will reconcile it."
    ),
}
PENDING_MESSAGE = "Verification is being processed. Please wait or refresh the page."

RETRY_MESSAGES: dict[RetryResult, str] = {
    RetryResult.ALREADY_RESOLVED: "Verification already resolved.",
    RetryResult.DECISION_REAPPLIED: "Verification decision re-applied.",
    RetryResult.AWAITING_DECISION: "Still waiting for the identity decision. Checking status...",
    RetryResult.DEFERRED: "Provider unavailable. Retry shortly.",
    RetryResult.NO_ACTIVE_ATTEMPT: "No verification attempt is in progress.",
}


@dataclass(frozen=True)
class KYCEvent:
    """Normalized KYC webhook."""

    session_id: str
    status: str
    reference_id: str | None = None

    @property
    def decision(self) -> KYCDecision | None:
        return KYC_STATUS_DECISIONS.get(self.status.lower())


@dataclass(frozen=True)
class PaymentNotification:
    """Normalized payment webhook."""

    hold_id: str
    kind: PaymentEventKind


@dataclass(frozen=True)
class Resolution:
    """Outcome of a bounded wait."""

    buyer: BuyerAccount
    resolved: bool

    @property
    def state(self) -> SettlementState:
        return self.buyer.settlement_state

    @property
    def message(self) -> str:
        if not self.resolved:
            return PENDING_MESSAGE
        return RESOLUTION_MESSAGES.get(self.state, PENDING_MESSAGE)


@dataclass(frozen=True)
class RetryOutcome:
    result: RetryResult
    state: SettlementState
    should_retry: bool
    retry_after_ms: int

    @property
    def message(self) -> str:
        return RETRY_MESSAGES[self.result]


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def parse_kyc_event(payload: Mapping[str, Any]) -> KYCEvent:
    """
    Normalize a KYC webhook.

    Accepts the Persona envelope
    (``data.attributes.payload.data.{id, attributes.status, attributes.reference-id}``)
    and the flat form ``{session_id, status, reference_id}``.

    Raises:
        ValidationError: Session id or status is missing
    """
    if isinstance(payload.get("data"), Mapping):
        inquiry = _mapping(_mapping(_mapping(payload["data"]).get("attributes")).get("payload"))
        inner = _mapping(inquiry.get("data"))
        attributes = _mapping(inner.get("attributes"))
        session_id = inner.get("id")
        status = attributes.get("status")
        reference_id = attributes.get("reference-id")
    else:
        session_id = payload.get("session_id")
        status = payload.get("status")
        reference_id = payload.get("reference_id")

    if not isinstance(session_id, str) or not session_id:
        raise ValidationError("KYC event has no session id")
    if not isinstance(status, str) or not status:
        raise ValidationError("KYC event has no status")
    return KYCEvent(
        session_id=session_id,
        status=status,
        reference_id=reference_id if isinstance(reference_id, str) else None,
    )


STRIPE_EVENT_KINDS = {
    "payment_intent.succeeded": PaymentEventKind.CAPTURED,
    "payment_intent.canceled": PaymentEventKind.RELEASED,
    "payment_intent.payment_failed": PaymentEventKind.CAPTURE_FAILED,
    "charge.refunded": PaymentEventKind.REFUNDED,
}


def _parse_stripe_event(payload: Mapping[str, Any]) -> PaymentNotification:
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        raise ValidationError("Payment event has no object")

    # Refunds arrive on the charge, which points back at its PaymentIntent
    hold_id = obj.get("payment_intent") if payload["type"] == "charge.refunded" else obj.get("id")
    if not isinstance(hold_id, str) or not hold_id:
        raise ValidationError("Payment event has no hold id")
    return PaymentNotification(hold_id=hold_id, kind=STRIPE_EVENT_KINDS[payload["type"]])


def parse_payment_event(payload: Mapping[str, Any]) -> PaymentNotification:
    """
    Normalize a payment webhook.

    Accepts the flat ``{hold_id, type}`` shape and Stripe events
    (``{type: "payment_intent.canceled", data: {object: {...}}}``).

    Raises:
        ValidationError: Missing hold id or unknown type
    """
    event_type = payload.get("type")
    if isinstance(event_type, str) and event_type in STRIPE_EVENT_KINDS:
        return _parse_stripe_event(payload)

    hold_id = payload.get("hold_id")
    if not isinstance(hold_id, str) or not hold_id:
        raise ValidationError("Payment event has no hold id")
    try:
        kind = PaymentEventKind(payload.get("type"))
    except ValueError as e:
        raise ValidationError("Unsupported payment event type") from e
    return PaymentNotification(hold_id=hold_id, kind=kind)


class ReconciliationHandler:
    """
    Webhook entry point of the settlement core.

    Usage:
        handler = ReconciliationHandler(orchestrator, store, notifier, settings.reconciliation)

        outcome = await handler.handle_kyc_event(payload)
        if outcome.should_retry:
            ...  # answer the provider with a retryable status
    """

    def __init__(
        self,
        orchestrator: SettlementOrchestrator,
        store: SettlementStore,
        notifier: ResolutionNotifier,
        settings: ReconciliationSettings,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.notifier = notifier
        self.settings = settings

    async def _dispatch(
        self,
        operation: str,
        func: Callable[..., Awaitable[SettlementState]],
        *args: Any,
    ) -> Outcome:
        try:
            state = await func(*args)
        except DuplicateRequestError as e:
            logger.info("webhook_duplicate", operation=operation, message=e.message)
            return Outcome.duplicate(e.details.get("state"), e.message)
        except (NotFoundError, ConflictError, ExternalServiceError) as e:
            logger.warning("webhook_deferred", operation=operation, error_kind=e.kind.value)
            return Outcome.deferred(e.kind, self.settings.retry_after_ms, message=e.message)
        except SettlementError as e:
            logger.warning("webhook_rejected", operation=operation, error_kind=e.kind.value)
            return Outcome.rejected(e)

        logger.info("webhook_applied", operation=operation, state=state.value)
        return Outcome.applied(state.value)

    async def handle_kyc_event(self, payload: Mapping[str, Any]) -> Outcome:
        """Apply a KYC decision webhook."""
        try:
            event = parse_kyc_event(payload)
        except ValidationError as e:
            return Outcome.rejected(e)

        decision = event.decision
        if decision is None:
            logger.info("kyc_status_ignored", session_id=event.session_id, status=event.status)
            return Outcome.ignored(f"Status '{event.status}' has no effect")

        return await self._dispatch(
            "kyc_decision",
            self.orchestrator.apply_decision,
            event.session_id,
            decision,
            event.reference_id,
        )

    async def handle_payment_event(self, payload: Mapping[str, Any]) -> Outcome:
        """Apply a payment provider webhook."""
        try:
            notification = parse_payment_event(payload)
        except ValidationError as e:
            return Outcome.rejected(e)

        return await self._dispatch(
            notification.kind.value,
            self.orchestrator.apply_payment_event,
            notification.hold_id,
            notification.kind,
        )

    async def retry(self, buyer_id: str) -> RetryOutcome:
        """
        Client-requested retry. Idempotent.

        Raises:
            NotFoundError: Unknown buyer
        """
        try:
            report = await self.orchestrator.retry(buyer_id)
        except (ExternalServiceError, ConflictError) as e:
            logger.warning("retry_deferred", buyer_id=buyer_id, error_kind=e.kind.value)
            buyer = await self.store.get_buyer(buyer_id)
            if buyer is None:
                raise NotFoundError("Buyer account not found") from e
            report = RetryReport(RetryResult.DEFERRED, buyer.settlement_state)

        should_retry = report.result in (RetryResult.AWAITING_DECISION, RetryResult.DEFERRED)
        return RetryOutcome(
            result=report.result,
            state=report.state,
            should_retry=should_retry,
            retry_after_ms=self.settings.retry_after_ms if should_retry else 0,
        )

    async def wait_for_resolution(
        self, buyer_id: str, timeout_seconds: float | None = None
    ) -> Resolution:
        """
        Wait up to ``timeout_seconds`` for the buyer's attempt to resolve.

        Re-reads persisted state whenever the state machine signals a
        transition and at least every ``poll_interval_ms``. No lock is held
        while waiting.

        Raises:
            NotFoundError: Unknown buyer
        """
        timeout = self.settings.wait_timeout_seconds if timeout_seconds is None else timeout_seconds
        interval = self.settings.poll_interval_ms / 1000
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout, 0.0)

        wake = self.notifier.subscribe(buyer_id)
        try:
            while True:
                wake.clear()
                buyer = await self.store.get_buyer(buyer_id)
                if buyer is None:
                    raise NotFoundError("Buyer account not found")
                if buyer.settlement_state in RESOLVED_STATES:
                    return Resolution(buyer=buyer, resolved=True)

                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info(
                        "resolution_wait_timeout",
                        buyer_reference_id=buyer.buyer_reference_id,
                        state=buyer.settlement_state.value,
                    )
                    return Resolution(buyer=buyer, resolved=False)

                try:
                    await asyncio.wait_for(wake.wait(), timeout=min(interval, remaining))
                except TimeoutError:
                    pass
        finally:
            self.notifier.unsubscribe(buyer_id, wake)
