"""
Settlement State Machine
========================

Drives one buyer's verification attempt through the payment hold, the KYC
session, the proof engine and the compliance ledger.

Transitions (event: allowed states -> next state):

    start                : pending, failed, rejected_refunded -> authorized
    sessionOpened        : authorized                          -> checking
    decisionApproved     : checking, authorized                -> passed
    decisionDeclined     : checking, authorized                -> rejected_refunded
    captureSucceeded     : passed                              -> completed
    captureFailed        : passed                              -> error
    authorizationFailed  : pending, failed, rejected_refunded,
                           authorized                          -> failed
    holdExpired          : authorized, checking                -> failed
    refunded             : completed                           -> completed_refunded

Every other (state, event) pair raises ``InvalidStateError`` and leaves the
state unchanged. All transitions for a buyer run under that buyer's lock.

Version: 0.1.0
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from services.settlement.services.identity import IdentityCoordinator
from services.settlement.services.ledger import ComplianceLedger, buyer_attempt_key
from services.settlement.services.notifier import ResolutionNotifier
from services.settlement.services.payment_hold import PaymentHoldManager
from services.settlement.storage.base import SettlementStore
from services.settlement.storage.locks import LockManager
from shared.config.settings import VerificationPolicySettings
from shared.errors import (
    DuplicateRequestError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models import (
    BuyerAccount,
    BuyerSecrets,
    ComplianceEvent,
    KYCDecision,
    PaymentEvent,
    PaymentEventStatus,
    PaymentStatus,
    SettlementEvent,
    SettlementState,
    VerificationStatus,
    utc_now,
)
from shared.models.settlement import TERMINAL_STATES
from shared.zk import (
    IdentityAttributes,
    IdentityEvaluation,
    VerificationProver,
    commitment_hash,
)

logger = get_logger(__name__)

S = SettlementState
E = SettlementEvent

TRANSITIONS: dict[SettlementEvent, tuple[frozenset[SettlementState], SettlementState]] = {
    E.START: (frozenset({S.PENDING, S.FAILED, S.REJECTED_REFUNDED}), S.AUTHORIZED),
    E.SESSION_OPENED: (frozenset({S.AUTHORIZED}), S.CHECKING),
    E.DECISION_APPROVED: (frozenset({S.CHECKING, S.AUTHORIZED}), S.PASSED),
    E.DECISION_DECLINED: (frozenset({S.CHECKING, S.AUTHORIZED}), S.REJECTED_REFUNDED),
    E.CAPTURE_SUCCEEDED: (frozenset({S.PASSED}), S.COMPLETED),
    E.CAPTURE_FAILED: (frozenset({S.PASSED}), S.ERROR),
    E.AUTHORIZATION_FAILED: (
        frozenset({S.PENDING, S.FAILED, S.REJECTED_REFUNDED, S.AUTHORIZED}),
        S.FAILED,
    ),
    E.HOLD_EXPIRED: (frozenset({S.AUTHORIZED, S.CHECKING}), S.FAILED),
    E.REFUNDED: (frozenset({S.COMPLETED}), S.COMPLETED_REFUNDED),
}

# States at or past an event's target: a repeat of the event is a no-op.
# ``passed`` is deliberately absent for approvals, which resume the capture.
SATISFIED_BY: dict[SettlementEvent, frozenset[SettlementState]] = {
    E.SESSION_OPENED: frozenset({S.CHECKING, S.PASSED, S.COMPLETED, S.COMPLETED_REFUNDED}),
    E.DECISION_APPROVED: frozenset({S.COMPLETED, S.COMPLETED_REFUNDED, S.ERROR}),
    E.DECISION_DECLINED: frozenset({S.REJECTED_REFUNDED}),
    E.CAPTURE_SUCCEEDED: frozenset({S.COMPLETED, S.COMPLETED_REFUNDED}),
    E.CAPTURE_FAILED: frozenset({S.ERROR}),
    E.REFUNDED: frozenset({S.COMPLETED_REFUNDED}),
}


def next_state(state: SettlementState, event: SettlementEvent) -> SettlementState:
    """
    Look up the transition for ``event`` in ``state``.

    Raises:
        InvalidStateError: The pair is not in the transition table
    """
    allowed, target = TRANSITIONS[event]
    if state not in allowed:
        raise InvalidStateError(
            f"Cannot apply '{event.value}' while the attempt is '{state.value}'",
            state=state.value,
            event=event.value,
        )
    return target


def is_satisfied(state: SettlementState, event: SettlementEvent) -> bool:
    """True if ``event`` has already taken effect in ``state``."""
    return state in SATISFIED_BY.get(event, frozenset())


def _hold_id(payment: PaymentEvent) -> str:
    if payment.hold_id is None:
        raise InvalidStateError("Payment has no provider hold", payment_id=payment.id)
    return payment.hold_id


class PaymentEventKind(str, Enum):
    """Asynchronous payment provider notifications."""

    CAPTURED = "hold.captured"
    RELEASED = "hold.released"
    REFUNDED = "hold.refunded"
    CAPTURE_FAILED = "hold.capture_failed"


class RetryResult(str, Enum):
    """What a webhook retry request did."""

    ALREADY_RESOLVED = "already_resolved"
    DECISION_REAPPLIED = "decision_reapplied"
    AWAITING_DECISION = "awaiting_decision"
    DEFERRED = "deferred"
    NO_ACTIVE_ATTEMPT = "no_active_attempt"


@dataclass(frozen=True)
class StartResult:
    """Handles the client needs to complete verification."""

    payment_id: str
    hold_id: str
    session_id: str
    session_token: str
    state: SettlementState
    payment_status: PaymentStatus
    verification_status: VerificationStatus


@dataclass(frozen=True)
class RetryReport:
    result: RetryResult
    state: SettlementState


class SettlementOrchestrator:
    """
    The settlement state machine.

    Usage:
        orchestrator = SettlementOrchestrator(
            store, locks, holds, identity, prover, ledger, notifier, settings.policy
        )

        started = await orchestrator.start(buyer.id)
        state = await orchestrator.apply_decision(started.session_id, KYCDecision.APPROVED)
    """

    def __init__(
        self,
        store: SettlementStore,
        locks: LockManager,
        holds: PaymentHoldManager,
        identity: IdentityCoordinator,
        prover: VerificationProver,
        ledger: ComplianceLedger,
        notifier: ResolutionNotifier,
        policy: VerificationPolicySettings,
    ) -> None:
        self.store = store
        self.locks = locks
        self.holds = holds
        self.identity = identity
        self.prover = prover
        self.ledger = ledger
        self.notifier = notifier
        self.policy = policy

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_buyer(self, buyer_id: str) -> BuyerAccount:
        buyer = await self.store.get_buyer(buyer_id)
        if buyer is None or buyer.is_deleted:
            raise NotFoundError("Buyer account not found")
        return buyer

    async def _transition(self, buyer: BuyerAccount, event: SettlementEvent) -> SettlementState:
        previous = buyer.settlement_state
        target = next_state(previous, event)
        buyer.move_to(target)
        await self.store.save_buyer(buyer)

        logger.info(
            "settlement_transition",
            buyer_reference_id=buyer.buyer_reference_id,
            settlement_event=event.value,
            from_state=previous.value,
            to_state=target.value,
        )
        self.notifier.notify(buyer.id)
        return target

    async def _current_payment(self, buyer: BuyerAccount) -> PaymentEvent:
        if buyer.current_payment_id is None:
            raise InvalidStateError("No payment is attached to the current attempt")
        payment = await self.store.get_payment(buyer.current_payment_id)
        if payment is None or payment.hold_id is None:
            raise NotFoundError("Payment for the current attempt not found")
        return payment

    def _evaluate(
        self, buyer: BuyerAccount, secrets: BuyerSecrets, attributes: IdentityAttributes
    ) -> IdentityEvaluation:
        return self.prover.evaluate(
            attributes,
            subject=buyer.buyer_reference_id,
            salt=secrets.commitment_salt,
        )

    async def _record_outcome(
        self,
        buyer: BuyerAccount,
        payment: PaymentEvent,
        decision: KYCDecision,
        evaluation: IdentityEvaluation | None,
    ) -> ComplianceEvent:
        attempt_key = buyer_attempt_key(buyer.id, payment.id)
        if evaluation is not None:
            data = evaluation.to_payload()
            age_verified = evaluation.age_verified
            address_verified = evaluation.address_verified
            confidence = evaluation.confidence
        else:
            data = {
                "proof_hashes": {},
                "decision_commitment": commitment_hash(
                    {
                        "attempt_key": attempt_key,
                        "session_id": buyer.kyc_session_id,
                        "decision": decision.value,
                    }
                ),
            }
            age_verified = address_verified = False
            confidence = 0.0

        data.update({"kind": "buyer_settlement", "decision": decision.value})
        event, _ = await self.ledger.append(
            ComplianceEvent(
                attempt_key=attempt_key,
                buyer_id=buyer.id,
                buyer_reference_id=buyer.buyer_reference_id,
                verification_data=data,
                age_verified=age_verified,
                address_verified=address_verified,
                confidence=confidence,
            )
        )
        return event

    # =========================================================================
    # Start
    # =========================================================================

    async def start(self, buyer_id: str) -> StartResult:
        """
        Begin a verification attempt: authorize the hold, open a session.

        Raises:
            InvalidStateError: An attempt is in flight or already completed
            ConflictError: An open payment already exists
            ExternalServiceError: Hold or session could not be created; the
                attempt is left in ``failed`` with no hold outstanding
        """
        async with self.locks.hold(buyer_id):
            buyer = await self._load_buyer(buyer_id)
            next_state(buyer.settlement_state, E.START)

            try:
                payment = await self.holds.authorize(buyer)
            except ExternalServiceError:
                await self._transition(buyer, E.AUTHORIZATION_FAILED)
                raise

            buyer.attempt_count += 1
            buyer.current_payment_id = payment.id
            buyer.payment_hold_ref = payment.hold_id
            buyer.kyc_session_id = None
            buyer.last_decision = None
            await self._transition(buyer, E.START)

            try:
                session = await self.identity.create_session(buyer)
            except ExternalServiceError:
                await self._abandon_hold(payment)
                await self._transition(buyer, E.AUTHORIZATION_FAILED)
                raise

            payment.verification_session_id = session.session_id
            await self.store.save_payment(payment)
            buyer.kyc_session_id = session.session_id
            state = await self._transition(buyer, E.SESSION_OPENED)

            return StartResult(
                payment_id=payment.id,
                hold_id=payment.hold_id or "",
                session_id=session.session_id,
                session_token=session.session_token,
                state=state,
                payment_status=buyer.payment_status,
                verification_status=buyer.verification_status,
            )

    async def _abandon_hold(self, payment: PaymentEvent) -> None:
        try:
            await self.holds.release(_hold_id(payment))
        except ExternalServiceError:
            stored = await self.store.get_payment(payment.id)
            await self.holds.mark_error(stored or payment, "release_failed_after_session_error")

    # =========================================================================
    # KYC decisions
    # =========================================================================

    async def apply_decision(
        self,
        session_id: str,
        decision: KYCDecision,
        reference_id: str | None = None,
    ) -> SettlementState:
        """
        Apply a KYC decision to the attempt that owns ``session_id``.

        Raises:
            NotFoundError: No attempt has this session yet (deliver later)
            DuplicateRequestError: Already applied, or the session is stale
            ValidationError: ``reference_id`` does not match the buyer
            InvalidStateError: The decision cannot apply in the current state
            ExternalServiceError: A provider call failed; state is unchanged
        """
        payment = await self.store.get_payment_by_session(session_id)
        if payment is None:
            raise NotFoundError("Unknown verification session", session_id=session_id)
        if payment.buyer_id is None:
            raise DuplicateRequestError("Verification attempt is closed")

        async with self.locks.hold(payment.buyer_id):
            buyer = await self._load_buyer(payment.buyer_id)
            if reference_id is not None and reference_id != buyer.buyer_reference_id:
                raise ValidationError("Reference id does not match the verification session")

            state = buyer.settlement_state
            if buyer.kyc_session_id != session_id:
                logger.info("stale_decision_ignored", session_id=session_id, state=state.value)
                raise DuplicateRequestError(
                    "Decision belongs to a previous attempt", state=state.value
                )

            event = (
                E.DECISION_APPROVED if decision == KYCDecision.APPROVED else E.DECISION_DECLINED
            )
            if is_satisfied(state, event):
                logger.info("decision_duplicate", session_id=session_id, state=state.value)
                raise DuplicateRequestError("Decision already applied", state=state.value)

            if state == S.PASSED and decision == KYCDecision.APPROVED:
                return await self._capture_and_complete(buyer)

            next_state(state, event)
            if buyer.last_decision != decision:
                buyer.last_decision = decision
                await self.store.save_buyer(buyer)

            if decision == KYCDecision.DECLINED:
                return await self._decline(buyer, None)
            return await self._approve(buyer)

    async def _approve(self, buyer: BuyerAccount) -> SettlementState:
        if buyer.kyc_session_id is None:
            raise InvalidStateError("No verification session for the current attempt")
        attributes, secrets = await self.identity.record_verified_identity(
            buyer, buyer.kyc_session_id
        )
        evaluation = self._evaluate(buyer, secrets, attributes)
        if not evaluation.passed:
            logger.warning(
                "verified_identity_failed_policy",
                buyer_reference_id=buyer.buyer_reference_id,
                age_verified=evaluation.age_verified,
                address_verified=evaluation.address_verified,
            )
            return await self._decline(buyer, evaluation)

        await self._transition(buyer, E.DECISION_APPROVED)
        return await self._capture_and_complete(buyer, secrets, evaluation)

    async def _decline(
        self, buyer: BuyerAccount, evaluation: IdentityEvaluation | None
    ) -> SettlementState:
        payment = await self._current_payment(buyer)
        await self.holds.release(_hold_id(payment))
        await self._record_outcome(buyer, payment, KYCDecision.DECLINED, evaluation)
        return await self._transition(buyer, E.DECISION_DECLINED)

    async def _capture_and_complete(
        self,
        buyer: BuyerAccount,
        secrets: BuyerSecrets | None = None,
        evaluation: IdentityEvaluation | None = None,
    ) -> SettlementState:
        payment = await self._current_payment(buyer)
        try:
            await self.holds.capture(_hold_id(payment))
        except (ExternalServiceError, InvalidStateError) as e:
            logger.error(
                "capture_failed",
                buyer_reference_id=buyer.buyer_reference_id,
                payment_id=payment.id,
                error_kind=e.kind.value,
            )
            await self.holds.mark_error(payment, "capture_failed")
            return await self._transition(buyer, E.CAPTURE_FAILED)

        return await self._complete(buyer, payment, secrets, evaluation)

    async def _complete(
        self,
        buyer: BuyerAccount,
        payment: PaymentEvent,
        secrets: BuyerSecrets | None,
        evaluation: IdentityEvaluation | None,
    ) -> SettlementState:
        if secrets is None or evaluation is None:
            attributes, secrets = await self.identity.load_identity(buyer.id)
            evaluation = self._evaluate(buyer, secrets, attributes)

        await self._record_outcome(buyer, payment, KYCDecision.APPROVED, evaluation)

        now = utc_now()
        buyer.verified_at = now
        buyer.verification_expires_at = min(
            secrets.expires_at,
            now + timedelta(days=self.policy.verification_validity_days),
        )
        return await self._transition(buyer, E.CAPTURE_SUCCEEDED)

    # =========================================================================
    # Payment notifications
    # =========================================================================

    async def apply_payment_event(self, hold_id: str, kind: PaymentEventKind) -> SettlementState:
        """
        Apply an asynchronous payment notification for ``hold_id``.

        Raises:
            NotFoundError: Unknown hold (deliver later)
            DuplicateRequestError: Already reflected in persisted state
            InvalidStateError: Notification does not fit the attempt
        """
        payment = await self.store.get_payment_by_hold(hold_id)
        if payment is None:
            raise NotFoundError("Unknown payment hold", hold_id=hold_id)
        if payment.buyer_id is None:
            raise DuplicateRequestError("Payment attempt is closed")

        async with self.locks.hold(payment.buyer_id):
            payment = await self.store.get_payment_by_hold(hold_id)
            if payment is None or payment.buyer_id is None:
                raise DuplicateRequestError("Payment attempt is closed")
            buyer = await self._load_buyer(payment.buyer_id)
            state = buyer.settlement_state
            is_current = buyer.current_payment_id == payment.id

            if kind == PaymentEventKind.CAPTURED:
                if payment.status in (PaymentEventStatus.CAPTURED, PaymentEventStatus.REFUNDED):
                    raise DuplicateRequestError("Capture already recorded", state=state.value)
                self._require(is_current and state == S.PASSED, kind, state)
                await self.holds.record_capture(payment)
                return await self._complete(buyer, payment, None, None)

            if kind == PaymentEventKind.RELEASED:
                if payment.status == PaymentEventStatus.RELEASED:
                    raise DuplicateRequestError("Release already recorded", state=state.value)
                self._require(is_current and state in (S.AUTHORIZED, S.CHECKING, S.PASSED), kind, state)
                if state == S.PASSED:
                    await self.holds.record_release(payment, "released_before_capture")
                    return await self._transition(buyer, E.CAPTURE_FAILED)
                await self.holds.record_release(payment, "hold_expired")
                return await self._transition(buyer, E.HOLD_EXPIRED)

            if kind == PaymentEventKind.REFUNDED:
                if payment.status == PaymentEventStatus.REFUNDED:
                    raise DuplicateRequestError("Refund already recorded", state=state.value)
                self._require(is_current and state == S.COMPLETED, kind, state)
                await self.holds.record_refund(payment)
                return await self._transition(buyer, E.REFUNDED)

            if is_satisfied(state, E.CAPTURE_FAILED):
                raise DuplicateRequestError("Capture failure already recorded", state=state.value)
            self._require(is_current and state == S.PASSED, kind, state)
            await self.holds.mark_error(payment, "provider_capture_failed")
            return await self._transition(buyer, E.CAPTURE_FAILED)

    @staticmethod
    def _require(condition: bool, kind: PaymentEventKind, state: SettlementState) -> None:
        if not condition:
            raise InvalidStateError(
                f"Payment notification '{kind.value}' does not apply while the attempt is "
                f"'{state.value}'",
                state=state.value,
            )

    # =========================================================================
    # Retry
    # =========================================================================

    async def retry(self, buyer_id: str) -> RetryReport:
        """
        Re-apply the last known decision of an unresolved attempt.

        Terminal attempts are an idempotent no-op.

        Raises:
            ExternalServiceError: Re-applying failed; state is unchanged
        """
        buyer = await self._load_buyer(buyer_id)
        state = buyer.settlement_state

        if state in TERMINAL_STATES or state == S.COMPLETED_REFUNDED:
            return RetryReport(RetryResult.ALREADY_RESOLVED, state)
        if state in (S.PENDING, S.FAILED) or buyer.kyc_session_id is None:
            return RetryReport(RetryResult.NO_ACTIVE_ATTEMPT, state)
        if buyer.last_decision is None:
            return RetryReport(RetryResult.AWAITING_DECISION, state)

        logger.info(
            "decision_reapplying",
            buyer_reference_id=buyer.buyer_reference_id,
            decision=buyer.last_decision.value,
            state=state.value,
        )
        try:
            state = await self.apply_decision(buyer.kyc_session_id, buyer.last_decision)
        except DuplicateRequestError as e:
            return RetryReport(
                RetryResult.ALREADY_RESOLVED,
                SettlementState(e.details.get("state", state.value)),
            )
        return RetryReport(RetryResult.DECISION_REAPPLIED, state)
