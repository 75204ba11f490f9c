"""
Buyer Routes
============

Start a verification, wait for it to resolve, retry, read history and make
privacy requests. All endpoints take a buyer bearer token.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from services.settlement.container import SettlementContainer
from services.settlement.dependencies import (
    BuyerDep,
    ContainerDep,
    HistoryFilters,
    history_query,
)
from services.settlement.services.privacy import BuyerDataExport, DeletionReport
from services.settlement.services.state_machine import RetryResult
from shared.errors import NotFoundError
from shared.models import (
    BuyerAccount,
    ComplianceEventSummary,
    PaginatedResponse,
    PaymentStatus,
    SettlementState,
    VerificationStatus,
)


router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class StartVerificationResponse(BaseModel):
    """Handles for the client-side KYC flow."""

    payment_id: str
    hold_id: str
    session_id: str
    session_token: str
    payment_status: PaymentStatus
    verification_status: VerificationStatus


class WebhookCompleteRequest(BaseModel):
    payment_id: str
    session_id: str


class WebhookCompleteResponse(BaseModel):
    payment_status: PaymentStatus
    verification_status: VerificationStatus
    settlement_state: SettlementState
    resolved: bool
    message: str


class WebhookRetryRequest(BaseModel):
    payment_id: str | None = None
    session_id: str | None = None


class WebhookRetryResponse(BaseModel):
    retry_result: RetryResult
    should_retry: bool
    retry_after_ms: int
    settlement_state: SettlementState
    message: str


class BuyerStatusResponse(BaseModel):
    buyer_reference_id: str
    settlement_state: SettlementState
    payment_status: PaymentStatus
    verification_status: VerificationStatus
    attempt_count: int = Field(..., ge=0)
    verified_at: datetime | None = None
    verification_expires_at: datetime | None = None


def _status(buyer: BuyerAccount) -> BuyerStatusResponse:
    return BuyerStatusResponse(
        buyer_reference_id=buyer.buyer_reference_id,
        settlement_state=buyer.settlement_state,
        payment_status=buyer.payment_status,
        verification_status=buyer.effective_verification_status(),
        attempt_count=buyer.attempt_count,
        verified_at=buyer.verified_at,
        verification_expires_at=buyer.verification_expires_at,
    )


async def _require_own_payment(
    container: SettlementContainer, buyer: BuyerAccount, payment_id: str | None, session_id: str | None
) -> None:
    if payment_id is not None:
        payment = await container.store.get_payment(payment_id)
        if payment is None or payment.buyer_id != buyer.id:
            raise NotFoundError("Payment not found")
    if session_id is not None and session_id != buyer.kyc_session_id:
        payment = await container.store.get_payment_by_session(session_id)
        if payment is None or payment.buyer_id != buyer.id:
            raise NotFoundError("Verification session not found")


# ============================================================================
# Verification Flow
# ============================================================================


@router.post("/start-verification", response_model=StartVerificationResponse)
async def start_verification(
    buyer: BuyerDep, container: ContainerDep
) -> StartVerificationResponse:
    """
    Authorize the verification fee and open a KYC session.

    The fee is only captured once identity verification passes; otherwise
    the hold is released and nothing is charged.
    """
    started = await container.orchestrator.start(buyer.id)
    return StartVerificationResponse(
        payment_id=started.payment_id,
        hold_id=started.hold_id,
        session_id=started.session_id,
        session_token=started.session_token,
        payment_status=started.payment_status,
        verification_status=started.verification_status,
    )


@router.post("/webhook-complete", response_model=WebhookCompleteResponse)
async def webhook_complete(
    request: WebhookCompleteRequest, buyer: BuyerDep, container: ContainerDep
) -> WebhookCompleteResponse:
    """
    Wait briefly for the KYC decision webhook to settle the attempt.

    Returns the current statuses with a "still processing" message when the
    wait times out.
    """
    await _require_own_payment(container, buyer, request.payment_id, request.session_id)
    resolution = await container.reconciliation.wait_for_resolution(buyer.id)
    current = resolution.buyer
    return WebhookCompleteResponse(
        payment_status=current.payment_status,
        verification_status=current.effective_verification_status(),
        settlement_state=current.settlement_state,
        resolved=resolution.resolved,
        message=resolution.message,
    )


@router.post("/webhook-retry", response_model=WebhookRetryResponse)
async def webhook_retry(
    request: WebhookRetryRequest, buyer: BuyerDep, container: ContainerDep
) -> WebhookRetryResponse:
    """Re-apply the last known KYC decision. Safe to call repeatedly."""
    await _require_own_payment(container, buyer, request.payment_id, request.session_id)
    outcome = await container.reconciliation.retry(buyer.id)
    return WebhookRetryResponse(
        retry_result=outcome.result,
        should_retry=outcome.should_retry,
        retry_after_ms=outcome.retry_after_ms,
        settlement_state=outcome.state,
        message=outcome.message,
    )


@router.get("/status", response_model=BuyerStatusResponse)
async def get_status(buyer: BuyerDep) -> BuyerStatusResponse:
    return _status(buyer)


@router.get("/history", response_model=PaginatedResponse[ComplianceEventSummary])
async def get_history(
    buyer: BuyerDep,
    container: ContainerDep,
    filters: Annotated[HistoryFilters, Depends()],
) -> PaginatedResponse[ComplianceEventSummary]:
    """Compliance events recorded for the buyer, newest first."""
    page = await container.ledger.query(history_query(buyer, filters))
    return PaginatedResponse[ComplianceEventSummary].build(
        items=[ComplianceEventSummary.from_event(e) for e in page.items],
        total=page.total,
        page=page.page,
        page_size=page.page_size,
    )


# ============================================================================
# Privacy
# ============================================================================


@router.post("/ccpa/delete", response_model=DeletionReport)
async def delete_data(buyer: BuyerDep, container: ContainerDep) -> DeletionReport:
    """
    Delete the buyer's personal data.

    Compliance records keep the permanent reference id; refused while a
    verification is in progress.
    """
    return await container.privacy.delete_buyer_data(buyer.id)


@router.get("/ccpa/export", response_model=BuyerDataExport)
async def export_data(buyer: BuyerDep, container: ContainerDep) -> BuyerDataExport:
    return await container.privacy.export_buyer_data(buyer.id)
