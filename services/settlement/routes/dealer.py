"""
Dealer Routes
=============

AB1263 buyer checks for dealers, authenticated with an ``X-API-Key`` header.
Responses carry booleans, scores and proof hashes only.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from services.settlement.dependencies import (
    ContainerDep,
    DealerDep,
    HistoryFilters,
    history_query,
)
from services.settlement.services.quota import QuotaUsage
from services.settlement.services.verification import (
    BatchVerifyRequest,
    BatchVerifyResult,
    DealerVerifyRequest,
    DealerVerifyResult,
)
from shared.models import ComplianceEventSummary, PaginatedResponse


router = APIRouter()


@router.post("/verify", response_model=DealerVerifyResult)
async def verify_buyer(
    request: DealerVerifyRequest, dealer: DealerDep, container: ContainerDep
) -> DealerVerifyResult:
    """
    Check a buyer's age and shipping address.

    Consumes one verification credit. Repeating a ``request_id`` returns the
    recorded result without charging again.
    """
    return await container.dealer_verification.verify(dealer, request)


@router.post("/verify-batch", response_model=BatchVerifyResult)
async def verify_batch(
    request: BatchVerifyRequest, dealer: DealerDep, container: ContainerDep
) -> BatchVerifyResult:
    """Check up to 50 buyers; each item succeeds or fails on its own."""
    return await container.dealer_verification.verify_batch(dealer, request.requests)


@router.get("/history", response_model=PaginatedResponse[ComplianceEventSummary])
async def get_history(
    dealer: DealerDep,
    container: ContainerDep,
    filters: Annotated[HistoryFilters, Depends()],
) -> PaginatedResponse[ComplianceEventSummary]:
    page = await container.ledger.query(history_query(dealer, filters))
    return PaginatedResponse[ComplianceEventSummary].build(
        items=[ComplianceEventSummary.from_event(e) for e in page.items],
        total=page.total,
        page=page.page,
        page_size=page.page_size,
    )


@router.get("/usage", response_model=QuotaUsage)
async def get_usage(dealer: DealerDep, container: ContainerDep) -> QuotaUsage:
    return await container.quota.usage(dealer.id)
