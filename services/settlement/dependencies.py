"""
Settlement Route Dependencies
=============================

Resolves credentials to accounts and exposes the service container.

Version: 0.1.0
"""

from datetime import datetime
from typing import Annotated

from fastapi import Depends, HTTPException, Query, Request, status

from services.settlement.container import SettlementContainer
from shared.auth import AuthenticatedSubject, get_api_key_hash, get_current_subject
from shared.logging import bind_context, get_logger
from shared.models import Account, BuyerAccount, ComplianceQuery, DealerAccount

logger = get_logger(__name__)


def get_container(request: Request) -> SettlementContainer:
    container: SettlementContainer | None = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting",
        )
    return container


ContainerDep = Annotated[SettlementContainer, Depends(get_container)]


async def get_buyer_account(
    subject: Annotated[AuthenticatedSubject, Depends(get_current_subject)],
    container: ContainerDep,
) -> BuyerAccount:
    """
    Resolve a bearer token to a live buyer account.

    Raises:
        HTTPException: 403 for non-buyer tokens, 401 for unknown subjects
    """
    if subject.account_kind != "buyer":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Buyer access only")

    buyer = await container.store.get_buyer_by_auth_id(subject.sub)
    if buyer is None or buyer.is_deleted:
        logger.warning("buyer_account_missing")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    bind_context(buyer_reference_id=buyer.buyer_reference_id)
    return buyer


async def get_dealer_account(
    api_key_hash: Annotated[str, Depends(get_api_key_hash)],
    container: ContainerDep,
) -> DealerAccount:
    """
    Resolve an ``X-API-Key`` header to a dealer account.

    Raises:
        HTTPException: 401 for unknown keys
    """
    dealer = await container.store.get_dealer_by_api_key_hash(api_key_hash)
    if dealer is None:
        logger.warning("dealer_api_key_unknown")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    bind_context(dealer_reference_id=dealer.dealer_reference_id)
    return dealer


BuyerDep = Annotated[BuyerAccount, Depends(get_buyer_account)]
DealerDep = Annotated[DealerAccount, Depends(get_dealer_account)]


class HistoryFilters:
    """History query parameters."""

    def __init__(
        self,
        page: Annotated[int, Query(ge=1)] = 1,
        page_size: Annotated[int, Query(ge=1, le=100)] = 20,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        age_verified: bool | None = None,
        address_verified: bool | None = None,
    ) -> None:
        self.page = page
        self.page_size = page_size
        self.from_date = from_date
        self.to_date = to_date
        self.age_verified = age_verified
        self.address_verified = address_verified


def history_query(account: Account, filters: HistoryFilters) -> ComplianceQuery:
    """Ledger query scoped to ``account``."""
    owner: dict[str, str]
    match account.kind:
        case "buyer":
            owner = {"buyer_id": account.id}
        case "dealer":
            owner = {"dealer_id": account.id}

    return ComplianceQuery(
        **owner,
        page=filters.page,
        page_size=filters.page_size,
        from_date=filters.from_date,
        to_date=filters.to_date,
        age_verified=filters.age_verified,
        address_verified=filters.address_verified,
    )
