"""
Dealer Quota Meter
==================

Prepaid verification credits per dealer.

Reservation is a single atomic check-and-increment in the store, never a
read followed by a write here, so concurrent requests from one dealer cannot
overspend.

Version: 0.1.0
"""

from pydantic import BaseModel

from services.settlement.storage.base import SettlementStore
from shared.errors import NotFoundError, QuotaExceededError, ValidationError
from shared.logging import get_logger
from shared.models import DealerAccount

logger = get_logger(__name__)


class QuotaUsage(BaseModel):
    """Credit counters reported to a dealer."""

    dealer_reference_id: str
    credits_purchased: int
    credits_used: int
    credits_available: int


def _usage(dealer: DealerAccount) -> QuotaUsage:
    return QuotaUsage(
        dealer_reference_id=dealer.dealer_reference_id,
        credits_purchased=dealer.credits_total,
        credits_used=dealer.credits_used,
        credits_available=dealer.credits_available,
    )


class QuotaMeter:
    """
    Reserve and account for dealer credits.

    ``charge_failed_attempts`` decides what happens to a credit reserved for
    a verification that then fails: kept when True (the default, so repeated
    probing is billed), restored when False.
    """

    def __init__(self, store: SettlementStore, charge_failed_attempts: bool = True) -> None:
        self.store = store
        self.charge_failed_attempts = charge_failed_attempts

    async def _require_dealer(self, dealer_id: str) -> DealerAccount:
        dealer = await self.store.get_dealer(dealer_id)
        if dealer is None:
            raise NotFoundError("Dealer not found")
        return dealer

    async def reserve(self, dealer_id: str, cost: int = 1) -> DealerAccount:
        """
        Consume ``cost`` credits.

        Raises:
            ValidationError: ``cost`` is not positive
            NotFoundError: Unknown dealer
            QuotaExceededError: Not enough credits left
        """
        if cost < 1:
            raise ValidationError("Credit cost must be positive")

        dealer = await self.store.consume_credits(dealer_id, cost)
        if dealer is None:
            current = await self._require_dealer(dealer_id)
            logger.warning(
                "quota_exceeded",
                dealer_reference_id=current.dealer_reference_id,
                credits_used=current.credits_used,
                credits_total=current.credits_total,
                cost=cost,
            )
            raise QuotaExceededError(
                "No verification credits remaining. Purchase more credits to continue.",
                credits_available=current.credits_available,
            )

        logger.info(
            "quota_reserved",
            dealer_reference_id=dealer.dealer_reference_id,
            cost=cost,
            credits_available=dealer.credits_available,
        )
        return dealer

    async def release(self, dealer_id: str, cost: int = 1) -> DealerAccount:
        """Return ``cost`` previously reserved credits."""
        dealer = await self.store.restore_credits(dealer_id, cost)
        if dealer is None:
            raise NotFoundError("Dealer not found")
        logger.info("quota_released", dealer_reference_id=dealer.dealer_reference_id, cost=cost)
        return dealer

    async def settle_failed_attempt(self, dealer_id: str, cost: int = 1) -> bool:
        """
        Apply the failed-attempt policy to a reserved credit.

        Returns:
            True if the credit was restored
        """
        if self.charge_failed_attempts:
            logger.info("quota_kept_for_failed_attempt", dealer_id=dealer_id, cost=cost)
            return False
        await self.release(dealer_id, cost)
        return True

    async def add_credits(self, dealer_id: str, credits: int) -> DealerAccount:
        """Record purchased credits."""
        if credits < 1:
            raise ValidationError("Credits must be positive")
        dealer = await self.store.add_credits(dealer_id, credits)
        if dealer is None:
            raise NotFoundError("Dealer not found")
        logger.info(
            "quota_credits_added",
            dealer_reference_id=dealer.dealer_reference_id,
            credits=credits,
            credits_available=dealer.credits_available,
        )
        return dealer

    async def usage(self, dealer_id: str) -> QuotaUsage:
        return _usage(await self._require_dealer(dealer_id))
