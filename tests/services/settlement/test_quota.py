"""Tests for dealer credit metering."""

import asyncio

import pytest

from services.settlement.container import SettlementContainer
from services.settlement.services import QuotaMeter
from shared.errors import NotFoundError, QuotaExceededError, ValidationError
from shared.models import DealerAccount


class TestQuotaMeter:
    """Tests for QuotaMeter."""

    @pytest.mark.asyncio
    async def test_reserve_consumes(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test reserving a credit increments usage."""
        updated = await container.quota.reserve(dealer.id)

        assert updated.credits_used == 1
        assert updated.credits_available == 9

    @pytest.mark.asyncio
    async def test_exhausted(self, container: SettlementContainer, dealer: DealerAccount) -> None:
        """Test reserving beyond the balance fails and leaves usage unchanged."""
        await container.quota.reserve(dealer.id, cost=10)

        with pytest.raises(QuotaExceededError) as exc_info:
            await container.quota.reserve(dealer.id)

        assert exc_info.value.status_code == 402
        usage = await container.quota.usage(dealer.id)
        assert usage.credits_used == 10
        assert usage.credits_available == 0

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_overspend(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test concurrent reservations grant exactly the available credits."""
        results = await asyncio.gather(
            *(container.quota.reserve(dealer.id) for _ in range(15)),
            return_exceptions=True,
        )

        granted = [r for r in results if isinstance(r, DealerAccount)]
        refused = [r for r in results if isinstance(r, QuotaExceededError)]
        assert len(granted) == 10
        assert len(refused) == 5

        usage = await container.quota.usage(dealer.id)
        assert usage.credits_used == 10

    @pytest.mark.asyncio
    async def test_release_and_add(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test credits can be returned and purchased."""
        await container.quota.reserve(dealer.id, cost=3)
        await container.quota.release(dealer.id)
        topped_up = await container.quota.add_credits(dealer.id, 5)

        assert topped_up.credits_used == 2
        assert topped_up.credits_total == 15
        assert topped_up.credits_available == 13

    @pytest.mark.asyncio
    async def test_release_floors_at_zero(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test releasing more than was used never goes negative."""
        updated = await container.quota.release(dealer.id, cost=5)

        assert updated.credits_used == 0

    @pytest.mark.asyncio
    async def test_invalid_amounts(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test non-positive costs and purchases are rejected."""
        with pytest.raises(ValidationError):
            await container.quota.reserve(dealer.id, cost=0)
        with pytest.raises(ValidationError):
            await container.quota.add_credits(dealer.id, 0)

    @pytest.mark.asyncio
    async def test_unknown_dealer(self, container: SettlementContainer) -> None:
        """Test unknown dealers are not found."""
        with pytest.raises(NotFoundError):
            await container.quota.reserve("missing")
        with pytest.raises(NotFoundError):
            await container.quota.usage("missing")

    @pytest.mark.asyncio
    async def test_failed_attempt_policy(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test the failed-attempt policy keeps or restores the credit."""
        charging = QuotaMeter(container.store, charge_failed_attempts=True)
        forgiving = QuotaMeter(container.store, charge_failed_attempts=False)

        await charging.reserve(dealer.id)
        assert await charging.settle_failed_attempt(dealer.id) is False
        assert (await charging.usage(dealer.id)).credits_used == 1

        await forgiving.reserve(dealer.id)
        assert await forgiving.settle_failed_attempt(dealer.id) is True
        assert (await forgiving.usage(dealer.id)).credits_used == 1
