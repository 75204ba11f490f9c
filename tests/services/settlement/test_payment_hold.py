"""Tests for safe-capture payment holds."""

import pytest

from services.settlement.container import SettlementContainer
from services.settlement.providers import MockPaymentProvider
from shared.errors import ConflictError, ExternalServiceError, InvalidStateError, NotFoundError
from shared.models import BuyerAccount, PaymentEventStatus


class TestAuthorize:
    """Tests for placing holds."""

    @pytest.mark.asyncio
    async def test_authorize_places_hold(
        self,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test a hold is placed and the payment stored as authorized."""
        payment = await container.holds.authorize(buyer)

        assert payment.status == PaymentEventStatus.AUTHORIZED
        assert payment.hold_id is not None
        assert payment.amount_cents == container.settings.payment.verification_amount_cents
        assert payment.customer_reference_id == buyer.buyer_reference_id
        assert payments.hold_status(payment.hold_id) == "requires_capture"

        stored = await container.store.get_payment(payment.id)
        assert stored is not None
        assert stored.hold_id == payment.hold_id

    @pytest.mark.asyncio
    async def test_second_open_payment_conflicts(
        self, container: SettlementContainer, buyer: BuyerAccount
    ) -> None:
        """Test a buyer cannot hold two open payments."""
        await container.holds.authorize(buyer)

        with pytest.raises(ConflictError):
            await container.holds.authorize(buyer)

    @pytest.mark.asyncio
    async def test_transient_failure_retried(
        self,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test a transient provider failure is retried within the attempt budget."""
        payments.fail_next("create_hold", times=1)

        payment = await container.holds.authorize(buyer)

        assert payment.status == PaymentEventStatus.AUTHORIZED

    @pytest.mark.asyncio
    async def test_exhausted_retries_store_failed_payment(
        self,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test a hold that cannot be placed leaves a failed payment and no open one."""
        payments.fail_next("create_hold", times=2)

        with pytest.raises(ExternalServiceError) as exc_info:
            await container.holds.authorize(buyer)

        assert exc_info.value.details["transient"] is True
        assert "injected" not in exc_info.value.message

        stored = await container.store.list_payments(buyer.id)
        assert [p.status for p in stored] == [PaymentEventStatus.FAILED]
        assert await container.store.get_open_payment(buyer.id) is None


class TestCaptureAndRelease:
    """Tests for capture and release idempotence."""

    @pytest.mark.asyncio
    async def test_capture_once(
        self,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test repeated captures reach the provider once and return the same result."""
        payment = await container.holds.authorize(buyer)
        assert payment.hold_id is not None

        first = await container.holds.capture(payment.hold_id)
        second = await container.holds.capture(payment.hold_id)

        assert first.repeat is False
        assert second.repeat is True
        assert first.status == second.status == PaymentEventStatus.CAPTURED
        assert first.captured_amount_cents == second.captured_amount_cents == payment.amount_cents
        assert first.occurred_at == second.occurred_at
        assert payments.capture_calls == [payment.hold_id]

    @pytest.mark.asyncio
    async def test_release_once(
        self,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test repeated releases reach the provider once."""
        payment = await container.holds.authorize(buyer)
        assert payment.hold_id is not None

        first = await container.holds.release(payment.hold_id)
        second = await container.holds.release(payment.hold_id)

        assert first.status == PaymentEventStatus.RELEASED
        assert second.repeat is True
        assert payments.release_calls == [payment.hold_id]
        assert payments.hold_status(payment.hold_id) == "canceled"

    @pytest.mark.asyncio
    async def test_capture_after_release_rejected(
        self,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test a released hold can never be captured."""
        payment = await container.holds.authorize(buyer)
        assert payment.hold_id is not None
        await container.holds.release(payment.hold_id)

        with pytest.raises(InvalidStateError):
            await container.holds.capture(payment.hold_id)
        assert payments.capture_calls == []

    @pytest.mark.asyncio
    async def test_release_after_capture_rejected(
        self, container: SettlementContainer, buyer: BuyerAccount
    ) -> None:
        """Test a captured hold can never be released."""
        payment = await container.holds.authorize(buyer)
        assert payment.hold_id is not None
        await container.holds.capture(payment.hold_id)

        with pytest.raises(InvalidStateError):
            await container.holds.release(payment.hold_id)

    @pytest.mark.asyncio
    async def test_unknown_hold(self, container: SettlementContainer) -> None:
        """Test unknown hold references are not found."""
        with pytest.raises(NotFoundError):
            await container.holds.capture("pi_missing")
        with pytest.raises(NotFoundError):
            await container.holds.release("pi_missing")

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(
        self,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test a permanent provider failure surfaces after one call and leaves the hold."""
        payment = await container.holds.authorize(buyer)
        assert payment.hold_id is not None
        payments.fail_next("capture", times=1, transient=False)

        with pytest.raises(ExternalServiceError) as exc_info:
            await container.holds.capture(payment.hold_id)

        assert exc_info.value.details["transient"] is False
        assert payments.capture_calls == [payment.hold_id]
        stored = await container.store.get_payment(payment.id)
        assert stored is not None
        assert stored.status == PaymentEventStatus.AUTHORIZED

    @pytest.mark.asyncio
    async def test_record_refund_requires_capture(
        self, container: SettlementContainer, buyer: BuyerAccount
    ) -> None:
        """Test refunds apply to captured payments only."""
        payment = await container.holds.authorize(buyer)

        with pytest.raises(InvalidStateError):
            await container.holds.record_refund(payment)
