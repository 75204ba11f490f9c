"""Tests for dealer cross-party verification."""

from datetime import timedelta

import pytest

from services.settlement.container import SettlementContainer
from services.settlement.services import DealerVerifyRequest
from shared.errors import (
    ErrorKind,
    InvalidStateError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from shared.models import BuyerAccount, ComplianceQuery, DealerAccount, utc_now
from tests.conftest import TEST_ADDRESS


def request(**overrides: object) -> DealerVerifyRequest:
    values: dict[str, object] = {
        "buyer_email": "buyer@example.com",
        "shipping_address": TEST_ADDRESS,
        "compliance_ack": True,
    }
    values.update(overrides)
    return DealerVerifyRequest(**values)


async def dealer_events(container: SettlementContainer, dealer: DealerAccount) -> int:
    page = await container.ledger.query(ComplianceQuery(dealer_id=dealer.id))
    return page.total


class TestVerify:
    """Tests for single verifications."""

    @pytest.mark.asyncio
    async def test_verified_buyer(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test a verified buyer passes and the check is recorded and charged."""
        result = await container.dealer_verification.verify(dealer, request())

        assert result.age_verified is True
        assert result.address_verified is True
        assert result.confidence == pytest.approx(1.0)
        assert result.buyer_reference_id == verified_buyer.buyer_reference_id
        assert set(result.proof_hashes) == {"age", "address"}
        assert result.anchor_ref is not None

        event = await container.ledger.get(result.compliance_event_id)
        assert event.dealer_id == dealer.id
        assert event.buyer_id == verified_buyer.id
        assert event.dealer_reference_id == dealer.dealer_reference_id
        assert event.verification_data["kind"] == "dealer_verification"

        usage = await container.quota.usage(dealer.id)
        assert usage.credits_used == 1

    @pytest.mark.asyncio
    async def test_result_has_no_pii(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test the response carries no buyer PII."""
        result = await container.dealer_verification.verify(dealer, request())
        body = result.model_dump_json()

        assert "buyer@example.com" not in body
        assert "Main" not in body
        assert "1990-05-15" not in body

    @pytest.mark.asyncio
    async def test_email_case_insensitive(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test buyer lookup ignores case and surrounding whitespace."""
        result = await container.dealer_verification.verify(
            dealer, request(buyer_email="  Buyer@Example.COM ")
        )

        assert result.buyer_reference_id == verified_buyer.buyer_reference_id

    @pytest.mark.asyncio
    async def test_address_mismatch(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test a different shipping address fails the address check but is still charged."""
        result = await container.dealer_verification.verify(
            dealer,
            request(
                shipping_address={
                    "street": "9 Harbor Way",
                    "city": "San Diego",
                    "state": "CA",
                    "postal_code": "92101",
                }
            ),
        )

        assert result.age_verified is True
        assert result.address_verified is False
        assert (await container.quota.usage(dealer.id)).credits_used == 1

    @pytest.mark.asyncio
    async def test_ack_required(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test the disclosure must be acknowledged before anything is charged."""
        with pytest.raises(ValidationError):
            await container.dealer_verification.verify(dealer, request(compliance_ack=False))

        assert (await container.quota.usage(dealer.id)).credits_used == 0
        assert await dealer_events(container, dealer) == 0

    @pytest.mark.asyncio
    async def test_repeat_request_id(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test a repeated request id returns the recorded result without charging."""
        first = await container.dealer_verification.verify(dealer, request(request_id="req-1"))
        second = await container.dealer_verification.verify(dealer, request(request_id="req-1"))

        assert second.compliance_event_id == first.compliance_event_id
        assert (await container.quota.usage(dealer.id)).credits_used == 1
        assert await dealer_events(container, dealer) == 1

    @pytest.mark.asyncio
    async def test_without_request_id_each_call_recorded(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test calls without a request id are separate checks."""
        await container.dealer_verification.verify(dealer, request())
        await container.dealer_verification.verify(dealer, request())

        assert await dealer_events(container, dealer) == 2
        assert (await container.quota.usage(dealer.id)).credits_used == 2

    @pytest.mark.asyncio
    async def test_unknown_buyer_charged(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test a lookup of an unknown buyer keeps the credit and records nothing."""
        with pytest.raises(NotFoundError) as exc_info:
            await container.dealer_verification.verify(
                dealer, request(buyer_email="nobody@example.com")
            )

        assert exc_info.value.message == "Buyer is not verified"
        assert (await container.quota.usage(dealer.id)).credits_used == 1
        assert await dealer_events(container, dealer) == 0

    @pytest.mark.asyncio
    async def test_failed_attempt_refunded_when_policy_off(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test the credit is restored when failed attempts are not charged."""
        container.quota.charge_failed_attempts = False

        with pytest.raises(NotFoundError):
            await container.dealer_verification.verify(
                dealer, request(buyer_email="nobody@example.com")
            )

        assert (await container.quota.usage(dealer.id)).credits_used == 0

    @pytest.mark.asyncio
    async def test_unverified_buyer_indistinguishable(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        buyer: BuyerAccount,
    ) -> None:
        """Test an unverified buyer gets the same answer as an unknown one."""
        with pytest.raises(NotFoundError) as exc_info:
            await container.dealer_verification.verify(dealer, request())

        assert exc_info.value.message == "Buyer is not verified"

    @pytest.mark.asyncio
    async def test_expired_verification(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test an expired verification is refused."""
        verified_buyer.verification_expires_at = utc_now() - timedelta(days=1)
        await container.store.save_buyer(verified_buyer)

        with pytest.raises(InvalidStateError):
            await container.dealer_verification.verify(dealer, request())

    @pytest.mark.asyncio
    async def test_quota_exhausted_records_nothing(
        self,
        container: SettlementContainer,
        dealer_api_key: str,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test a dealer without credits is refused before any lookup or record."""
        broke = DealerAccount(company_name="Empty Shelf LLC", api_key_hash="0" * 64)
        await container.store.add_dealer(broke)

        with pytest.raises(QuotaExceededError):
            await container.dealer_verification.verify(broke, request())

        assert await dealer_events(container, broke) == 0


class TestVerifyBatch:
    """Tests for batch verification."""

    @pytest.mark.asyncio
    async def test_mixed_batch(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test each item succeeds or fails on its own."""
        result = await container.dealer_verification.verify_batch(
            dealer,
            [
                request(),
                request(buyer_email="nobody@example.com"),
                request(compliance_ack=False),
            ],
        )

        assert result.succeeded == 1
        assert result.failed == 2
        assert [item.index for item in result.results] == [0, 1, 2]
        assert result.results[0].result is not None
        assert result.results[1].error is ErrorKind.NOT_FOUND
        assert result.results[2].error is ErrorKind.VALIDATION
        assert (await container.quota.usage(dealer.id)).credits_used == 2

    @pytest.mark.asyncio
    async def test_batch_stops_charging_at_quota(
        self,
        container: SettlementContainer,
        dealer: DealerAccount,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test items past the balance fail with quota_exceeded."""
        result = await container.dealer_verification.verify_batch(
            dealer, [request() for _ in range(12)]
        )

        assert result.succeeded == 10
        assert {item.error for item in result.results[10:]} == {ErrorKind.QUOTA_EXCEEDED}

    @pytest.mark.asyncio
    async def test_batch_limits(
        self, container: SettlementContainer, dealer: DealerAccount
    ) -> None:
        """Test empty and oversized batches are rejected."""
        container.dealer_verification.batch_limit = 2

        with pytest.raises(ValidationError):
            await container.dealer_verification.verify_batch(dealer, [])
        with pytest.raises(ValidationError):
            await container.dealer_verification.verify_batch(dealer, [request()] * 3)
