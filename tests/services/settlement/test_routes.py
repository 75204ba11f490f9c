"""
HTTP tests for the settlement service.

The ASGI transport does not run the lifespan; the ``container`` fixture is
already started.
"""

import json

import pytest
from httpx import AsyncClient

from services.settlement.container import SettlementContainer
from services.settlement.providers import MockKYCProvider, MockPaymentProvider
from services.settlement.services.reconciliation import PENDING_MESSAGE
from shared.auth import create_access_token, generate_api_key, hash_api_key
from shared.models import BuyerAccount, DealerAccount, PaymentEventStatus, SettlementState
from tests.conftest import TEST_ADDRESS


def verify_body(**overrides: object) -> dict[str, object]:
    body: dict[str, object] = {
        "buyer_email": "buyer@example.com",
        "shipping_address": TEST_ADDRESS,
        "compliance_ack": True,
    }
    body.update(overrides)
    return body


class TestHealth:
    """Tests for health endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        """Test the health endpoint reports collaborators."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "settlement"
        assert {"payment_provider", "kyc_provider", "ledger_anchor"} <= set(data["components"])

    @pytest.mark.asyncio
    async def test_root(self, client: AsyncClient) -> None:
        """Test the root endpoint."""
        response = await client.get("/")

        assert response.status_code == 200
        assert response.headers["X-Request-ID"]
        assert response.json()["service"] == "VeriSettle Settlement Service"


class TestBuyerFlow:
    """Tests for the buyer verification endpoints."""

    @pytest.mark.asyncio
    async def test_full_flow(
        self,
        client: AsyncClient,
        kyc: MockKYCProvider,
        buyer_headers: dict[str, str],
    ) -> None:
        """Test start, KYC webhook, then a resolved webhook-complete."""
        started = await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)
        assert started.status_code == 200
        handles = started.json()
        assert handles["payment_status"] == "authorized"
        assert handles["verification_status"] == "checking"

        payload = kyc.complete(handles["session_id"], approved=True)
        hook = await client.post(
            "/api/v1/webhooks/kyc",
            json=payload,
            headers={"Persona-Signature": "t=1,v1=test"},
        )
        assert hook.status_code == 200
        assert hook.json()["status"] == "applied"
        assert hook.json()["state"] == "completed"

        complete = await client.post(
            "/api/v1/buyer/webhook-complete",
            json={"payment_id": handles["payment_id"], "session_id": handles["session_id"]},
            headers=buyer_headers,
        )
        assert complete.status_code == 200
        assert complete.json()["resolved"] is True
        assert complete.json()["settlement_state"] == "completed"
        assert complete.json()["payment_status"] == "completed"

        status = await client.get("/api/v1/buyer/status", headers=buyer_headers)
        assert status.json()["verification_status"] == "verified"
        assert status.json()["attempt_count"] == 1

        history = await client.get("/api/v1/buyer/history", headers=buyer_headers)
        assert history.status_code == 200
        assert history.json()["total"] == 1
        assert history.json()["items"][0]["age_verified"] is True

    @pytest.mark.asyncio
    async def test_duplicate_webhook(
        self,
        client: AsyncClient,
        kyc: MockKYCProvider,
        buyer_headers: dict[str, str],
    ) -> None:
        """Test a redelivered decision is acknowledged as a duplicate."""
        started = (
            await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)
        ).json()
        payload = kyc.complete(started["session_id"], approved=True)

        await client.post("/api/v1/webhooks/kyc", json=payload)
        again = await client.post("/api/v1/webhooks/kyc", json=payload)

        assert again.status_code == 200
        assert again.json()["status"] == "duplicate"

    @pytest.mark.asyncio
    async def test_complete_times_out(
        self, client: AsyncClient, buyer_headers: dict[str, str]
    ) -> None:
        """Test webhook-complete returns a processing message when no decision arrives."""
        started = (
            await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)
        ).json()

        response = await client.post(
            "/api/v1/buyer/webhook-complete",
            json={"payment_id": started["payment_id"], "session_id": started["session_id"]},
            headers=buyer_headers,
        )

        assert response.status_code == 200
        assert response.json()["resolved"] is False
        assert response.json()["message"] == PENDING_MESSAGE
        assert response.json()["settlement_state"] == "checking"

    @pytest.mark.asyncio
    async def test_retry_awaiting_decision(
        self, client: AsyncClient, buyer_headers: dict[str, str]
    ) -> None:
        """Test retry before any decision asks the client to come back later."""
        await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)

        response = await client.post(
            "/api/v1/buyer/webhook-retry", json={}, headers=buyer_headers
        )

        assert response.status_code == 200
        assert response.json()["retry_result"] == "awaiting_decision"
        assert response.json()["should_retry"] is True
        assert response.json()["retry_after_ms"] == 3000

    @pytest.mark.asyncio
    async def test_start_twice_conflicts(
        self, client: AsyncClient, buyer_headers: dict[str, str]
    ) -> None:
        """Test a second start while in flight is refused."""
        await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)
        response = await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)

        assert response.status_code == 409
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_foreign_payment_not_found(
        self, client: AsyncClient, buyer_headers: dict[str, str]
    ) -> None:
        """Test a buyer cannot wait on someone else's payment."""
        await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)

        response = await client.post(
            "/api/v1/buyer/webhook-complete",
            json={"payment_id": "someone-else", "session_id": "inq_other"},
            headers=buyer_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestBuyerAuth:
    """Tests for buyer authentication."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient, buyer: BuyerAccount) -> None:
        """Test requests without a token are unauthorized."""
        response = await client.get("/api/v1/buyer/status")

        assert response.status_code == 401
        assert response.json()["error"] == "Could not validate credentials"

    @pytest.mark.asyncio
    async def test_dealer_token_forbidden(self, client: AsyncClient) -> None:
        """Test a non-buyer token is forbidden."""
        token = create_access_token({"sub": "dealer-1", "account_kind": "dealer"})

        response = await client.get(
            "/api/v1/buyer/status", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_buyer(self, client: AsyncClient) -> None:
        """Test a valid token for an unknown buyer is unauthorized."""
        token = create_access_token({"sub": "auth|nobody", "account_kind": "buyer"})

        response = await client.get(
            "/api/v1/buyer/status", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401


class TestWebhooks:
    """Tests for provider webhook responses."""

    @pytest.mark.asyncio
    async def test_unknown_session_deferred(self, client: AsyncClient) -> None:
        """Test a decision for an unknown session asks for redelivery."""
        response = await client.post(
            "/api/v1/webhooks/kyc", json={"session_id": "inq_unknown", "status": "approved"}
        )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "3"
        assert response.json()["status"] == "deferred"
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client: AsyncClient) -> None:
        """Test unparseable bodies are rejected."""
        response = await client.post(
            "/api/v1/webhooks/kyc",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON"

    @pytest.mark.asyncio
    async def test_malformed_event(self, client: AsyncClient) -> None:
        """Test events missing required fields are rejected as validation errors."""
        response = await client.post("/api/v1/webhooks/kyc", json={"status": "approved"})

        assert response.status_code == 400
        assert response.json()["status"] == "rejected"
        assert response.json()["error"] == "validation"

    @pytest.mark.asyncio
    async def test_ignored_status(self, client: AsyncClient) -> None:
        """Test non-final statuses are acknowledged and ignored."""
        response = await client.post(
            "/api/v1/webhooks/kyc", json={"session_id": "inq_1", "status": "pending"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_payment_hold_expired(
        self,
        client: AsyncClient,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        buyer: BuyerAccount,
    ) -> None:
        """Test a hold released by the provider ends the attempt."""
        started = await container.orchestrator.start(buyer.id)

        response = await client.post(
            "/api/v1/webhooks/payments", json=payments.expire_hold(started.hold_id)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "applied"
        assert response.json()["state"] == "failed"

    @pytest.mark.asyncio
    async def test_payment_signature_required(
        self,
        client: AsyncClient,
        container: SettlementContainer,
        payments: MockPaymentProvider,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test unsigned or badly signed payment events change nothing."""
        payments.webhook_secret = "whsec_test"
        (payment,) = await container.store.list_payments(verified_buyer.id)
        body = json.dumps({"hold_id": payment.hold_id, "type": "hold.refunded"}).encode()

        unsigned = await client.post(
            "/api/v1/webhooks/payments",
            content=body,
            headers={"Content-Type": "application/json"},
        )
        forged = await client.post(
            "/api/v1/webhooks/payments",
            content=body,
            headers={"Content-Type": "application/json", "Stripe-Signature": "v1=forged"},
        )

        assert unsigned.status_code == 401
        assert forged.status_code == 401
        assert forged.json()["error"] == "Invalid signature"
        buyer = await container.store.get_buyer(verified_buyer.id)
        assert buyer is not None
        assert buyer.settlement_state == SettlementState.COMPLETED
        stored = await container.store.get_payment(payment.id)
        assert stored is not None
        assert stored.status == PaymentEventStatus.CAPTURED

    @pytest.mark.asyncio
    async def test_payment_signed_event_applied(
        self,
        client: AsyncClient,
        payments: MockPaymentProvider,
        container: SettlementContainer,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test a correctly signed refund is applied."""
        payments.webhook_secret = "whsec_test"
        (payment,) = await container.store.list_payments(verified_buyer.id)
        assert payment.hold_id is not None
        body = json.dumps(payments.refund(payment.hold_id)).encode()

        response = await client.post(
            "/api/v1/webhooks/payments",
            content=body,
            headers={"Content-Type": "application/json", "Stripe-Signature": payments.sign(body)},
        )

        assert response.status_code == 200
        assert response.json()["state"] == "completed_refunded"

    @pytest.mark.asyncio
    async def test_payment_unknown_hold_deferred(self, client: AsyncClient) -> None:
        """Test events for unknown holds are deferred."""
        response = await client.post(
            "/api/v1/webhooks/payments", json={"hold_id": "hold_missing", "type": "hold.released"}
        )

        assert response.status_code == 503
        assert "Retry-After" in response.headers


class TestDealerEndpoints:
    """Tests for dealer endpoints."""

    @pytest.mark.asyncio
    async def test_verify(
        self,
        client: AsyncClient,
        dealer_headers: dict[str, str],
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test a dealer check returns booleans and proof hashes only."""
        response = await client.post(
            "/api/v1/dealer/verify", json=verify_body(), headers=dealer_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["age_verified"] is True
        assert data["address_verified"] is True
        assert data["buyer_reference_id"] == verified_buyer.buyer_reference_id
        assert "buyer@example.com" not in response.text

        usage = await client.get("/api/v1/dealer/usage", headers=dealer_headers)
        assert usage.json()["credits_used"] == 1
        assert usage.json()["credits_available"] == 9

        history = await client.get("/api/v1/dealer/history", headers=dealer_headers)
        assert history.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_verify_requires_ack(
        self,
        client: AsyncClient,
        dealer_headers: dict[str, str],
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test an unacknowledged disclosure is a 400."""
        response = await client.post(
            "/api/v1/dealer/verify",
            json=verify_body(compliance_ack=False),
            headers=dealer_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    @pytest.mark.asyncio
    async def test_unknown_buyer_404(
        self, client: AsyncClient, dealer_headers: dict[str, str]
    ) -> None:
        """Test an unknown buyer is a 404."""
        response = await client.post(
            "/api/v1/dealer/verify",
            json=verify_body(buyer_email="nobody@example.com"),
            headers=dealer_headers,
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Buyer is not verified"

    @pytest.mark.asyncio
    async def test_quota_exceeded_402(
        self,
        client: AsyncClient,
        container: SettlementContainer,
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test a dealer without credits gets a 402."""
        api_key = generate_api_key()
        await container.store.add_dealer(
            DealerAccount(company_name="No Credit Co", api_key_hash=hash_api_key(api_key))
        )

        response = await client.post(
            "/api/v1/dealer/verify", json=verify_body(), headers={"X-API-Key": api_key}
        )

        assert response.status_code == 402
        assert response.json()["error"] == "quota_exceeded"

    @pytest.mark.asyncio
    async def test_verify_batch(
        self,
        client: AsyncClient,
        dealer_headers: dict[str, str],
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test batch results are reported per item."""
        response = await client.post(
            "/api/v1/dealer/verify-batch",
            json={"requests": [verify_body(), verify_body(buyer_email="nobody@example.com")]},
            headers=dealer_headers,
        )

        assert response.status_code == 200
        assert response.json()["succeeded"] == 1
        assert response.json()["results"][1]["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_request_validation(
        self, client: AsyncClient, dealer_headers: dict[str, str]
    ) -> None:
        """Test malformed bodies are 400 validation errors."""
        response = await client.post("/api/v1/dealer/verify", json={}, headers=dealer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    @pytest.mark.asyncio
    async def test_malformed_key(self, client: AsyncClient, dealer: DealerAccount) -> None:
        """Test malformed API keys are unauthorized."""
        response = await client.get("/api/v1/dealer/usage", headers={"X-API-Key": "not-a-key"})

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid API key"

    @pytest.mark.asyncio
    async def test_unknown_key(self, client: AsyncClient, dealer: DealerAccount) -> None:
        """Test well-formed but unknown API keys are unauthorized."""
        response = await client.get(
            "/api/v1/dealer/usage", headers={"X-API-Key": generate_api_key()}
        )

        assert response.status_code == 401


class TestPrivacyEndpoints:
    """Tests for CCPA endpoints."""

    @pytest.mark.asyncio
    async def test_export_then_delete(
        self,
        client: AsyncClient,
        buyer_headers: dict[str, str],
        verified_buyer: BuyerAccount,
    ) -> None:
        """Test export returns the profile, and delete revokes the account."""
        export = await client.get("/api/v1/buyer/ccpa/export", headers=buyer_headers)
        assert export.status_code == 200
        assert export.json()["account"]["email"] == "buyer@example.com"
        assert export.json()["has_verified_identity"] is True

        deleted = await client.post("/api/v1/buyer/ccpa/delete", headers=buyer_headers)
        assert deleted.status_code == 200
        assert deleted.json()["secrets_deleted"] is True

        after = await client.get("/api/v1/buyer/status", headers=buyer_headers)
        assert after.status_code == 401

    @pytest.mark.asyncio
    async def test_delete_in_flight_conflicts(
        self, client: AsyncClient, buyer_headers: dict[str, str]
    ) -> None:
        """Test deletion during an attempt is refused."""
        await client.post("/api/v1/buyer/start-verification", headers=buyer_headers)

        response = await client.post("/api/v1/buyer/ccpa/delete", headers=buyer_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"
