"""
Tests for payment webhook signature checks and Stripe event parsing.
"""

import hashlib
import hmac
import json
import time

import pytest

from services.settlement.providers import MockPaymentProvider
from services.settlement.providers.stripe import StripePaymentProvider
from services.settlement.services.reconciliation import parse_payment_event
from services.settlement.services.state_machine import PaymentEventKind
from shared.errors import ValidationError


WEBHOOK_SECRET = "whsec_test_secret"


def stripe_header(
    payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None
) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def stripe_event(event_type: str, obj: dict[str, str]) -> bytes:
    return json.dumps(
        {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}
    ).encode()


class TestMockSignature:
    """Tests for the mock processor's webhook signing."""

    def test_accepts_all_without_secret(self) -> None:
        """Test an unconfigured mock accepts unsigned events."""
        assert MockPaymentProvider().verify_webhook_signature(b"{}", None)

    def test_requires_matching_signature(self) -> None:
        """Test a configured mock checks the signature."""
        provider = MockPaymentProvider(webhook_secret="whsec_mock")
        body = b'{"hold_id": "hold_1", "type": "hold.refunded"}'

        assert provider.verify_webhook_signature(body, provider.sign(body))
        assert not provider.verify_webhook_signature(body, None)
        assert not provider.verify_webhook_signature(body, "v1=forged")
        assert not provider.verify_webhook_signature(b"{}", provider.sign(body))


class TestStripeSignature:
    """Tests for Stripe-Signature verification."""

    @pytest.fixture
    def provider(self) -> StripePaymentProvider:
        return StripePaymentProvider("sk_test_123", webhook_secret=WEBHOOK_SECRET)

    def test_valid_signature(self, provider: StripePaymentProvider) -> None:
        """Test a correctly signed event is accepted."""
        body = stripe_event("payment_intent.canceled", {"id": "pi_1", "object": "payment_intent"})

        assert provider.verify_webhook_signature(body, stripe_header(body))

    def test_wrong_secret(self, provider: StripePaymentProvider) -> None:
        """Test events signed with another secret are refused."""
        body = stripe_event("charge.refunded", {"id": "ch_1", "payment_intent": "pi_1"})

        assert not provider.verify_webhook_signature(body, stripe_header(body, "whsec_other"))

    def test_stale_timestamp(self, provider: StripePaymentProvider) -> None:
        """Test replayed events outside the tolerance window are refused."""
        body = stripe_event("payment_intent.canceled", {"id": "pi_1"})

        assert not provider.verify_webhook_signature(
            body, stripe_header(body, timestamp=int(time.time()) - 3600)
        )

    def test_missing_header_or_secret(self) -> None:
        """Test missing signatures and unconfigured secrets are refused."""
        body = stripe_event("payment_intent.canceled", {"id": "pi_1"})

        signed = StripePaymentProvider("sk_test_123", webhook_secret=WEBHOOK_SECRET)
        assert not signed.verify_webhook_signature(body, None)
        assert not StripePaymentProvider("sk_test_123").verify_webhook_signature(
            body, stripe_header(body)
        )


class TestParseStripeEvent:
    """Tests for normalizing Stripe events."""

    def test_payment_intent_events(self) -> None:
        """Test PaymentIntent events map to hold notifications."""
        canceled = parse_payment_event(
            json.loads(stripe_event("payment_intent.canceled", {"id": "pi_1"}))
        )
        failed = parse_payment_event(
            json.loads(stripe_event("payment_intent.payment_failed", {"id": "pi_2"}))
        )

        assert (canceled.hold_id, canceled.kind) == ("pi_1", PaymentEventKind.RELEASED)
        assert (failed.hold_id, failed.kind) == ("pi_2", PaymentEventKind.CAPTURE_FAILED)

    def test_refund_uses_payment_intent(self) -> None:
        """Test a refunded charge points at its PaymentIntent."""
        event = parse_payment_event(
            json.loads(stripe_event("charge.refunded", {"id": "ch_1", "payment_intent": "pi_1"}))
        )

        assert event.hold_id == "pi_1"
        assert event.kind == PaymentEventKind.REFUNDED

    def test_missing_object(self) -> None:
        """Test Stripe events without an object are rejected."""
        with pytest.raises(ValidationError):
            parse_payment_event({"type": "payment_intent.canceled", "data": {}})
