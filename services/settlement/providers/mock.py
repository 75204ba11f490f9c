"""
Mock Providers
==============

In-memory payment and KYC providers for development and testing.

All state lives on the instance, so every test (or app) gets its own
providers and parallel runs never share holds or sessions.

Version: 0.1.0
"""

import hashlib
import hmac
import secrets
from collections import Counter
from datetime import date
from typing import Any

from services.settlement.providers.errors import ProviderError
from services.settlement.providers.kyc import KYCProvider, VerificationSession
from services.settlement.providers.payment import (
    CaptureResult,
    HoldResult,
    PaymentProvider,
    ReleaseResult,
)
from shared.logging import get_logger
from shared.zk import IdentityAttributes

logger = get_logger(__name__)

DEFAULT_IDENTITY = IdentityAttributes(
    date_of_birth=date(1990, 5, 15),
    address="123 Main St, Los Angeles, CA 90210",
    document_expires_at=date(2031, 5, 15),
    document_number="D1234567",
)


class _FailureInjector:
    """Counts down injected failures per operation."""

    def __init__(self) -> None:
        self._pending: Counter[str] = Counter()
        self._transient: dict[str, bool] = {}

    def arm(self, operation: str, times: int, transient: bool) -> None:
        self._pending[operation] += times
        self._transient[operation] = transient

    def check(self, operation: str, provider: str) -> None:
        if self._pending[operation] > 0:
            self._pending[operation] -= 1
            raise ProviderError(
                f"injected {operation} failure",
                provider=provider,
                transient=self._transient.get(operation, True),
            )


class MockPaymentProvider(PaymentProvider):
    """
    Simulated manual-capture processor.

    Like a real processor it rejects a second capture or release on a
    finalized hold. Every call is recorded in ``calls``.

    Without a ``webhook_secret`` every webhook signature is accepted; with
    one, the signature must be ``sign(payload)``.
    """

    name = "mock"

    def __init__(self, webhook_secret: str | None = None) -> None:
        self.webhook_secret = webhook_secret
        self._holds: dict[str, dict[str, Any]] = {}
        self._by_idempotency_key: dict[str, str] = {}
        self._failures = _FailureInjector()
        self.calls: list[tuple[str, str]] = []

    def fail_next(self, operation: str, times: int = 1, transient: bool = True) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``ProviderError``."""
        self._failures.arm(operation, times, transient)

    def calls_for(self, operation: str) -> list[str]:
        return [hold_id for op, hold_id in self.calls if op == operation]

    @property
    def capture_calls(self) -> list[str]:
        return self.calls_for("capture")

    @property
    def release_calls(self) -> list[str]:
        return self.calls_for("release")

    def hold_status(self, hold_id: str) -> str | None:
        hold = self._holds.get(hold_id)
        return hold["status"] if hold else None

    async def create_hold(
        self,
        amount_cents: int,
        customer_ref: str,
        idempotency_key: str,
        currency: str = "usd",
    ) -> HoldResult:
        self._failures.check("create_hold", self.name)

        existing = self._by_idempotency_key.get(idempotency_key)
        if existing is not None:
            self.calls.append(("create_hold", existing))
            return HoldResult(hold_id=existing, status=self._holds[existing]["status"])

        hold_id = f"pi_mock_{secrets.token_hex(8)}"
        self._holds[hold_id] = {
            "status": "requires_capture",
            "amount_cents": amount_cents,
            "currency": currency,
            "customer_ref": customer_ref,
        }
        self._by_idempotency_key[idempotency_key] = hold_id
        self.calls.append(("create_hold", hold_id))

        logger.debug("mock_hold_created", hold_id=hold_id, amount_cents=amount_cents)
        return HoldResult(
            hold_id=hold_id,
            status="requires_capture",
            client_secret=f"{hold_id}_secret_{secrets.token_hex(4)}",
        )

    def _get(self, hold_id: str) -> dict[str, Any]:
        hold = self._holds.get(hold_id)
        if hold is None:
            raise ProviderError("no such hold", provider=self.name, transient=False)
        return hold

    async def capture(self, hold_id: str) -> CaptureResult:
        self.calls.append(("capture", hold_id))
        self._failures.check("capture", self.name)

        hold = self._get(hold_id)
        if hold["status"] != "requires_capture":
            raise ProviderError(
                "hold is not capturable",
                provider=self.name,
                transient=False,
                status=hold["status"],
            )
        hold["status"] = "succeeded"
        return CaptureResult(
            hold_id=hold_id,
            status="succeeded",
            captured_amount_cents=hold["amount_cents"],
        )

    async def release(self, hold_id: str) -> ReleaseResult:
        self.calls.append(("release", hold_id))
        self._failures.check("release", self.name)

        hold = self._get(hold_id)
        if hold["status"] != "requires_capture":
            raise ProviderError(
                "hold cannot be released",
                provider=self.name,
                transient=False,
                status=hold["status"],
            )
        hold["status"] = "canceled"
        return ReleaseResult(hold_id=hold_id, status="canceled")

    # =========================================================================
    # Testing Utilities
    # =========================================================================

    def expire_hold(self, hold_id: str) -> dict[str, str]:
        """Cancel a hold out-of-band and return the matching webhook payload."""
        self._get(hold_id)["status"] = "canceled"
        return {"hold_id": hold_id, "type": "hold.released"}

    def refund(self, hold_id: str) -> dict[str, str]:
        """Refund a captured hold out-of-band and return the webhook payload."""
        self._get(hold_id)["status"] = "refunded"
        return {"hold_id": hold_id, "type": "hold.refunded"}

    def sign(self, payload: bytes) -> str:
        """Signature header value for ``payload`` under the webhook secret."""
        secret = (self.webhook_secret or "").encode()
        return "v1=" + hmac.new(secret, payload, hashlib.sha256).hexdigest()

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        if self.webhook_secret is None:
            return True
        if not signature:
            return False
        return hmac.compare_digest(self.sign(payload), signature)

    def get_stats(self) -> dict[str, int]:
        return {
            "holds": len(self._holds),
            "captures": len(self.capture_calls),
            "releases": len(self.release_calls),
        }


class MockKYCProvider(KYCProvider):
    """
    Simulated identity verification provider.

    Identities are keyed by reference id; buyers without a registered identity
    get ``DEFAULT_IDENTITY``.
    """

    name = "mock"

    def __init__(self, default_identity: IdentityAttributes | None = None) -> None:
        self.default_identity = default_identity or DEFAULT_IDENTITY
        self._sessions: dict[str, dict[str, str]] = {}
        self._identities: dict[str, IdentityAttributes] = {}
        self._failures = _FailureInjector()
        self.attribute_fetches = 0

    def fail_next(self, operation: str, times: int = 1, transient: bool = True) -> None:
        self._failures.arm(operation, times, transient)

    def set_identity(self, reference_id: str, identity: IdentityAttributes) -> None:
        self._identities[reference_id] = identity

    async def create_session(self, reference_id: str) -> VerificationSession:
        self._failures.check("create_session", self.name)

        session_id = f"inq_mock_{secrets.token_hex(8)}"
        self._sessions[session_id] = {"reference_id": reference_id, "status": "pending"}
        return VerificationSession(
            session_id=session_id,
            session_token=f"sess_tok_{secrets.token_hex(12)}",
        )

    def complete(self, session_id: str, approved: bool = True) -> dict[str, str]:
        """Record a decision and return the webhook payload the provider would send."""
        session = self._sessions[session_id]
        session["status"] = "approved" if approved else "declined"
        return {
            "session_id": session_id,
            "status": session["status"],
            "reference_id": session["reference_id"],
        }

    async def get_verified_attributes(self, session_id: str) -> IdentityAttributes:
        self._failures.check("get_verified_attributes", self.name)
        self.attribute_fetches += 1

        session = self._sessions.get(session_id)
        if session is None or session["status"] != "approved":
            raise ProviderError(
                "session has no verified attributes",
                provider=self.name,
                transient=False,
            )
        return self._identities.get(session["reference_id"], self.default_identity)
