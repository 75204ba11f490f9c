"""
Payment Provider Interface
==========================

Manual-capture payment holds: authorize now, capture or release later.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class HoldResult(BaseModel):
    """Response to a hold request."""

    hold_id: str
    status: str
    client_secret: str | None = None


class CaptureResult(BaseModel):
    """Response to a capture request."""

    hold_id: str
    status: str
    captured_amount_cents: int


class ReleaseResult(BaseModel):
    """Response to a release request."""

    hold_id: str
    status: str


class PaymentProvider(ABC):
    """
    Abstract payment processor.

    Providers may reject a second capture or release on a finalized hold;
    the hold manager never relies on that and checks its own records first.
    """

    name: str = "abstract"

    @abstractmethod
    async def create_hold(
        self,
        amount_cents: int,
        customer_ref: str,
        idempotency_key: str,
        currency: str = "usd",
    ) -> HoldResult:
        """Place a manual-capture hold for ``amount_cents``."""
        ...

    @abstractmethod
    async def capture(self, hold_id: str) -> CaptureResult:
        """Charge a held amount."""
        ...

    @abstractmethod
    async def release(self, hold_id: str) -> ReleaseResult:
        """Cancel a hold without charging."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Check that a hold notification was sent by the processor."""
        ...

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "provider": self.name}
