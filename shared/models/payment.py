"""
Payment Models
==============

One ``PaymentEvent`` per settlement attempt, mirroring the payment leg.

Version: 0.1.0
"""

from datetime import datetime
from enum import Enum

from pydantic import Field

from shared.models.common import UTCModel, new_id, utc_now


class PaymentType(str, Enum):
    """What the payment pays for."""

    VERIFICATION = "verification"
    SUBSCRIPTION = "subscription"


class PaymentEventStatus(str, Enum):
    """Lifecycle of a payment hold."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    RELEASED = "released"
    REFUNDED = "refunded"
    FAILED = "failed"
    ERROR = "error"


OPEN_PAYMENT_STATUSES = frozenset({PaymentEventStatus.PENDING, PaymentEventStatus.AUTHORIZED})


class PaymentEvent(UTCModel):
    """A single payment hold and its settlement."""

    id: str = Field(default_factory=new_id)
    buyer_id: str | None = Field(default=None, description="Owning account, nulled on deletion")
    customer_reference_id: str
    type: PaymentType = PaymentType.VERIFICATION
    amount_cents: int = Field(..., gt=0)
    currency: str = "usd"
    status: PaymentEventStatus = PaymentEventStatus.PENDING

    provider: str = "mock"
    hold_id: str | None = None
    idempotency_key: str = Field(default_factory=new_id)
    verification_session_id: str | None = None
    captured_amount_cents: int | None = None
    failure_reason: str | None = None

    authorized_at: datetime | None = None
    captured_at: datetime | None = None
    refunded_at: datetime | None = None
    anonymized_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_PAYMENT_STATUSES


class HoldOperationResult(UTCModel):
    """Result of a capture or release, stable across repeats."""

    payment_id: str
    hold_id: str
    status: PaymentEventStatus
    amount_cents: int
    captured_amount_cents: int | None = None
    occurred_at: datetime | None = None
    repeat: bool = False
