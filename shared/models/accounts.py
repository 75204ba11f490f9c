"""
Account Models
==============

Buyer and dealer accounts, modelled as a tagged union on ``kind``.

Version: 0.1.0
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import Field

from shared.models.common import UTCModel, new_id, new_reference_id, utc_now
from shared.models.settlement import (
    KYCDecision,
    PaymentStatus,
    SettlementState,
    VerificationStatus,
    project_statuses,
)


class BuyerAccount(UTCModel):
    """A buyer's identity anchor and current settlement attempt."""

    kind: Literal["buyer"] = "buyer"

    id: str = Field(default_factory=new_id)
    auth_id: str = Field(..., description="Subject of the buyer's auth identity")
    buyer_reference_id: str = Field(default_factory=lambda: new_reference_id("BUY"))

    # PII, nulled on deletion
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    # Current attempt
    settlement_state: SettlementState = SettlementState.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    verification_status: VerificationStatus = VerificationStatus.PENDING
    current_payment_id: str | None = None
    payment_hold_ref: str | None = None
    kyc_session_id: str | None = None
    last_decision: KYCDecision | None = None
    attempt_count: int = 0
    version: int = 0

    verified_at: datetime | None = None
    verification_expires_at: datetime | None = None

    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def move_to(self, state: SettlementState) -> None:
        """Set the attempt state and its status projections."""
        self.settlement_state = state
        self.payment_status, self.verification_status = project_statuses(state)
        self.version += 1
        self.updated_at = utc_now()

    def effective_verification_status(self, now: datetime | None = None) -> VerificationStatus:
        """Verification status with expiry applied."""
        now = now or utc_now()
        if (
            self.verification_status == VerificationStatus.VERIFIED
            and self.verification_expires_at is not None
            and self.verification_expires_at <= now
        ):
            return VerificationStatus.EXPIRED
        return self.verification_status

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class DealerAccount(UTCModel):
    """A verifying party with a prepaid credit balance."""

    kind: Literal["dealer"] = "dealer"

    id: str = Field(default_factory=new_id)
    dealer_reference_id: str = Field(default_factory=lambda: new_reference_id("DLR"))
    company_name: str
    api_key_hash: str

    credits_purchased: int = Field(default=0, ge=0)
    additional_credits_purchased: int = Field(default=0, ge=0)
    credits_used: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def credits_total(self) -> int:
        return self.credits_purchased + self.additional_credits_purchased

    @property
    def credits_available(self) -> int:
        return max(0, self.credits_total - self.credits_used)


Account = Annotated[BuyerAccount | DealerAccount, Field(discriminator="kind")]


class BuyerSecrets(UTCModel):
    """Encrypted identity attributes captured from an approved KYC session."""

    buyer_id: str
    encrypted_attributes: str
    commitment_salt: str
    kyc_session_id: str | None = None
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utc_now())
