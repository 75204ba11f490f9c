"""
Compliance Models
=================

Append-only compliance events and the ledger query model.

Version: 0.1.0
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from shared.models.common import Pagination, UTCModel, new_id, utc_now


class ComplianceEvent(UTCModel):
    """
    Audit record of one verification outcome.

    ``buyer_id`` and ``dealer_id`` are owning keys and may be nulled by a
    deletion request. The reference ids are permanent.
    """

    id: str = Field(default_factory=new_id)
    attempt_key: str = Field(..., description="Natural key, unique per verification attempt")

    buyer_id: str | None = None
    dealer_id: str | None = None
    buyer_reference_id: str
    dealer_reference_id: str | None = None

    verification_data: dict[str, Any] = Field(default_factory=dict)
    age_verified: bool
    address_verified: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    anchor_ref: str | None = None
    anonymized_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)


class ComplianceEventSummary(UTCModel):
    """PII-free view of a compliance event for history listings."""

    id: str
    buyer_reference_id: str
    dealer_reference_id: str | None = None
    age_verified: bool
    address_verified: bool
    confidence: float
    anchor_ref: str | None = None
    created_at: datetime

    @classmethod
    def from_event(cls, event: ComplianceEvent) -> "ComplianceEventSummary":
        return cls.model_validate(event.model_dump())


class ComplianceQuery(Pagination):
    """Ledger filters. Exactly one owner filter is required."""

    buyer_id: str | None = None
    dealer_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    age_verified: bool | None = None
    address_verified: bool | None = None

    @model_validator(mode="after")
    def check_owner(self) -> "ComplianceQuery":
        if (self.buyer_id is None) == (self.dealer_id is None):
            raise ValueError("exactly one of buyer_id or dealer_id is required")
        return self


class LedgerPage(BaseModel):
    """One page of ledger results."""

    items: list[ComplianceEvent]
    total: int
    page: int
    page_size: int
