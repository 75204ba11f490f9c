"""
Proof Engine Data Models
========================

Pydantic models for verification proofs.

``IdentityAttributes`` holds decrypted PII and never leaves the proof engine's
callers inside the service. Everything else here is PII-free: booleans,
scores, salted digests and commitment hashes.

Version: 0.1.0
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ProofType(str, Enum):
    """Types of verification proofs."""

    AGE = "age"
    ADDRESS = "address"


class IdentityAttributes(BaseModel):
    """Verified identity attributes returned by the KYC provider."""

    date_of_birth: date
    address: str | dict[str, Any]
    document_expires_at: date | None = None
    document_number: str | None = None

    def document_valid(self, today: date | None = None) -> bool:
        if self.document_expires_at is None:
            return False
        return self.document_expires_at > (today or datetime.now(UTC).date())


class VerificationProof(BaseModel):
    """
    A commitment-backed verification result.

    ``proof_hash`` is the commitment hash of ``commitment``; anyone holding the
    proof can recompute it, and anyone holding the private inputs and salt can
    show they produced it.
    """

    proof_type: ProofType
    circuit: str
    verified: bool
    score: float | None = None
    commitment: dict[str, Any]
    proof_hash: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class IdentityEvaluation(BaseModel):
    """Age and address proofs for one verification, plus a confidence score."""

    age: VerificationProof
    address: VerificationProof
    document_valid: bool = False
    confidence: float = Field(..., ge=0.0, le=1.0)

    @property
    def age_verified(self) -> bool:
        return self.age.verified

    @property
    def address_verified(self) -> bool:
        return self.address.verified

    @property
    def passed(self) -> bool:
        return self.age.verified and self.address.verified

    @property
    def proof_hashes(self) -> dict[str, str]:
        return {"age": self.age.proof_hash, "address": self.address.proof_hash}

    def to_payload(self) -> dict[str, Any]:
        """Structured payload stored on the compliance event."""
        return {
            "proofs": {
                "age": self.age.model_dump(mode="json"),
                "address": self.address.model_dump(mode="json"),
            },
            "proof_hashes": self.proof_hashes,
            "document_valid": self.document_valid,
        }


class VerificationResult(BaseModel):
    """Result of proof verification."""

    valid: bool
    proof_hash: str | None = None
    verified_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Ledger anchor check
    anchor_ref: str | None = None
    anchored: bool | None = None

    # Error info
    error: str | None = None
