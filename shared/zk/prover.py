"""
Verification Proof Generation
=============================

Turns decrypted identity attributes into age and address proofs.

Proofs are commitments, not SNARKs: each binds the outcome to a salted digest
of the private input, and its ``proof_hash`` is the commitment hash of the
public commitment body.

Version: 0.1.0
"""

from collections.abc import Mapping
from datetime import UTC, date, datetime
from typing import Any

from shared.config import VerificationPolicySettings
from shared.logging import get_logger
from shared.zk.address import AddressWeights, address_match, parse_address
from shared.zk.age import age_check
from shared.zk.commitment import commitment_hash, salted_digest
from shared.zk.models import (
    IdentityAttributes,
    IdentityEvaluation,
    ProofType,
    VerificationProof,
)


logger = get_logger(__name__)

AGE_CIRCUIT = "age_threshold_v1"
ADDRESS_CIRCUIT = "address_match_v1"


class VerificationProver:
    """
    Proof generator for age and address checks.

    Usage:
        prover = VerificationProver(settings.policy)

        evaluation = prover.evaluate(
            attributes,
            candidate_address="123 Main St, Los Angeles, CA 90210",
            subject="BUY_1A2B3C4D",
            salt=secrets.commitment_salt,
        )
    """

    def __init__(self, policy: VerificationPolicySettings | None = None):
        self.policy = policy or VerificationPolicySettings()
        self.weights = AddressWeights(
            street=self.policy.street_weight,
            city=self.policy.city_weight,
            state=self.policy.state_weight,
            postal_code=self.policy.postal_weight,
        )

    def _proof(
        self,
        proof_type: ProofType,
        circuit: str,
        verified: bool,
        commitment: dict[str, Any],
        score: float | None = None,
    ) -> VerificationProof:
        return VerificationProof(
            proof_type=proof_type,
            circuit=circuit,
            verified=verified,
            score=score,
            commitment=commitment,
            proof_hash=commitment_hash(commitment),
        )

    def prove_age(
        self,
        date_of_birth: date,
        subject: str,
        salt: str,
        verified_at: datetime | None = None,
    ) -> VerificationProof:
        """
        Prove ``date_of_birth`` meets the configured age threshold.

        Args:
            date_of_birth: Private input
            subject: Pseudonymous reference id the proof is about
            salt: Per-buyer commitment salt
            verified_at: Timestamp bound into the commitment

        Returns:
            VerificationProof: Age proof
        """
        verified_at = verified_at or datetime.now(UTC)
        threshold = self.policy.age_threshold_years
        meets = age_check(date_of_birth, threshold, today=verified_at.date())

        commitment = {
            "circuit": AGE_CIRCUIT,
            "subject": subject,
            "age_threshold": threshold,
            "meets_threshold": meets,
            "birth_date_commitment": salted_digest(date_of_birth.isoformat(), salt),
            "verified_at": verified_at.isoformat(),
        }
        return self._proof(ProofType.AGE, AGE_CIRCUIT, meets, commitment)

    def prove_address(
        self,
        candidate: "str | Mapping[str, Any]",
        reference: "str | Mapping[str, Any]",
        subject: str,
        salt: str,
        verified_at: datetime | None = None,
    ) -> VerificationProof:
        """Prove ``candidate`` matches the verified ``reference`` address."""
        verified_at = verified_at or datetime.now(UTC)
        candidate_address = parse_address(candidate)
        reference_address = parse_address(reference)

        score = address_match(candidate_address, reference_address, self.weights)
        threshold = self.policy.address_match_threshold
        verified = score >= threshold

        commitment = {
            "circuit": ADDRESS_CIRCUIT,
            "subject": subject,
            "score": score,
            "threshold": threshold,
            "weights": {
                "street": self.weights.street,
                "city": self.weights.city,
                "state": self.weights.state,
                "postal_code": self.weights.postal_code,
            },
            "matched": verified,
            "candidate_commitment": salted_digest(candidate_address.canonical(), salt),
            "reference_commitment": salted_digest(reference_address.canonical(), salt),
            "verified_at": verified_at.isoformat(),
        }
        return self._proof(ProofType.ADDRESS, ADDRESS_CIRCUIT, verified, commitment, score=score)

    def evaluate(
        self,
        attributes: IdentityAttributes,
        subject: str,
        salt: str,
        candidate_address: "str | Mapping[str, Any] | None" = None,
        verified_at: datetime | None = None,
    ) -> IdentityEvaluation:
        """
        Produce both proofs and the confidence score.

        When ``candidate_address`` is omitted the verified address is checked
        against itself, which passes only if it has every component.

        Confidence is 0.5 for a passing age check, 0.4 times the address
        score, and 0.1 for an unexpired identity document.
        """
        verified_at = verified_at or datetime.now(UTC)
        candidate = candidate_address if candidate_address is not None else attributes.address

        age_proof = self.prove_age(attributes.date_of_birth, subject, salt, verified_at)
        address_proof = self.prove_address(
            candidate, attributes.address, subject, salt, verified_at
        )
        document_valid = attributes.document_valid(verified_at.date())

        confidence = (
            (0.5 if age_proof.verified else 0.0)
            + 0.4 * (address_proof.score or 0.0)
            + (0.1 if document_valid else 0.0)
        )

        logger.debug(
            "identity_evaluated",
            subject=subject,
            age_verified=age_proof.verified,
            address_verified=address_proof.verified,
            address_score=address_proof.score,
        )

        return IdentityEvaluation(
            age=age_proof,
            address=address_proof,
            document_valid=document_valid,
            confidence=round(min(confidence, 1.0), 4),
        )
