"""
Verification Proof Checking
===========================

Verify commitment proofs off-ledger and against their ledger anchor.

Version: 0.1.0
"""

from shared.blockchain import LedgerAnchorClient
from shared.logging import get_logger
from shared.zk.commitment import commitment_hash
from shared.zk.models import VerificationProof, VerificationResult

logger = get_logger(__name__)


class ProofVerifier:
    """
    Proof verifier.

    A proof is valid when its ``proof_hash`` equals the commitment hash of its
    commitment body and the body agrees with the ``verified`` flag. When an
    anchor client is supplied the anchored hash is checked too.
    """

    def __init__(self, anchor: LedgerAnchorClient | None = None):
        self.anchor = anchor

    def verify_off_ledger(self, proof: VerificationProof) -> VerificationResult:
        recomputed = commitment_hash(proof.commitment)
        if recomputed != proof.proof_hash:
            return VerificationResult(
                valid=False,
                proof_hash=proof.proof_hash,
                error="commitment hash mismatch",
            )

        claimed = proof.commitment.get("meets_threshold", proof.commitment.get("matched"))
        if claimed is not None and bool(claimed) != proof.verified:
            return VerificationResult(
                valid=False,
                proof_hash=proof.proof_hash,
                error="verified flag does not match commitment",
            )

        return VerificationResult(valid=True, proof_hash=proof.proof_hash)

    async def verify(
        self,
        proof: VerificationProof,
        anchor_ref: str | None = None,
        anchored_hash: str | None = None,
    ) -> VerificationResult:
        """
        Verify a proof and, optionally, its anchor.

        Args:
            proof: The proof to verify
            anchor_ref: Ledger anchor reference of the owning compliance event
            anchored_hash: Hash that was anchored (defaults to the proof hash)

        Returns:
            VerificationResult with verification status
        """
        result = self.verify_off_ledger(proof)
        if not result.valid or anchor_ref is None or self.anchor is None:
            return result

        anchored = await self.anchor.verify(anchor_ref, anchored_hash or proof.proof_hash)
        logger.info(
            "proof_anchor_checked",
            proof_type=proof.proof_type.value,
            anchor_ref=anchor_ref,
            anchored=anchored,
        )
        return VerificationResult(
            valid=anchored,
            proof_hash=proof.proof_hash,
            anchor_ref=anchor_ref,
            anchored=anchored,
            error=None if anchored else "anchor does not match",
        )
