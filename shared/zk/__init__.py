"""
Verification Proof Engine
=========================

Turns identity attributes into boolean/scored results plus deterministic
commitment hashes. Only booleans, scores and hashes leave this package.

Usage:
    from shared.zk import VerificationProver, address_match, age_check, commitment_hash

    age_check(date(2000, 2, 29), 18, today=date(2018, 3, 1))  # True
    address_match("123 Main St, Los Angeles, CA 90210",
                  "123 MAIN ST, LOS ANGELES, CA, 90210-1234")  # 1.0
    commitment_hash({"a": 1, "b": 2}) == commitment_hash({"b": 2, "a": 1})

Version: 0.1.0
"""

from shared.zk.address import Address, AddressWeights, address_match, parse_address
from shared.zk.age import age_check
from shared.zk.commitment import canonical_json, commitment_hash, salted_digest
from shared.zk.models import (
    IdentityAttributes,
    IdentityEvaluation,
    ProofType,
    VerificationProof,
    VerificationResult,
)
from shared.zk.prover import VerificationProver
from shared.zk.verifier import ProofVerifier


__all__ = [
    # Checks
    "age_check",
    "address_match",
    "parse_address",
    "Address",
    "AddressWeights",
    "commitment_hash",
    "canonical_json",
    "salted_digest",
    # Prover / verifier
    "VerificationProver",
    "ProofVerifier",
    # Models
    "IdentityAttributes",
    "IdentityEvaluation",
    "ProofType",
    "VerificationProof",
    "VerificationResult",
]
