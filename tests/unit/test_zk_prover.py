"""
Unit tests for the verification proof engine.
"""

from datetime import UTC, date, datetime

import pytest

from shared.blockchain import MockLedgerAnchor
from shared.config import VerificationPolicySettings
from shared.zk import (
    AddressWeights,
    IdentityAttributes,
    ProofType,
    ProofVerifier,
    VerificationProver,
    address_match,
    age_check,
    canonical_json,
    commitment_hash,
    parse_address,
)


ADDRESS = "123 Main St, Los Angeles, CA 90210"
VERIFIED_AT = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def attributes() -> IdentityAttributes:
    return IdentityAttributes(
        date_of_birth=date(1990, 5, 15),
        address=ADDRESS,
        document_expires_at=date(2031, 5, 15),
    )


@pytest.fixture
def prover() -> VerificationProver:
    return VerificationProver(VerificationPolicySettings())


class TestAgeCheck:
    """Tests for age_check."""

    def test_adult(self) -> None:
        """Test an adult passes the 18 threshold."""
        assert age_check(date(1990, 5, 15), 18, today=date(2026, 1, 15)) is True

    def test_birthday_today(self) -> None:
        """Test the threshold is met on the birthday itself."""
        assert age_check(date(2008, 1, 15), 18, today=date(2026, 1, 15)) is True

    def test_day_before_birthday(self) -> None:
        """Test one day short of the threshold fails."""
        assert age_check(date(2008, 1, 16), 18, today=date(2026, 1, 15)) is False

    def test_leap_day_birthday(self) -> None:
        """Test a 29 February birthday is reached on 1 March in non-leap years."""
        assert age_check(date(2000, 2, 29), 18, today=date(2018, 3, 1)) is True
        assert age_check(date(2000, 2, 29), 18, today=date(2018, 2, 28)) is False

    def test_future_birth_date(self) -> None:
        """Test a birth date in the future never passes."""
        assert age_check(date(2030, 1, 1), 0, today=date(2026, 1, 15)) is False

    def test_custom_threshold(self) -> None:
        """Test a higher threshold is applied."""
        assert age_check(date(2006, 1, 1), 21, today=date(2026, 1, 15)) is False
        assert age_check(date(2004, 1, 1), 21, today=date(2026, 1, 15)) is True

    def test_datetime_input(self) -> None:
        """Test datetimes are reduced to their date."""
        assert age_check(datetime(1990, 5, 15, 23, 59), 18, today=date(2026, 1, 15)) is True


class TestAddressMatch:
    """Tests for address parsing and matching."""

    def test_exact_match(self) -> None:
        """Test identical addresses score 1.0."""
        assert address_match(ADDRESS, ADDRESS) == 1.0

    def test_normalized_match(self) -> None:
        """Test case, suffix, punctuation and ZIP+4 differences are normalized away."""
        assert address_match("123 main street, los angeles, ca 90210", ADDRESS) == 1.0
        assert address_match(ADDRESS, "123 MAIN ST, LOS ANGELES, CA, 90210-1234") == 1.0

    def test_mapping_form(self) -> None:
        """Test component mappings match their free-text equivalent."""
        mapping = {
            "street": "123 Main St",
            "city": "Los Angeles",
            "state": "CA",
            "postal_code": "90210",
        }
        assert address_match(mapping, ADDRESS) == 1.0

    def test_different_street(self) -> None:
        """Test a different street fails the default threshold."""
        score = address_match("500 Ocean Ave, Los Angeles, CA 90210", ADDRESS)

        assert score == pytest.approx(0.6)
        assert score < 0.8

    def test_different_postal_code_still_matches(self) -> None:
        """Test a postal mismatch alone leaves the score at the threshold."""
        assert address_match("123 Main St, Los Angeles, CA 90001", ADDRESS) == pytest.approx(0.8)

    def test_missing_components_never_match(self) -> None:
        """Test absent components contribute nothing."""
        assert address_match("123 Main St", ADDRESS) == pytest.approx(0.4)
        assert address_match("", "") == 0.0

    def test_custom_weights(self) -> None:
        """Test weights change component contributions."""
        weights = AddressWeights(street=0.7, city=0.1, state=0.1, postal_code=0.1)

        assert address_match("500 Ocean Ave, Los Angeles, CA 90210", ADDRESS, weights) == (
            pytest.approx(0.3)
        )

    def test_parse_address(self) -> None:
        """Test free text splits into normalized components."""
        parsed = parse_address("42 North Elm Avenue, Springfield, IL 62704-1234")

        assert parsed.street == "42 N ELM AVE"
        assert parsed.city == "SPRINGFIELD"
        assert parsed.state == "IL"
        assert parsed.postal_code == "62704"
        assert parsed.is_complete

    def test_score_bounds(self) -> None:
        """Test scores stay in [0, 1] for assorted inputs."""
        samples = [ADDRESS, "1 A St, B, CA 90001", "Somewhere", {"city": "Los Angeles"}, ""]
        for left in samples:
            for right in samples:
                assert 0.0 <= address_match(left, right) <= 1.0


class TestCommitmentHash:
    """Tests for canonical hashing."""

    def test_key_order_independent(self) -> None:
        """Test logically identical mappings hash identically."""
        assert commitment_hash({"a": 1, "b": 2}) == commitment_hash({"b": 2, "a": 1})

    def test_nested_order_independent(self) -> None:
        """Test nested mappings are canonicalized too."""
        left = {"outer": {"x": [1, {"p": 1, "q": 2}], "y": "z"}}
        right = {"outer": {"y": "z", "x": [1, {"q": 2, "p": 1}]}}

        assert commitment_hash(left) == commitment_hash(right)

    def test_different_values_differ(self) -> None:
        """Test a changed value changes the hash."""
        assert commitment_hash({"a": 1}) != commitment_hash({"a": 2})

    def test_canonical_json_dates(self) -> None:
        """Test dates serialize as ISO strings in compact form."""
        assert canonical_json({"d": date(2026, 1, 15), "a": 1}) == '{"a":1,"d":"2026-01-15"}'

    def test_hash_format(self) -> None:
        """Test hashes are 64 lowercase hex characters."""
        digest = commitment_hash({"a": 1})

        assert len(digest) == 64
        assert digest == digest.lower()


class TestVerificationProver:
    """Tests for VerificationProver."""

    def test_evaluate_passing(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test a valid adult with a matching address passes with full confidence."""
        evaluation = prover.evaluate(
            attributes, subject="BUY_TEST", salt="s" * 32, verified_at=VERIFIED_AT
        )

        assert evaluation.age_verified is True
        assert evaluation.address_verified is True
        assert evaluation.passed is True
        assert evaluation.document_valid is True
        assert evaluation.confidence == pytest.approx(1.0)
        assert set(evaluation.proof_hashes) == {"age", "address"}

    def test_evaluate_underage(self, prover: VerificationProver) -> None:
        """Test an underage buyer fails the age proof."""
        attributes = IdentityAttributes(
            date_of_birth=date(2010, 1, 1),
            address=ADDRESS,
            document_expires_at=date(2031, 1, 1),
        )
        evaluation = prover.evaluate(
            attributes, subject="BUY_TEST", salt="s" * 32, verified_at=VERIFIED_AT
        )

        assert evaluation.age_verified is False
        assert evaluation.passed is False
        assert evaluation.confidence == pytest.approx(0.5)

    def test_candidate_address_mismatch(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test a dealer-supplied shipping address is checked against the verified one."""
        evaluation = prover.evaluate(
            attributes,
            subject="BUY_TEST",
            salt="s" * 32,
            candidate_address="9 Harbor Way, San Diego, CA 92101",
            verified_at=VERIFIED_AT,
        )

        assert evaluation.age_verified is True
        assert evaluation.address_verified is False
        assert evaluation.address.score == pytest.approx(0.2)

    def test_expired_document(self, prover: VerificationProver) -> None:
        """Test an expired document lowers confidence without failing the proofs."""
        attributes = IdentityAttributes(
            date_of_birth=date(1990, 5, 15),
            address=ADDRESS,
            document_expires_at=date(2020, 1, 1),
        )
        evaluation = prover.evaluate(
            attributes, subject="BUY_TEST", salt="s" * 32, verified_at=VERIFIED_AT
        )

        assert evaluation.passed is True
        assert evaluation.document_valid is False
        assert evaluation.confidence == pytest.approx(0.9)

    def test_proofs_deterministic(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test identical inputs produce identical proof hashes."""
        first = prover.evaluate(attributes, "BUY_TEST", "s" * 32, verified_at=VERIFIED_AT)
        second = prover.evaluate(attributes, "BUY_TEST", "s" * 32, verified_at=VERIFIED_AT)

        assert first.proof_hashes == second.proof_hashes

    def test_salt_changes_commitment(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test a different salt yields different proof hashes."""
        first = prover.evaluate(attributes, "BUY_TEST", "a" * 32, verified_at=VERIFIED_AT)
        second = prover.evaluate(attributes, "BUY_TEST", "b" * 32, verified_at=VERIFIED_AT)

        assert first.proof_hashes["age"] != second.proof_hashes["age"]

    def test_proof_contains_no_pii(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test neither the birth date nor the address appears in the payload."""
        evaluation = prover.evaluate(attributes, "BUY_TEST", "s" * 32, verified_at=VERIFIED_AT)
        payload = canonical_json(evaluation.to_payload())

        assert "1990-05-15" not in payload
        assert "MAIN" not in payload.upper()

    def test_custom_age_threshold(self, attributes: IdentityAttributes) -> None:
        """Test the policy threshold is bound into the age commitment."""
        prover = VerificationProver(VerificationPolicySettings(age_threshold_years=21))
        proof = prover.prove_age(attributes.date_of_birth, "BUY_TEST", "s" * 32, VERIFIED_AT)

        assert proof.proof_type == ProofType.AGE
        assert proof.commitment["age_threshold"] == 21
        assert proof.verified is True

    def test_weights_must_sum_to_one(self) -> None:
        """Test invalid weight sets are rejected."""
        with pytest.raises(ValueError):
            VerificationPolicySettings(street_weight=0.9)


class TestProofVerifier:
    """Tests for ProofVerifier."""

    def test_valid_proof(self, prover: VerificationProver, attributes: IdentityAttributes) -> None:
        """Test an untouched proof verifies off-ledger."""
        proof = prover.prove_age(attributes.date_of_birth, "BUY_TEST", "s" * 32, VERIFIED_AT)

        result = ProofVerifier().verify_off_ledger(proof)

        assert result.valid is True
        assert result.proof_hash == proof.proof_hash

    def test_tampered_commitment(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test editing the commitment breaks the hash."""
        proof = prover.prove_age(attributes.date_of_birth, "BUY_TEST", "s" * 32, VERIFIED_AT)
        tampered = proof.model_copy(
            update={"commitment": {**proof.commitment, "age_threshold": 16}}
        )

        result = ProofVerifier().verify_off_ledger(tampered)

        assert result.valid is False
        assert result.error == "commitment hash mismatch"

    def test_flipped_verified_flag(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test a verified flag that contradicts the commitment is rejected."""
        proof = prover.prove_address(ADDRESS, ADDRESS, "BUY_TEST", "s" * 32, VERIFIED_AT)
        flipped = proof.model_copy(update={"verified": not proof.verified})

        assert ProofVerifier().verify_off_ledger(flipped).valid is False

    @pytest.mark.asyncio
    async def test_verify_against_anchor(
        self, prover: VerificationProver, attributes: IdentityAttributes
    ) -> None:
        """Test proofs are checked against the anchored hash."""
        anchor = MockLedgerAnchor()
        proof = prover.prove_age(attributes.date_of_birth, "BUY_TEST", "s" * 32, VERIFIED_AT)
        good_ref = await anchor.store(proof.proof_hash)
        other_ref = await anchor.store("0" * 64)

        verifier = ProofVerifier(anchor)
        good = await verifier.verify(proof, anchor_ref=good_ref)
        bad = await verifier.verify(proof, anchor_ref=other_ref)

        assert good.valid is True
        assert good.anchored is True
        assert bad.valid is False
        assert bad.error == "anchor does not match"
