"""
Unit tests for authentication module.
"""

from datetime import UTC, datetime, timedelta

import pytest
from jose import jwt

from shared.auth import (
    DecryptionError,
    SecretBox,
    create_access_token,
    decode_token,
    generate_api_key,
    generate_salt,
    hash_api_key,
)
from shared.auth.encryption import API_KEY_PREFIX, looks_like_api_key
from shared.auth.jwt import TokenData, is_token_expired
from shared.config import settings


class TestJWTTokens:
    """Tests for JWT token functions."""

    def test_create_access_token(self) -> None:
        """Test access token creation."""
        token = create_access_token({"sub": "auth|buyer-1"})

        assert isinstance(token, str)
        assert token.count(".") == 2

    def test_decode_access_token(self) -> None:
        """Test decoding an access token returns the subject and kind."""
        token = create_access_token({"sub": "auth|buyer-1", "roles": ["buyer"]})
        decoded = decode_token(token)

        assert decoded is not None
        assert decoded.sub == "auth|buyer-1"
        assert decoded.account_kind == "buyer"
        assert decoded.roles == ["buyer"]
        assert decoded.token_type == "access"

    def test_account_kind_preserved(self) -> None:
        """Test an explicit account kind survives the round trip."""
        token = create_access_token({"sub": "dealer-1", "account_kind": "dealer"})
        decoded = decode_token(token)

        assert decoded is not None
        assert decoded.account_kind == "dealer"

    def test_custom_expiry(self) -> None:
        """Test expires_delta controls the exp claim."""
        token = create_access_token({"sub": "auth|buyer-1"}, expires_delta=timedelta(minutes=5))
        decoded = decode_token(token)

        assert decoded is not None
        remaining = decoded.exp - datetime.now(UTC)
        assert timedelta(minutes=4) < remaining <= timedelta(minutes=5)

    def test_wrong_token_type_rejected(self) -> None:
        """Test a token of another type is rejected when a type is required."""
        token = jwt.encode(
            {
                "sub": "auth|buyer-1",
                "exp": datetime.now(UTC) + timedelta(minutes=5),
                "token_type": "refresh",
            },
            settings.jwt.secret_key.get_secret_value(),
            algorithm=settings.jwt.algorithm,
        )

        assert decode_token(token) is None
        assert decode_token(token, verify_type=None) is not None

    def test_invalid_token(self) -> None:
        """Test decoding an invalid token returns None."""
        assert decode_token("not.a.token") is None

    def test_expired_token(self) -> None:
        """Test an expired token fails to decode."""
        token = create_access_token({"sub": "auth|buyer-1"}, expires_delta=timedelta(seconds=-5))

        assert decode_token(token) is None

    def test_is_token_expired(self) -> None:
        """Test expiry check on decoded token data."""
        past = TokenData(sub="x", exp=datetime.now(UTC) - timedelta(seconds=1))
        future = TokenData(sub="x", exp=datetime.now(UTC) + timedelta(minutes=1))

        assert is_token_expired(past) is True
        assert is_token_expired(future) is False


class TestSecretBox:
    """Tests for identity attribute encryption."""

    @pytest.fixture
    def box(self) -> SecretBox:
        return SecretBox("unit-test-master-key", iterations=1_000)

    def test_round_trip(self, box: SecretBox) -> None:
        """Test encrypted JSON decrypts to the original document."""
        data = {"date_of_birth": "1990-05-15", "address": "123 Main St"}

        token = box.encrypt_json(data)

        assert "1990-05-15" not in token
        assert box.decrypt_json(token) == data

    def test_ciphertexts_differ(self, box: SecretBox) -> None:
        """Test the same plaintext encrypts differently every time."""
        assert box.encrypt("same") != box.encrypt("same")

    def test_wrong_key_fails(self, box: SecretBox) -> None:
        """Test decrypting under another key raises DecryptionError."""
        token = box.encrypt("secret")
        other = SecretBox("another-master-key", iterations=1_000)

        with pytest.raises(DecryptionError):
            other.decrypt(token)

    def test_tampered_ciphertext_fails(self, box: SecretBox) -> None:
        """Test garbage and truncated input raise DecryptionError."""
        with pytest.raises(DecryptionError):
            box.decrypt("not base64!!")
        with pytest.raises(DecryptionError):
            box.decrypt("AAAA")

    def test_empty_key_rejected(self) -> None:
        """Test an empty master key is refused."""
        with pytest.raises(ValueError):
            SecretBox("")


class TestApiKeys:
    """Tests for dealer API key helpers."""

    def test_generate_api_key_format(self) -> None:
        """Test generated keys carry the prefix and 64 hex characters."""
        key = generate_api_key()

        assert key.startswith(API_KEY_PREFIX)
        assert len(key) == len(API_KEY_PREFIX) + 64
        assert looks_like_api_key(key)

    def test_generated_keys_unique(self) -> None:
        """Test two generated keys differ."""
        assert generate_api_key() != generate_api_key()

    def test_hash_api_key_deterministic(self) -> None:
        """Test hashing is stable and does not echo the key."""
        key = generate_api_key()

        assert hash_api_key(key) == hash_api_key(key)
        assert key not in hash_api_key(key)
        assert len(hash_api_key(key)) == 64

    def test_looks_like_api_key_rejects(self) -> None:
        """Test malformed keys are not recognized."""
        assert not looks_like_api_key("ca2a_short")
        assert not looks_like_api_key("sk_" + "0" * 64)

    def test_generate_salt(self) -> None:
        """Test salts are random 32-character hex strings."""
        salt = generate_salt()

        assert len(salt) == 32
        assert salt != generate_salt()
