"""
Secret Encryption and API Keys
==============================

AES-256-GCM encryption for buyer identity attributes and hashing for
dealer API keys.

Ciphertext layout (base64): ``salt(16) | nonce(12) | ciphertext+tag``.
The AES key is derived per message from the master key with
PBKDF2-HMAC-SHA512.

Version: 0.1.0
"""

import base64
import hashlib
import json
import os
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from shared.logging import get_logger


logger = get_logger(__name__)

API_KEY_PREFIX = "ca2a_"

_SALT_BYTES = 16
_NONCE_BYTES = 12
_KEY_BYTES = 32


class DecryptionError(ValueError):
    """Ciphertext was tampered with or encrypted under another key."""


class SecretBox:
    """
    Symmetric encryption for small JSON documents.

    Usage:
        box = SecretBox(settings.encryption.key.get_secret_value())
        token = box.encrypt_json({"date_of_birth": "1990-05-15"})
        box.decrypt_json(token)
    """

    def __init__(self, master_key: str, iterations: int = 100_000):
        if not master_key:
            raise ValueError("encryption key must not be empty")
        self._master_key = master_key.encode("utf-8")
        self.iterations = iterations

    def _derive(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=_KEY_BYTES,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self._master_key)

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(_SALT_BYTES)
        nonce = os.urandom(_NONCE_BYTES)
        ciphertext = AESGCM(self._derive(salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(salt + nonce + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
        except ValueError as e:
            raise DecryptionError("ciphertext is not valid base64") from e

        if len(raw) <= _SALT_BYTES + _NONCE_BYTES:
            raise DecryptionError("ciphertext is truncated")

        salt = raw[:_SALT_BYTES]
        nonce = raw[_SALT_BYTES : _SALT_BYTES + _NONCE_BYTES]
        ciphertext = raw[_SALT_BYTES + _NONCE_BYTES :]
        try:
            plaintext = AESGCM(self._derive(salt)).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            logger.warning("secret_decryption_failed")
            raise DecryptionError("ciphertext failed authentication") from e
        return plaintext.decode("utf-8")

    def encrypt_json(self, data: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(data, sort_keys=True, default=str))

    def decrypt_json(self, token: str) -> dict[str, Any]:
        return json.loads(self.decrypt(token))


def generate_salt() -> str:
    """Random hex salt for commitments."""
    return secrets.token_hex(16)


def generate_api_key() -> str:
    """Generate a dealer API key. Shown once; only its hash is stored."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(api_key: str) -> str:
    """SHA-256 hex digest of an API key."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def looks_like_api_key(value: str) -> bool:
    return value.startswith(API_KEY_PREFIX) and len(value) == len(API_KEY_PREFIX) + 64
