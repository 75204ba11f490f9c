"""
Authentication Module
=====================

Authentication and secret handling for the settlement service.

Features:
- JWT token generation and validation for buyers
- API key generation and hashing for dealers
- AES-256-GCM encryption of buyer identity attributes
- FastAPI dependencies for credential extraction

Usage:
    from shared.auth import create_access_token, get_current_subject, get_api_key_hash

    token = create_access_token({"sub": buyer.auth_id, "account_kind": "buyer"})

    @app.get("/protected")
    async def protected(subject: AuthenticatedSubject = Depends(get_current_subject)):
        return {"sub": subject.sub}
"""

from shared.auth.dependencies import (
    AuthenticatedSubject,
    api_key_scheme,
    get_api_key_hash,
    get_current_subject,
    oauth2_scheme,
)
from shared.auth.encryption import (
    DecryptionError,
    SecretBox,
    generate_api_key,
    generate_salt,
    hash_api_key,
)
from shared.auth.jwt import TokenData, create_access_token, decode_token

__all__ = [
    # JWT
    "create_access_token",
    "decode_token",
    "TokenData",
    # Encryption / API keys
    "SecretBox",
    "DecryptionError",
    "generate_api_key",
    "generate_salt",
    "hash_api_key",
    # Dependencies
    "AuthenticatedSubject",
    "get_current_subject",
    "get_api_key_hash",
    "oauth2_scheme",
    "api_key_scheme",
]
