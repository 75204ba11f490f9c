"""
FastAPI Authentication Dependencies
===================================

Credential extraction for route protection. Buyers present a bearer JWT;
dealers present an API key header. Resolving credentials to accounts is
left to the service, which owns the account store.

Version: 0.1.0
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from pydantic import BaseModel, Field

from shared.auth.encryption import hash_api_key, looks_like_api_key
from shared.auth.jwt import decode_token
from shared.logging import get_logger


logger = get_logger(__name__)

# OAuth2 scheme for token extraction from Authorization header
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/auth/token",
    auto_error=False,
)

api_key_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


class AuthenticatedSubject(BaseModel):
    """Identity extracted from a valid bearer token."""

    sub: str = Field(..., description="Auth identity id")
    account_kind: str = Field(default="buyer")
    roles: list[str] = Field(default_factory=list)


async def get_current_subject(
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> AuthenticatedSubject:
    """
    Extract and validate the subject from a JWT token.

    Raises:
        HTTPException: 401 if token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token is None:
        logger.warning("auth_token_missing")
        raise credentials_exception

    token_data = decode_token(token, verify_type="access")

    if token_data is None:
        logger.warning("auth_token_invalid")
        raise credentials_exception

    logger.debug("subject_authenticated", sub=token_data.sub)

    return AuthenticatedSubject(
        sub=token_data.sub,
        account_kind=token_data.account_kind,
        roles=token_data.roles,
    )


async def get_api_key_hash(
    api_key: Annotated[str | None, Depends(api_key_scheme)],
) -> str:
    """
    Validate the shape of an API key header and return its hash.

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    if not api_key or not looks_like_api_key(api_key):
        logger.warning("api_key_missing_or_malformed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return hash_api_key(api_key)
