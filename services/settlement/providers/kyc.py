"""
KYC Provider Interface
======================

Identity verification sessions. Decisions arrive asynchronously through
webhooks; ``get_verified_attributes`` only fetches data for a session the
webhook already reported as approved.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from shared.zk import IdentityAttributes


class VerificationSession(BaseModel):
    """An opened verification session."""

    session_id: str
    session_token: str


class KYCProvider(ABC):
    """Abstract identity verification provider."""

    name: str = "abstract"

    @abstractmethod
    async def create_session(self, reference_id: str) -> VerificationSession:
        """Open a verification session for the buyer with ``reference_id``."""
        ...

    @abstractmethod
    async def get_verified_attributes(self, session_id: str) -> IdentityAttributes:
        """Fetch verified identity attributes for an approved session."""
        ...

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Check a webhook signature. Providers without signing accept all."""
        return True

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "provider": self.name}

    async def close(self) -> None:
        """Release network resources."""
        return None
