"""
Persona KYC Provider
====================

Identity verification through Persona inquiries.

- ``create_session``: create an inquiry for a template and resume it to get
  a one-time session token for the client SDK.
- ``get_verified_attributes``: read birthdate, address and government ID
  expiry from an approved inquiry.
- Webhooks carry a ``Persona-Signature: t=<ts>,v1=<hmac>`` header, an
  HMAC-SHA256 of ``"<ts>.<body>"`` under the webhook secret.

Version: 0.1.0
"""

import hashlib
import hmac
import time
from datetime import date
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from services.settlement.providers.errors import ProviderError
from services.settlement.providers.kyc import KYCProvider, VerificationSession
from shared.logging import get_logger
from shared.zk import IdentityAttributes

logger = get_logger(__name__)

PERSONA_API_VERSION = "2023-01-05"
SIGNATURE_TOLERANCE_SECONDS = 300


class _TransientHTTPError(Exception):
    """5xx or 429 from Persona; retried."""


class PersonaKYCProvider(KYCProvider):
    """
    Persona inquiries over httpx.

    Usage:
        provider = PersonaKYCProvider(
            api_key=settings.kyc.api_key.get_secret_value(),
            template_id=settings.kyc.template_id,
            webhook_secret=settings.kyc.webhook_secret.get_secret_value(),
        )
    """

    name = "persona"

    def __init__(
        self,
        api_key: str,
        template_id: str,
        webhook_secret: str = "",
        base_url: str = "https://withpersona.com",
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key or not template_id:
            raise ValueError("Persona API key and template id are required")
        self.template_id = template_id
        self.webhook_secret = webhook_secret
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Persona-Version": PERSONA_API_VERSION,
                "Accept": "application/json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, _TransientHTTPError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "persona_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,  # type: ignore[union-attr]
        ),
    )
    async def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientHTTPError(f"persona returned {response.status_code}")
        if response.status_code >= 400:
            logger.warning("persona_request_rejected", path=path, status=response.status_code)
            raise ProviderError(
                f"persona returned {response.status_code}",
                provider=self.name,
                transient=False,
                status=str(response.status_code),
            )
        return response.json()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return await self._send(method, path, **kwargs)
        except (httpx.TransportError, _TransientHTTPError) as e:
            logger.error("persona_unreachable", path=path, error_type=type(e).__name__)
            raise ProviderError("persona unreachable", provider=self.name) from e

    async def create_session(self, reference_id: str) -> VerificationSession:
        created = await self._request(
            "POST",
            "/api/v1/inquiries",
            json={
                "data": {
                    "attributes": {
                        "inquiry-template-id": self.template_id,
                        "reference-id": reference_id,
                    }
                }
            },
        )
        inquiry_id = created["data"]["id"]
        resumed = await self._request("POST", f"/api/v1/inquiries/{inquiry_id}/resume")
        token = resumed.get("meta", {}).get("session-token")
        if not token:
            raise ProviderError("persona returned no session token", provider=self.name)

        logger.info("persona_inquiry_created", session_id=inquiry_id)
        return VerificationSession(session_id=inquiry_id, session_token=token)

    async def get_verified_attributes(self, session_id: str) -> IdentityAttributes:
        body = await self._request(
            "GET",
            f"/api/v1/inquiries/{session_id}",
            params={"include": "verifications"},
        )
        attributes = body["data"]["attributes"]
        if attributes.get("status") not in ("approved", "completed"):
            raise ProviderError(
                "inquiry is not approved",
                provider=self.name,
                transient=False,
                status=attributes.get("status"),
            )

        document_expires_at = None
        document_number = None
        for item in body.get("included", []):
            if item.get("type") == "verification/government-id":
                government_id = item.get("attributes", {})
                if government_id.get("expiration-date"):
                    document_expires_at = date.fromisoformat(government_id["expiration-date"])
                document_number = government_id.get("identification-number")

        birthdate = attributes.get("birthdate")
        if not birthdate:
            raise ProviderError("inquiry has no birthdate", provider=self.name, transient=False)

        return IdentityAttributes(
            date_of_birth=date.fromisoformat(birthdate),
            address={
                "street_1": attributes.get("address-street-1"),
                "street_2": attributes.get("address-street-2"),
                "city": attributes.get("address-city"),
                "state": attributes.get("address-subdivision"),
                "postal_code": attributes.get("address-postal-code"),
            },
            document_expires_at=document_expires_at,
            document_number=document_number,
        )

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        if not self.webhook_secret:
            logger.warning("persona_webhook_secret_missing")
            return False
        if not signature:
            return False

        parts = dict(
            item.split("=", 1) for item in signature.replace(" ", ",").split(",") if "=" in item
        )
        timestamp, expected = parts.get("t"), parts.get("v1")
        if not timestamp or not expected or not timestamp.isdigit():
            return False
        if abs(time.time() - int(timestamp)) > SIGNATURE_TOLERANCE_SECONDS:
            logger.warning("persona_webhook_signature_stale")
            return False

        digest = hmac.new(
            self.webhook_secret.encode(),
            f"{timestamp}.".encode() + payload,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(digest, expected)
