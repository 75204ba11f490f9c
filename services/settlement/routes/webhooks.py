"""
Provider Webhook Routes
=======================

Inbound KYC and payment notifications. Deliveries are at-least-once and may
arrive out of order; every response tells the sender whether to deliver
again.

Response codes:
- 200: applied, duplicate, ignored, or rejected as not applicable
- 400: malformed payload
- 401: bad signature
- 503 with ``Retry-After``: deferred, deliver again later
"""

import json
import math
from typing import Annotated, Any

from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.settlement.dependencies import ContainerDep
from shared.errors import ErrorKind, Outcome, OutcomeStatus
from shared.logging import get_logger


logger = get_logger(__name__)
router = APIRouter()


class WebhookAck(BaseModel):
    """Body of every webhook response."""

    status: OutcomeStatus
    state: str | None = None
    error: ErrorKind | None = None
    message: str = ""
    retry_after_ms: int = 0


def _respond(outcome: Outcome) -> JSONResponse:
    body = WebhookAck(
        status=outcome.status,
        state=outcome.state,
        error=outcome.error_kind,
        message=outcome.message,
        retry_after_ms=outcome.retry_after_ms,
    ).model_dump(mode="json")

    if outcome.should_retry:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body,
            headers={"Retry-After": str(max(1, math.ceil(outcome.retry_after_ms / 1000)))},
        )
    if outcome.status is OutcomeStatus.REJECTED and outcome.error_kind is ErrorKind.VALIDATION:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)
    return JSONResponse(status_code=status.HTTP_200_OK, content=body)


def _parse(raw: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    return payload


@router.post("/kyc", response_model=WebhookAck)
async def kyc_webhook(
    request: Request,
    container: ContainerDep,
    persona_signature: Annotated[str | None, Header(alias="Persona-Signature")] = None,
) -> JSONResponse:
    """KYC decision notification."""
    raw = await request.body()
    if not container.kyc_provider.verify_webhook_signature(raw, persona_signature):
        logger.warning("kyc_webhook_signature_invalid")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    outcome = await container.reconciliation.handle_kyc_event(_parse(raw))
    return _respond(outcome)


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    container: ContainerDep,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> JSONResponse:
    """Payment hold notification (captured, released, refunded, capture failed)."""
    raw = await request.body()
    if not container.payment_provider.verify_webhook_signature(raw, stripe_signature):
        logger.warning("payment_webhook_signature_invalid")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    outcome = await container.reconciliation.handle_payment_event(_parse(raw))
    return _respond(outcome)
