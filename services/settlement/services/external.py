"""
External Call Policy
====================

Retry and error translation for payment and KYC provider calls.

Transient ``ProviderError``s are retried with exponential backoff. Once
retries are exhausted the failure surfaces as ``ExternalServiceError`` with a
fixed message; the provider's own message is only logged.

Version: 0.1.0
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from services.settlement.providers.errors import ProviderError
from shared.config.settings import ReconciliationSettings
from shared.errors import ExternalServiceError
from shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Caller-facing messages per operation
EXTERNAL_MESSAGES: dict[str, str] = {
    "create_hold": "Payment provider could not place the hold",
    "capture": "Payment provider could not capture the hold",
    "release": "Payment provider could not release the hold",
    "create_session": "Identity provider could not open a verification session",
    "get_verified_attributes": "Identity provider could not return verified attributes",
}


def is_transient(error: BaseException) -> bool:
    """Retry only provider failures that may succeed on a later attempt."""
    return isinstance(error, ProviderError) and error.transient


def provider_retrying(policy: ReconciliationSettings, operation: str) -> AsyncRetrying:
    """Build the retry controller for one provider operation."""
    return AsyncRetrying(
        retry=retry_if_exception(is_transient),
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.backoff_min_seconds,
            min=policy.backoff_min_seconds,
            max=policy.backoff_max_seconds,
        ),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "provider_retry",
            operation=operation,
            attempt=retry_state.attempt_number,
        ),
    )


async def call_provider(
    policy: ReconciliationSettings,
    operation: str,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Call a provider coroutine with retries.

    Raises:
        ExternalServiceError: Retries exhausted or the failure was permanent.
            ``details["transient"]`` tells whether a later retry may succeed.
    """
    try:
        return await provider_retrying(policy, operation)(func, *args, **kwargs)
    except ProviderError as e:
        logger.error(
            "provider_call_failed",
            operation=operation,
            provider=e.provider,
            transient=e.transient,
            provider_status=e.status,
        )
        raise ExternalServiceError(
            EXTERNAL_MESSAGES.get(operation, "External provider unavailable"),
            operation=operation,
            transient=e.transient,
        ) from e
