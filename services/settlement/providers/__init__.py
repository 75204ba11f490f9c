"""
External Providers
==================

Payment hold and KYC provider interfaces with mock, Stripe and Persona
implementations.
"""

from services.settlement.providers.errors import ProviderError
from services.settlement.providers.kyc import KYCProvider, VerificationSession
from services.settlement.providers.mock import (
    DEFAULT_IDENTITY,
    MockKYCProvider,
    MockPaymentProvider,
)
from services.settlement.providers.payment import (
    CaptureResult,
    HoldResult,
    PaymentProvider,
    ReleaseResult,
)

__all__ = [
    "ProviderError",
    "PaymentProvider",
    "HoldResult",
    "CaptureResult",
    "ReleaseResult",
    "KYCProvider",
    "VerificationSession",
    "MockPaymentProvider",
    "MockKYCProvider",
    "DEFAULT_IDENTITY",
]
