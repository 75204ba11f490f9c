"""
Provider Errors
===============

Failures raised by payment and KYC adapters. The core translates them into
``ExternalServiceError`` without exposing the provider's message to callers.

Version: 0.1.0
"""


class ProviderError(Exception):
    """An external provider call failed."""

    def __init__(
        self,
        message: str,
        provider: str,
        transient: bool = True,
        status: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.transient = transient
        self.status = status
