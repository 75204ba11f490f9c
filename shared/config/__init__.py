"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from shared.config import settings

    print(settings.environment)
    print(settings.policy.address_match_threshold)
"""

from shared.config.settings import (
    BlockchainMode,
    Environment,
    KYCProviderName,
    LockBackend,
    LogLevel,
    PaymentProviderName,
    Settings,
    StorageBackend,
    VerificationPolicySettings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "BlockchainMode",
    "PaymentProviderName",
    "KYCProviderName",
    "StorageBackend",
    "LockBackend",
    "VerificationPolicySettings",
]
