"""
VeriSettle Shared Library
=========================

Common utilities, configuration, and abstractions used by the settlement service.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - errors: Error taxonomy and result types
    - auth: JWT authentication, API keys and secret encryption
    - database: PostgreSQL and Redis clients
    - blockchain: Ledger anchor interface (mock/testnet/mainnet)
    - zk: Verification proof engine
    - models: Shared Pydantic models

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "VeriSettle Team"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
