"""
Ledger Anchor Interface
=======================

Abstract base class and models for anchoring compliance commitments
on an append-only ledger.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from shared.config import BlockchainMode
from shared.logging import get_logger

logger = get_logger(__name__)


class AnchorRecord(BaseModel):
    """Proof metadata for an anchored hash."""

    anchor_ref: str = Field(..., description="Transaction hash identifying the anchor")
    data_hash: str = Field(..., description="SHA-256 commitment that was anchored")
    previous_hash: str | None = Field(default=None, description="Data hash of the previous anchor")
    block_number: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    network: str

    # Additional metadata
    metadata: dict[str, Any] = Field(default_factory=dict)


class LedgerAnchorClient(ABC):
    """
    Abstract base class for ledger anchor clients.

    Implements the Strategy pattern for different anchor modes.
    """

    @property
    @abstractmethod
    def mode(self) -> BlockchainMode:
        """Get the anchor mode."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the ledger network."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the ledger network."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check ledger health."""
        ...

    @abstractmethod
    async def store(self, data_hash: str, metadata: dict[str, Any] | None = None) -> str:
        """
        Anchor a commitment hash.

        Args:
            data_hash: SHA-256 hex digest to anchor
            metadata: PII-free metadata stored with the anchor

        Returns:
            str: Anchor reference (transaction hash)
        """
        ...

    @abstractmethod
    async def retrieve(self, anchor_ref: str) -> AnchorRecord | None:
        """
        Look up proof metadata for an anchor reference.

        Returns:
            AnchorRecord, or None if the reference is unknown
        """
        ...

    async def verify(self, anchor_ref: str, data_hash: str) -> bool:
        """Check that ``anchor_ref`` anchors exactly ``data_hash``."""
        record = await self.retrieve(anchor_ref)
        return record is not None and record.data_hash == data_hash


def create_ledger_anchor(mode: BlockchainMode) -> LedgerAnchorClient:
    """
    Build a ledger anchor client for ``mode``.

    Each call returns a new client; callers own its lifetime.
    """
    if mode == BlockchainMode.MOCK:
        from shared.blockchain.mock import MockLedgerAnchor

        client: LedgerAnchorClient = MockLedgerAnchor()
    elif mode in (BlockchainMode.TESTNET, BlockchainMode.MAINNET):
        raise NotImplementedError(
            f"Ledger anchor mode '{mode.value}' not yet implemented. "
            "Use BLOCKCHAIN_MODE=mock for development."
        )
    else:
        raise ValueError(f"Unknown ledger anchor mode: {mode}")

    logger.info("ledger_anchor_initialized", mode=mode.value)
    return client
