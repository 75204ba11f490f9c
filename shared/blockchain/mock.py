"""
Mock Ledger Anchor
==================

In-memory mock implementation for development and testing.

Version: 0.1.0
"""

import hashlib
import uuid
from datetime import UTC, datetime
from typing import Any

from shared.blockchain.client import AnchorRecord, LedgerAnchorClient
from shared.config import BlockchainMode
from shared.logging import get_logger

logger = get_logger(__name__)


class MockLedgerAnchor(LedgerAnchorClient):
    """
    In-memory mock ledger.

    Anchors form a hash chain: each record carries the data hash of the
    record before it. State belongs to the instance, so separate instances
    never share anchors.
    """

    def __init__(self) -> None:
        """Initialize mock ledger with in-memory storage."""
        self._connected = False
        self._block_number = 1000
        self._records: dict[str, AnchorRecord] = {}
        self._chain: list[str] = []

        logger.debug("mock_ledger_anchor_initialized")

    @property
    def mode(self) -> BlockchainMode:
        return BlockchainMode.MOCK

    async def connect(self) -> None:
        """Simulate connection."""
        self._connected = True
        logger.info("mock_ledger_anchor_connected")

    async def disconnect(self) -> None:
        """Simulate disconnection."""
        self._connected = False
        logger.info("mock_ledger_anchor_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check mock ledger health."""
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "connected": self._connected,
            "block_number": self._block_number,
            "anchors": len(self._records),
        }

    def _generate_tx_hash(self) -> str:
        """Generate a mock transaction hash."""
        return "0x" + hashlib.sha256(uuid.uuid4().bytes).hexdigest()

    def _next_block(self) -> int:
        """Get next block number."""
        self._block_number += 1
        return self._block_number

    async def store(self, data_hash: str, metadata: dict[str, Any] | None = None) -> str:
        """Anchor a hash and return its transaction hash."""
        previous_hash = self._records[self._chain[-1]].data_hash if self._chain else None
        tx_hash = self._generate_tx_hash()

        record = AnchorRecord(
            anchor_ref=tx_hash,
            data_hash=data_hash,
            previous_hash=previous_hash,
            block_number=self._next_block(),
            timestamp=datetime.now(UTC),
            network="mock",
            metadata=metadata or {},
        )
        self._records[tx_hash] = record
        self._chain.append(tx_hash)

        logger.debug(
            "mock_anchor_stored",
            anchor_ref=tx_hash,
            block_number=record.block_number,
        )
        return tx_hash

    async def retrieve(self, anchor_ref: str) -> AnchorRecord | None:
        return self._records.get(anchor_ref)

    def verify_chain(self) -> bool:
        """Check that every anchor links to its predecessor."""
        previous = None
        for ref in self._chain:
            record = self._records[ref]
            if record.previous_hash != previous:
                return False
            previous = record.data_hash
        return True

    # =========================================================================
    # Testing Utilities
    # =========================================================================

    def clear_all(self) -> None:
        """Clear all data (for testing)."""
        self._records.clear()
        self._chain.clear()
        self._block_number = 1000
        logger.info("mock_ledger_anchor_cleared")

    def get_stats(self) -> dict[str, int]:
        """Get statistics about stored data."""
        return {
            "anchors": len(self._records),
            "block_number": self._block_number,
        }
