"""
Ledger Anchor Module
====================

Abstraction layer for anchoring compliance commitments.

Supports:
- Mock (development/testing)
- Testnet and Mainnet (Polygon, not yet implemented)

Usage:
    from shared.blockchain import create_ledger_anchor

    anchor = create_ledger_anchor(settings.blockchain.mode)

    anchor_ref = await anchor.store(data_hash="9f86d0...")
    record = await anchor.retrieve(anchor_ref)
"""

from shared.blockchain.client import AnchorRecord, LedgerAnchorClient, create_ledger_anchor
from shared.blockchain.mock import MockLedgerAnchor

__all__ = [
    # Client
    "LedgerAnchorClient",
    "create_ledger_anchor",
    # Models
    "AnchorRecord",
    # Implementations
    "MockLedgerAnchor",
]
