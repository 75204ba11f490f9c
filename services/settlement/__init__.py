"""
Settlement Service
==================

Verification & settlement orchestrator: safe-capture payment holds,
KYC session coordination, webhook reconciliation, verification proofs,
the compliance ledger and dealer quota metering.

Version: 0.1.0
"""

__version__ = "0.1.0"
