"""
VeriSettle Services
===================

Services:
- settlement: safe-capture verification, webhook reconciliation and
  dealer compliance checks
"""

__all__ = [
    "settlement",
]
