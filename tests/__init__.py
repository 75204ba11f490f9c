"""
VeriSettle Test Suite
=====================

Test organization:
- tests/unit/                  - Proof engine, errors, auth, ledger anchor
- tests/services/settlement/   - Settlement components, SQL store, HTTP routes

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
    pytest --cov=shared --cov=services
"""
