"""
Settlement Service Routes
=========================

API route handlers for the settlement service.
"""

from services.settlement.routes import buyer, dealer, webhooks


__all__ = ["buyer", "dealer", "webhooks"]
