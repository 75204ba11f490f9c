"""
Settlement Store Interface
==========================

Durable state of the settlement core behind one async interface, so the
orchestrator works the same over memory and SQL engines.

Version: 0.1.0
"""

from abc import ABC, abstractmethod

from shared.models import (
    BuyerAccount,
    BuyerSecrets,
    ComplianceEvent,
    ComplianceQuery,
    DealerAccount,
    LedgerPage,
    PaymentEvent,
)


class SettlementStore(ABC):
    """
    Abstract store.

    Methods return detached copies; callers persist changes explicitly with
    the ``save_*`` methods. ``insert_compliance_event_if_absent`` and the
    dealer credit operations are atomic in every implementation.
    """

    async def connect(self) -> None:
        """Open connections or create schema."""

    async def close(self) -> None:
        """Release resources."""

    # =========================================================================
    # Buyers
    # =========================================================================

    @abstractmethod
    async def add_buyer(self, buyer: BuyerAccount) -> BuyerAccount: ...

    @abstractmethod
    async def get_buyer(self, buyer_id: str) -> BuyerAccount | None: ...

    @abstractmethod
    async def get_buyer_by_auth_id(self, auth_id: str) -> BuyerAccount | None: ...

    @abstractmethod
    async def get_buyer_by_email(self, email: str) -> BuyerAccount | None:
        """Case-insensitive lookup among non-deleted buyers."""
        ...

    @abstractmethod
    async def save_buyer(self, buyer: BuyerAccount) -> None: ...

    # =========================================================================
    # Buyer secrets
    # =========================================================================

    @abstractmethod
    async def put_secrets(self, secrets: BuyerSecrets) -> None:
        """Insert or replace the buyer's secrets."""
        ...

    @abstractmethod
    async def get_secrets(self, buyer_id: str) -> BuyerSecrets | None: ...

    @abstractmethod
    async def delete_secrets(self, buyer_id: str) -> bool: ...

    # =========================================================================
    # Payment events
    # =========================================================================

    @abstractmethod
    async def add_payment(self, payment: PaymentEvent) -> PaymentEvent: ...

    @abstractmethod
    async def get_payment(self, payment_id: str) -> PaymentEvent | None: ...

    @abstractmethod
    async def get_payment_by_hold(self, hold_id: str) -> PaymentEvent | None: ...

    @abstractmethod
    async def get_payment_by_session(self, session_id: str) -> PaymentEvent | None: ...

    @abstractmethod
    async def get_open_payment(self, buyer_id: str) -> PaymentEvent | None:
        """Most recent payment in a non-terminal status, if any."""
        ...

    @abstractmethod
    async def save_payment(self, payment: PaymentEvent) -> None: ...

    @abstractmethod
    async def list_payments(self, buyer_id: str) -> list[PaymentEvent]: ...

    @abstractmethod
    async def anonymize_payments(self, buyer_id: str) -> int:
        """Null the owning key on the buyer's payments. Returns rows changed."""
        ...

    # =========================================================================
    # Compliance events
    # =========================================================================

    @abstractmethod
    async def insert_compliance_event_if_absent(
        self, event: ComplianceEvent
    ) -> tuple[ComplianceEvent, bool]:
        """
        Insert ``event`` unless one with the same ``attempt_key`` exists.

        Returns:
            (stored event, created)
        """
        ...

    @abstractmethod
    async def get_compliance_event(self, event_id: str) -> ComplianceEvent | None: ...

    @abstractmethod
    async def get_compliance_event_by_key(self, attempt_key: str) -> ComplianceEvent | None: ...

    @abstractmethod
    async def set_compliance_anchor(self, event_id: str, anchor_ref: str) -> bool:
        """Attach an anchor reference if none is set. Returns True if attached."""
        ...

    @abstractmethod
    async def anonymize_compliance_events(self, buyer_id: str) -> int: ...

    @abstractmethod
    async def query_compliance_events(self, query: ComplianceQuery) -> LedgerPage:
        """Newest first."""
        ...

    # =========================================================================
    # Dealers
    # =========================================================================

    @abstractmethod
    async def add_dealer(self, dealer: DealerAccount) -> DealerAccount: ...

    @abstractmethod
    async def get_dealer(self, dealer_id: str) -> DealerAccount | None: ...

    @abstractmethod
    async def get_dealer_by_api_key_hash(self, api_key_hash: str) -> DealerAccount | None: ...

    @abstractmethod
    async def consume_credits(self, dealer_id: str, cost: int) -> DealerAccount | None:
        """
        Atomically add ``cost`` to ``credits_used`` if it stays within the total.

        Returns:
            Updated dealer, or None if the dealer is missing or lacks credits
        """
        ...

    @abstractmethod
    async def restore_credits(self, dealer_id: str, cost: int) -> DealerAccount | None:
        """Atomically subtract ``cost`` from ``credits_used`` (floored at zero)."""
        ...

    @abstractmethod
    async def add_credits(self, dealer_id: str, credits: int) -> DealerAccount | None:
        """Atomically add purchased credits."""
        ...
