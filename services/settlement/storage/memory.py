"""
In-Memory Settlement Store
==========================

Process-local store for development and tests. Each instance owns its data;
nothing is shared between instances.

Version: 0.1.0
"""

import asyncio
from typing import TypeVar

from pydantic import BaseModel

from services.settlement.storage.base import SettlementStore
from shared.logging import get_logger
from shared.models import (
    BuyerAccount,
    BuyerSecrets,
    ComplianceEvent,
    ComplianceQuery,
    DealerAccount,
    LedgerPage,
    PaymentEvent,
    utc_now,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _copy(model: M | None) -> M | None:
    return model.model_copy(deep=True) if model is not None else None


class MemorySettlementStore(SettlementStore):
    """
    Dict-backed store.

    Mutating operations that must be atomic run under one asyncio lock, so a
    check and its write never interleave with another coroutine.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._buyers: dict[str, BuyerAccount] = {}
        self._secrets: dict[str, BuyerSecrets] = {}
        self._payments: dict[str, PaymentEvent] = {}
        self._events: dict[str, ComplianceEvent] = {}
        self._events_by_key: dict[str, str] = {}
        self._dealers: dict[str, DealerAccount] = {}

    # =========================================================================
    # Buyers
    # =========================================================================

    async def add_buyer(self, buyer: BuyerAccount) -> BuyerAccount:
        async with self._lock:
            if buyer.id in self._buyers:
                raise ValueError(f"buyer {buyer.id} already exists")
            self._buyers[buyer.id] = buyer.model_copy(deep=True)
        return buyer

    async def get_buyer(self, buyer_id: str) -> BuyerAccount | None:
        return _copy(self._buyers.get(buyer_id))

    async def get_buyer_by_auth_id(self, auth_id: str) -> BuyerAccount | None:
        for buyer in self._buyers.values():
            if buyer.auth_id == auth_id:
                return _copy(buyer)
        return None

    async def get_buyer_by_email(self, email: str) -> BuyerAccount | None:
        wanted = email.strip().lower()
        for buyer in self._buyers.values():
            if buyer.email and buyer.email.lower() == wanted and not buyer.is_deleted:
                return _copy(buyer)
        return None

    async def save_buyer(self, buyer: BuyerAccount) -> None:
        self._buyers[buyer.id] = buyer.model_copy(deep=True)

    # =========================================================================
    # Buyer secrets
    # =========================================================================

    async def put_secrets(self, secrets: BuyerSecrets) -> None:
        self._secrets[secrets.buyer_id] = secrets.model_copy(deep=True)

    async def get_secrets(self, buyer_id: str) -> BuyerSecrets | None:
        return _copy(self._secrets.get(buyer_id))

    async def delete_secrets(self, buyer_id: str) -> bool:
        return self._secrets.pop(buyer_id, None) is not None

    # =========================================================================
    # Payment events
    # =========================================================================

    async def add_payment(self, payment: PaymentEvent) -> PaymentEvent:
        self._payments[payment.id] = payment.model_copy(deep=True)
        return payment

    async def get_payment(self, payment_id: str) -> PaymentEvent | None:
        return _copy(self._payments.get(payment_id))

    async def get_payment_by_hold(self, hold_id: str) -> PaymentEvent | None:
        for payment in self._payments.values():
            if payment.hold_id == hold_id:
                return _copy(payment)
        return None

    async def get_payment_by_session(self, session_id: str) -> PaymentEvent | None:
        for payment in self._payments.values():
            if payment.verification_session_id == session_id:
                return _copy(payment)
        return None

    async def get_open_payment(self, buyer_id: str) -> PaymentEvent | None:
        open_payments = [
            p for p in self._payments.values() if p.buyer_id == buyer_id and p.is_open
        ]
        if not open_payments:
            return None
        return _copy(max(open_payments, key=lambda p: (p.created_at, p.id)))

    async def save_payment(self, payment: PaymentEvent) -> None:
        payment.updated_at = utc_now()
        self._payments[payment.id] = payment.model_copy(deep=True)

    async def list_payments(self, buyer_id: str) -> list[PaymentEvent]:
        rows = [p for p in self._payments.values() if p.buyer_id == buyer_id]
        rows.sort(key=lambda p: (p.created_at, p.id), reverse=True)
        return [p.model_copy(deep=True) for p in rows]

    async def anonymize_payments(self, buyer_id: str) -> int:
        now = utc_now()
        changed = 0
        for payment in self._payments.values():
            if payment.buyer_id == buyer_id:
                payment.buyer_id = None
                payment.anonymized_at = now
                changed += 1
        return changed

    # =========================================================================
    # Compliance events
    # =========================================================================

    async def insert_compliance_event_if_absent(
        self, event: ComplianceEvent
    ) -> tuple[ComplianceEvent, bool]:
        async with self._lock:
            existing_id = self._events_by_key.get(event.attempt_key)
            if existing_id is not None:
                return self._events[existing_id].model_copy(deep=True), False
            self._events[event.id] = event.model_copy(deep=True)
            self._events_by_key[event.attempt_key] = event.id
        return event, True

    async def get_compliance_event(self, event_id: str) -> ComplianceEvent | None:
        return _copy(self._events.get(event_id))

    async def get_compliance_event_by_key(self, attempt_key: str) -> ComplianceEvent | None:
        event_id = self._events_by_key.get(attempt_key)
        return _copy(self._events.get(event_id)) if event_id else None

    async def set_compliance_anchor(self, event_id: str, anchor_ref: str) -> bool:
        async with self._lock:
            event = self._events.get(event_id)
            if event is None or event.anchor_ref is not None:
                return False
            event.anchor_ref = anchor_ref
        return True

    async def anonymize_compliance_events(self, buyer_id: str) -> int:
        now = utc_now()
        changed = 0
        async with self._lock:
            for event in self._events.values():
                if event.buyer_id == buyer_id:
                    event.buyer_id = None
                    event.anonymized_at = now
                    changed += 1
        return changed

    async def query_compliance_events(self, query: ComplianceQuery) -> LedgerPage:
        def matches(event: ComplianceEvent) -> bool:
            if query.buyer_id is not None and event.buyer_id != query.buyer_id:
                return False
            if query.dealer_id is not None and event.dealer_id != query.dealer_id:
                return False
            if query.from_date and event.created_at < query.from_date:
                return False
            if query.to_date and event.created_at > query.to_date:
                return False
            if query.age_verified is not None and event.age_verified != query.age_verified:
                return False
            if (
                query.address_verified is not None
                and event.address_verified != query.address_verified
            ):
                return False
            return True

        rows = sorted(
            (e for e in self._events.values() if matches(e)),
            key=lambda e: (e.created_at, e.id),
            reverse=True,
        )
        page = rows[query.offset : query.offset + query.limit]
        return LedgerPage(
            items=[e.model_copy(deep=True) for e in page],
            total=len(rows),
            page=query.page,
            page_size=query.page_size,
        )

    # =========================================================================
    # Dealers
    # =========================================================================

    async def add_dealer(self, dealer: DealerAccount) -> DealerAccount:
        async with self._lock:
            if dealer.id in self._dealers:
                raise ValueError(f"dealer {dealer.id} already exists")
            self._dealers[dealer.id] = dealer.model_copy(deep=True)
        return dealer

    async def get_dealer(self, dealer_id: str) -> DealerAccount | None:
        return _copy(self._dealers.get(dealer_id))

    async def get_dealer_by_api_key_hash(self, api_key_hash: str) -> DealerAccount | None:
        for dealer in self._dealers.values():
            if dealer.api_key_hash == api_key_hash:
                return _copy(dealer)
        return None

    async def consume_credits(self, dealer_id: str, cost: int) -> DealerAccount | None:
        async with self._lock:
            dealer = self._dealers.get(dealer_id)
            if dealer is None or dealer.credits_used + cost > dealer.credits_total:
                return None
            dealer.credits_used += cost
            dealer.updated_at = utc_now()
            return dealer.model_copy(deep=True)

    async def restore_credits(self, dealer_id: str, cost: int) -> DealerAccount | None:
        async with self._lock:
            dealer = self._dealers.get(dealer_id)
            if dealer is None:
                return None
            dealer.credits_used = max(0, dealer.credits_used - cost)
            dealer.updated_at = utc_now()
            return dealer.model_copy(deep=True)

    async def add_credits(self, dealer_id: str, credits: int) -> DealerAccount | None:
        async with self._lock:
            dealer = self._dealers.get(dealer_id)
            if dealer is None:
                return None
            dealer.additional_credits_purchased += credits
            dealer.updated_at = utc_now()
            return dealer.model_copy(deep=True)
