"""
SQL Settlement Store
====================

SQLAlchemy 2.0 async implementation of ``SettlementStore``.

Credit reservation is a single conditional ``UPDATE``; ledger appends rely on
the unique ``attempt_key`` index, so both stay atomic across processes.

Version: 0.1.0
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from services.settlement.storage.base import SettlementStore
from services.settlement.storage.orm import (
    BuyerAccountRow,
    BuyerSecretsRow,
    ComplianceEventRow,
    DealerAccountRow,
    PaymentEventRow,
)
from shared.database import Base, build_session_factory, session_scope
from shared.logging import get_logger
from shared.models import (
    BuyerAccount,
    BuyerSecrets,
    ComplianceEvent,
    ComplianceQuery,
    DealerAccount,
    LedgerPage,
    PaymentEvent,
    PaymentEventStatus,
    utc_now,
)

logger = get_logger(__name__)

_OPEN_STATUSES = (PaymentEventStatus.PENDING.value, PaymentEventStatus.AUTHORIZED.value)


def _values(model: BaseModel, exclude: set[str] | None = None) -> dict[str, Any]:
    """Column values for ``model`` with enums flattened to their values."""
    data = model.model_dump(exclude=exclude or set())
    return {k: v.value if isinstance(v, Enum) else v for k, v in data.items()}


class SqlSettlementStore(SettlementStore):
    """
    Store backed by PostgreSQL (asyncpg) or SQLite (aiosqlite).

    Usage:
        store = SqlSettlementStore(PostgresClient.get_engine())
        await store.connect()
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        create_schema: bool = True,
    ) -> None:
        self.engine = engine
        self.session_factory = session_factory or build_session_factory(engine)
        self.create_schema = create_schema

    async def connect(self) -> None:
        if self.create_schema:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("settlement_schema_ready")

    async def close(self) -> None:
        await self.engine.dispose()

    # =========================================================================
    # Buyers
    # =========================================================================

    async def add_buyer(self, buyer: BuyerAccount) -> BuyerAccount:
        async with session_scope(self.session_factory) as session:
            session.add(BuyerAccountRow(**_values(buyer, {"kind"})))
        return buyer

    async def get_buyer(self, buyer_id: str) -> BuyerAccount | None:
        async with self.session_factory() as session:
            row = await session.get(BuyerAccountRow, buyer_id)
            return BuyerAccount.model_validate(row) if row else None

    async def _buyer_where(self, *criteria: Any) -> BuyerAccount | None:
        async with self.session_factory() as session:
            row = await session.scalar(select(BuyerAccountRow).where(*criteria).limit(1))
            return BuyerAccount.model_validate(row) if row else None

    async def get_buyer_by_auth_id(self, auth_id: str) -> BuyerAccount | None:
        return await self._buyer_where(BuyerAccountRow.auth_id == auth_id)

    async def get_buyer_by_email(self, email: str) -> BuyerAccount | None:
        return await self._buyer_where(
            func.lower(BuyerAccountRow.email) == email.strip().lower(),
            BuyerAccountRow.deleted_at.is_(None),
        )

    async def save_buyer(self, buyer: BuyerAccount) -> None:
        async with session_scope(self.session_factory) as session:
            await session.merge(BuyerAccountRow(**_values(buyer, {"kind"})))

    # =========================================================================
    # Buyer secrets
    # =========================================================================

    async def put_secrets(self, secrets: BuyerSecrets) -> None:
        async with session_scope(self.session_factory) as session:
            await session.merge(BuyerSecretsRow(**_values(secrets)))

    async def get_secrets(self, buyer_id: str) -> BuyerSecrets | None:
        async with self.session_factory() as session:
            row = await session.get(BuyerSecretsRow, buyer_id)
            return BuyerSecrets.model_validate(row) if row else None

    async def delete_secrets(self, buyer_id: str) -> bool:
        async with session_scope(self.session_factory) as session:
            row = await session.get(BuyerSecretsRow, buyer_id)
            if row is None:
                return False
            await session.delete(row)
        return True

    # =========================================================================
    # Payment events
    # =========================================================================

    async def add_payment(self, payment: PaymentEvent) -> PaymentEvent:
        async with session_scope(self.session_factory) as session:
            session.add(PaymentEventRow(**_values(payment)))
        return payment

    async def get_payment(self, payment_id: str) -> PaymentEvent | None:
        async with self.session_factory() as session:
            row = await session.get(PaymentEventRow, payment_id)
            return PaymentEvent.model_validate(row) if row else None

    async def _payment_where(self, *criteria: Any) -> PaymentEvent | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(PaymentEventRow)
                .where(*criteria)
                .order_by(PaymentEventRow.created_at.desc(), PaymentEventRow.id.desc())
                .limit(1)
            )
            return PaymentEvent.model_validate(row) if row else None

    async def get_payment_by_hold(self, hold_id: str) -> PaymentEvent | None:
        return await self._payment_where(PaymentEventRow.hold_id == hold_id)

    async def get_payment_by_session(self, session_id: str) -> PaymentEvent | None:
        return await self._payment_where(PaymentEventRow.verification_session_id == session_id)

    async def get_open_payment(self, buyer_id: str) -> PaymentEvent | None:
        return await self._payment_where(
            PaymentEventRow.buyer_id == buyer_id,
            PaymentEventRow.status.in_(_OPEN_STATUSES),
        )

    async def save_payment(self, payment: PaymentEvent) -> None:
        payment.updated_at = utc_now()
        async with session_scope(self.session_factory) as session:
            await session.merge(PaymentEventRow(**_values(payment)))

    async def list_payments(self, buyer_id: str) -> list[PaymentEvent]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(PaymentEventRow)
                .where(PaymentEventRow.buyer_id == buyer_id)
                .order_by(PaymentEventRow.created_at.desc(), PaymentEventRow.id.desc())
            )
            return [PaymentEvent.model_validate(r) for r in rows]

    async def anonymize_payments(self, buyer_id: str) -> int:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                update(PaymentEventRow)
                .where(PaymentEventRow.buyer_id == buyer_id)
                .values(buyer_id=None, anonymized_at=utc_now())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    # =========================================================================
    # Compliance events
    # =========================================================================

    async def get_compliance_event_by_key(self, attempt_key: str) -> ComplianceEvent | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(ComplianceEventRow).where(ComplianceEventRow.attempt_key == attempt_key)
            )
            return ComplianceEvent.model_validate(row) if row else None

    async def insert_compliance_event_if_absent(
        self, event: ComplianceEvent
    ) -> tuple[ComplianceEvent, bool]:
        existing = await self.get_compliance_event_by_key(event.attempt_key)
        if existing is not None:
            return existing, False

        try:
            async with session_scope(self.session_factory) as session:
                session.add(ComplianceEventRow(**_values(event)))
        except IntegrityError:
            # A concurrent writer inserted the same attempt first
            existing = await self.get_compliance_event_by_key(event.attempt_key)
            if existing is None:
                raise
            return existing, False

        return event, True

    async def get_compliance_event(self, event_id: str) -> ComplianceEvent | None:
        async with self.session_factory() as session:
            row = await session.get(ComplianceEventRow, event_id)
            return ComplianceEvent.model_validate(row) if row else None

    async def set_compliance_anchor(self, event_id: str, anchor_ref: str) -> bool:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                update(ComplianceEventRow)
                .where(
                    ComplianceEventRow.id == event_id,
                    ComplianceEventRow.anchor_ref.is_(None),
                )
                .values(anchor_ref=anchor_ref)
                .execution_options(synchronize_session=False)
            )
        return (result.rowcount or 0) > 0

    async def anonymize_compliance_events(self, buyer_id: str) -> int:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                update(ComplianceEventRow)
                .where(ComplianceEventRow.buyer_id == buyer_id)
                .values(buyer_id=None, anonymized_at=utc_now())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    async def query_compliance_events(self, query: ComplianceQuery) -> LedgerPage:
        criteria = []
        if query.buyer_id is not None:
            criteria.append(ComplianceEventRow.buyer_id == query.buyer_id)
        if query.dealer_id is not None:
            criteria.append(ComplianceEventRow.dealer_id == query.dealer_id)
        if query.from_date is not None:
            criteria.append(ComplianceEventRow.created_at >= query.from_date)
        if query.to_date is not None:
            criteria.append(ComplianceEventRow.created_at <= query.to_date)
        if query.age_verified is not None:
            criteria.append(ComplianceEventRow.age_verified.is_(query.age_verified))
        if query.address_verified is not None:
            criteria.append(ComplianceEventRow.address_verified.is_(query.address_verified))

        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(ComplianceEventRow).where(*criteria)
            )
            rows = await session.scalars(
                select(ComplianceEventRow)
                .where(*criteria)
                .order_by(ComplianceEventRow.created_at.desc(), ComplianceEventRow.id.desc())
                .offset(query.offset)
                .limit(query.limit)
            )
            items = [ComplianceEvent.model_validate(r) for r in rows]

        return LedgerPage(
            items=items,
            total=total or 0,
            page=query.page,
            page_size=query.page_size,
        )

    # =========================================================================
    # Dealers
    # =========================================================================

    async def add_dealer(self, dealer: DealerAccount) -> DealerAccount:
        async with session_scope(self.session_factory) as session:
            session.add(DealerAccountRow(**_values(dealer, {"kind"})))
        return dealer

    async def get_dealer(self, dealer_id: str) -> DealerAccount | None:
        async with self.session_factory() as session:
            row = await session.get(DealerAccountRow, dealer_id)
            return DealerAccount.model_validate(row) if row else None

    async def get_dealer_by_api_key_hash(self, api_key_hash: str) -> DealerAccount | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(DealerAccountRow).where(DealerAccountRow.api_key_hash == api_key_hash)
            )
            return DealerAccount.model_validate(row) if row else None

    async def _update_dealer(self, dealer_id: str, *criteria: Any, **values: Any) -> DealerAccount | None:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                update(DealerAccountRow)
                .where(DealerAccountRow.id == dealer_id, *criteria)
                .values(updated_at=utc_now(), **values)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                return None
            row = await session.get(DealerAccountRow, dealer_id, populate_existing=True)
            return DealerAccount.model_validate(row) if row else None

    async def consume_credits(self, dealer_id: str, cost: int) -> DealerAccount | None:
        used = DealerAccountRow.credits_used
        total = DealerAccountRow.credits_purchased + DealerAccountRow.additional_credits_purchased
        return await self._update_dealer(
            dealer_id,
            used + cost <= total,
            credits_used=used + cost,
        )

    async def restore_credits(self, dealer_id: str, cost: int) -> DealerAccount | None:
        used = DealerAccountRow.credits_used
        return await self._update_dealer(
            dealer_id,
            credits_used=case((used >= cost, used - cost), else_=0),
        )

    async def add_credits(self, dealer_id: str, credits: int) -> DealerAccount | None:
        extra = DealerAccountRow.additional_credits_purchased
        return await self._update_dealer(
            dealer_id,
            additional_credits_purchased=extra + credits,
        )
