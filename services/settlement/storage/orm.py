"""
Settlement Database Models
==========================

SQLAlchemy ORM models for accounts, payments and the compliance ledger.

Enums are stored as plain strings so the same schema runs on PostgreSQL
and SQLite.

Version: 0.1.0
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from shared.database.postgres import Base


class BuyerAccountRow(Base):
    """Buyer identity anchor and current settlement attempt."""

    __tablename__ = "buyer_accounts"
    __table_args__ = (
        Index("ix_buyer_accounts_email", "email"),
        Index("ix_buyer_accounts_state", "settlement_state"),
    )

    id = Column(String(36), primary_key=True)
    auth_id = Column(String(255), nullable=False, unique=True)
    buyer_reference_id = Column(String(32), nullable=False, unique=True)

    email = Column(String(320), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)

    settlement_state = Column(String(32), nullable=False, default="pending")
    payment_status = Column(String(32), nullable=False, default="pending")
    verification_status = Column(String(32), nullable=False, default="pending")
    current_payment_id = Column(String(36), nullable=True)
    payment_hold_ref = Column(String(255), nullable=True)
    kyc_session_id = Column(String(255), nullable=True)
    last_decision = Column(String(16), nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)

    verified_at = Column(DateTime(timezone=True), nullable=True)
    verification_expires_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class BuyerSecretsRow(Base):
    """Encrypted identity attributes, one row per buyer."""

    __tablename__ = "buyer_secrets"

    buyer_id = Column(
        String(36),
        ForeignKey("buyer_accounts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    encrypted_attributes = Column(Text, nullable=False)
    commitment_salt = Column(String(64), nullable=False)
    kyc_session_id = Column(String(255), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class PaymentEventRow(Base):
    """One payment hold per settlement attempt."""

    __tablename__ = "payment_events"
    __table_args__ = (
        Index("ix_payment_events_buyer", "buyer_id"),
        Index("ix_payment_events_hold", "hold_id", unique=True),
        Index("ix_payment_events_session", "verification_session_id"),
        CheckConstraint("amount_cents > 0", name="check_amount_positive"),
    )

    id = Column(String(36), primary_key=True)
    buyer_id = Column(
        String(36),
        ForeignKey("buyer_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    customer_reference_id = Column(String(32), nullable=False)
    type = Column(String(16), nullable=False, default="verification")
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(16), nullable=False, default="pending")

    provider = Column(String(32), nullable=False, default="mock")
    hold_id = Column(String(255), nullable=True)
    idempotency_key = Column(String(64), nullable=False)
    verification_session_id = Column(String(255), nullable=True)
    captured_amount_cents = Column(Integer, nullable=True)
    failure_reason = Column(String(255), nullable=True)

    authorized_at = Column(DateTime(timezone=True), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    anonymized_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ComplianceEventRow(Base):
    """Append-only verification outcome."""

    __tablename__ = "compliance_events"
    __table_args__ = (
        Index("ix_compliance_events_attempt", "attempt_key", unique=True),
        Index("ix_compliance_events_buyer", "buyer_id"),
        Index("ix_compliance_events_dealer", "dealer_id"),
        Index("ix_compliance_events_created", "created_at"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="check_confidence"),
    )

    id = Column(String(36), primary_key=True)
    attempt_key = Column(String(255), nullable=False)

    buyer_id = Column(
        String(36),
        ForeignKey("buyer_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    dealer_id = Column(
        String(36),
        ForeignKey("dealer_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    buyer_reference_id = Column(String(32), nullable=False)
    dealer_reference_id = Column(String(32), nullable=True)

    verification_data = Column(JSON, nullable=False, default=dict)
    age_verified = Column(Boolean, nullable=False)
    address_verified = Column(Boolean, nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)

    anchor_ref = Column(String(255), nullable=True)
    anonymized_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class DealerAccountRow(Base):
    """Verifying party with prepaid credits."""

    __tablename__ = "dealer_accounts"
    __table_args__ = (
        Index("ix_dealer_accounts_api_key", "api_key_hash", unique=True),
        CheckConstraint("credits_used >= 0", name="check_credits_used"),
    )

    id = Column(String(36), primary_key=True)
    dealer_reference_id = Column(String(32), nullable=False, unique=True)
    company_name = Column(String(255), nullable=False)
    api_key_hash = Column(String(64), nullable=False)

    credits_purchased = Column(Integer, nullable=False, default=0)
    additional_credits_purchased = Column(Integer, nullable=False, default=0)
    credits_used = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
