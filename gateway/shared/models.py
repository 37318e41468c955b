"""SQLAlchemy ORM models for the payment gateway."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gateway.shared.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStatus(str, PyEnum):
    pending = "pending"
    awaiting_payment = "awaiting_payment"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    refunded = "refunded"


TERMINAL_STATUSES: frozenset[str] = frozenset(
    {
        TransactionStatus.completed.value,
        TransactionStatus.failed.value,
        TransactionStatus.cancelled.value,
        TransactionStatus.refunded.value,
    }
)
PENDING_GROUP: tuple[str, ...] = (
    TransactionStatus.pending.value,
    TransactionStatus.awaiting_payment.value,
    TransactionStatus.processing.value,
)
FAILED_GROUP: tuple[str, ...] = (
    TransactionStatus.failed.value,
    TransactionStatus.cancelled.value,
)
# Statuses the timeout job is allowed to fail.
UNRESOLVED_STATUSES: tuple[str, ...] = (
    TransactionStatus.pending.value,
    TransactionStatus.awaiting_payment.value,
)


class UserStatus(str, PyEnum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


class PaymentMethodType(str, PyEnum):
    card = "card"
    credit_card = "credit_card"
    debit_card = "debit_card"
    bank_transfer = "bank_transfer"
    wallet = "wallet"
    momo = "momo"
    zalopay = "zalopay"
    vnpay_wallet = "vnpay_wallet"
    cash = "cash"
    payos = "payos"


class PaymentProvider(str, PyEnum):
    payos = "payos"
    vnpay = "vnpay"
    momo = "momo"
    zalopay = "zalopay"
    stripe = "stripe"
    manual = "manual"


class PaymentMethodStatus(str, PyEnum):
    active = "active"
    inactive = "inactive"
    expired = "expired"
    blocked = "blocked"


class User(Base):
    """Account that owns payment methods and transactions."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.active.value, index=True
    )
    kyc_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class PaymentMethod(Base):
    """Tokenised payment instrument stored for a user."""

    __tablename__ = "payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    last_four: Mapped[str | None] = mapped_column(String(4), nullable=True)
    expiry_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiry_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentMethodStatus.active.value, index=True
    )
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class Transaction(Base):
    """A single payment attempt and its lifecycle state."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    payment_method_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="VND")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=TransactionStatus.pending.value, index=True
    )
    fraud_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fraud_decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    fraud_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fraud_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fraud_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    external_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True, index=True
    )
    gateway_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gateway_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped[User] = relationship(lazy="raise")
    payment_method: Mapped[PaymentMethod | None] = relationship(lazy="raise")
    refunds: Mapped[list["Refund"]] = relationship(
        back_populates="transaction", lazy="raise"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TransactionEvent(Base):
    """Append-only audit record of a transaction's creation or status change."""

    __tablename__ = "transaction_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    from_value: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_value: Mapped[str | None] = mapped_column(String(50), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )


class Refund(Base):
    """Refund issued against a transaction; its presence blocks deletion."""

    __tablename__ = "refunds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    transaction: Mapped[Transaction] = relationship(back_populates="refunds", lazy="raise")
