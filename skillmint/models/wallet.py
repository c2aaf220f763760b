"""
Wallet ledger models.

Wallet holds the running balance, guarded by a version counter; every
balance change appends one immutable WalletTransaction whose sequence equals
the wallet version it produced.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from skillmint.database import Base
from skillmint.db_types import UUIDType, JSONType, Money


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class ReferenceType(str, Enum):
    """What a ledger entry points at. Closed set; reference_id holds the business id."""
    COURSE_PURCHASE = "course_purchase"
    AFFILIATE_COMMISSION = "affiliate_commission"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    WALLET_TOPUP = "wallet_topup"
    BONUS = "bonus"
    CORRECTION = "correction"
    OTHER = "other"


# Credits of these kinds count towards total_earned
EARNING_REFERENCE_TYPES = {
    ReferenceType.COURSE_PURCHASE.value,
    ReferenceType.AFFILIATE_COMMISSION.value,
    ReferenceType.BONUS.value,
}


class TopupStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Wallet(Base):
    """One wallet per user, created lazily on first use."""
    __tablename__ = "wallets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True
    )
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    total_earned: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    total_topped_up: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    total_withdrawn: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    pending_withdrawals: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Compare-and-set counter, bumped on every balance change"
    )
    last_transaction_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Wallet(user_id={self.user_id}, balance={self.balance}, version={self.version})>"


class WalletTransaction(Base):
    """Append-only ledger entry. Never updated; corrections are new entries."""
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "sequence", name="uq_transactions_wallet_sequence"),
        Index("ix_transactions_reference", "reference_type", "reference_id"),
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    transaction_id: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="TXN{epochMillis}{4 digits}"
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("wallets.id", ondelete="CASCADE"),
        nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False, comment="credit, debit")
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    reference_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=ReferenceType.OTHER.value
    )
    reference_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.COMPLETED.value
    )
    extra: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == TransactionType.CREDIT.value else -self.amount

    def __repr__(self) -> str:
        return f"<WalletTransaction(transaction_id='{self.transaction_id}', type='{self.type}', amount={self.amount})>"


class WalletTopup(Base):
    """A gateway payment that adds funds to the payer's own wallet."""
    __tablename__ = "wallet_topups"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    topup_id: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    gateway_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=TopupStatus.PENDING.value
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
