"""Withdrawal requests: payouts from wallet balance to an external account."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from skillmint.database import Base
from skillmint.db_types import UUIDType, JSONType, Money


class WithdrawalMethod(str, Enum):
    BANK = "bank"
    UPI = "upi"
    PAYPAL = "paypal"
    WALLET = "wallet"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# A user may hold at most one request in these states
IN_FLIGHT_STATUSES = {WithdrawalStatus.PENDING.value, WithdrawalStatus.PROCESSING.value}


class WithdrawRequest(Base):
    """User-initiated payout request, moved along by admin actions."""
    __tablename__ = "withdraw_requests"
    __table_args__ = (
        Index("ix_withdraw_requests_user_status", "user_id", "status"),
        Index(
            "uq_withdraw_requests_user_in_flight",
            "user_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    request_id: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="WDR{epochMillis}{4 digits}"
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    processing_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False, comment="bank, upi, paypal, wallet")
    payment_details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=WithdrawalStatus.PENDING.value
    )

    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="External payout reference, set on completion"
    )
    debit_transaction_id: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<WithdrawRequest(request_id='{self.request_id}', status='{self.status}', amount={self.amount})>"
