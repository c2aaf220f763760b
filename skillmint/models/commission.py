"""Multi-level affiliate commissions."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from skillmint.database import Base
from skillmint.db_types import UUIDType, Money


class CommissionStatus(str, Enum):
    """Commission lifecycle."""
    PENDING = "pending"         # Scheduled at order completion
    APPROVED = "approved"       # Cleared for payout
    REJECTED = "rejected"       # Refused by admin
    PAID = "paid"               # Credited to the affiliate's wallet
    CANCELLED = "cancelled"     # Order refunded before payout


class AffiliateCommission(Base):
    """
    One commission per (order, level).

    Level is the hop distance from the buyer: level 1 is the buyer's direct
    referrer, level 2 that referrer's referrer, and so on up to 3.
    """
    __tablename__ = "affiliate_commissions"
    __table_args__ = (
        UniqueConstraint("order_id", "level", name="uq_commission_order_level"),
        Index("ix_commissions_affiliate_status", "affiliate_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    commission_id: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="COM{epochMillis}{4 digits}"
    )

    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    referred_user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("courses.id", ondelete="RESTRICT"),
        nullable=False
    )

    level: Mapped[int] = mapped_column(Integer, nullable=False, comment="1, 2 or 3")
    order_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    commission_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=CommissionStatus.PENDING.value
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    needs_review: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Paid commission whose order was later refunded"
    )

    # Payout
    payout_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    external_txn_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    wallet_transaction_id: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payout_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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
        return f"<AffiliateCommission(commission_id='{self.commission_id}', level={self.level}, status='{self.status}')>"
