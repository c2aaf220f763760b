"""
Coupon codes for course purchases.

Supports percentage discounts (optionally capped) and fixed-amount
discounts, a minimum order amount, an expiry and per-user usage limits.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from skillmint.database import Base
from skillmint.db_types import UUIDType, Money


class DiscountType(str, Enum):
    """Discount type enumeration."""
    PERCENTAGE = "percentage"  # e.g., 10% off, capped by max_discount_amount
    FIXED = "fixed"  # e.g., ₹100 off


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique coupon code, stored uppercase"
    )
    discount_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=DiscountType.PERCENTAGE.value,
        comment="percentage, fixed"
    )
    discount_value: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=0,
        comment="Percentage or amount"
    )
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        Money,
        nullable=True,
        comment="Cap on discount for percentage type"
    )
    minimum_order_amount: Mapped[Optional[Decimal]] = mapped_column(
        Money,
        nullable=True,
        comment="Minimum list price to apply coupon"
    )

    # Usage Limits
    usage_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Total times this coupon can be used"
    )
    usage_limit_per_user: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Validity Period
    valid_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    valid_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Expiry date (null = never expires)"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Coupon(code='{self.code}', type='{self.discount_type}', value={self.discount_value})>"


class CouponUsage(Base):
    """
    Tracks coupon usage by users. Recorded when the order completes.
    """
    __tablename__ = "coupon_usage"
    __table_args__ = (
        UniqueConstraint("coupon_id", "order_id", name="uq_coupon_usage_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        comment="Actual discount applied"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
