"""
Course purchase orders.

An order records one purchase attempt: the list price and discount, how it
was paid, the revenue split snapshot taken at completion and the refund
workflow fields.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from skillmint.database import Base
from skillmint.db_types import UUIDType, JSONType, Money


class PaymentMethod(str, Enum):
    GATEWAY = "gateway"
    WALLET = "wallet"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderCommissionStatus(str, Enum):
    """Whether the commission engine has run for this order."""
    PENDING = "pending"
    PROCESSED = "processed"
    REJECTED = "rejected"


class SettlementStatus(str, Enum):
    """Instructor and platform credits for a completed order."""
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


class Order(Base):
    """Course purchase order."""
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_orders_user_created', 'user_id', 'created_at'),
        Index('ix_orders_payment_status_created', 'payment_status', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="ORD{epochMillis}{4 digits}"
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("courses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Pricing
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, comment="List price")
    discount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    final_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, comment="amount - discount")
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Payment
    payment_method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=PaymentMethod.GATEWAY.value,
        comment="gateway, wallet"
    )
    gateway_order_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        unique=True,
        nullable=True,
        index=True
    )
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    gateway_signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=PaymentStatus.PENDING.value,
        comment="pending, completed, failed, refunded"
    )
    order_status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=OrderStatus.PENDING.value,
        comment="pending, processing, completed, cancelled"
    )

    # Referral
    referral_used_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Revenue split snapshot, filled at completion
    affiliate_commission: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    instructor_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    platform_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    commission_status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=OrderCommissionStatus.PENDING.value
    )
    commission_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Settlement of instructor / platform credits
    settlement_status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=SettlementStatus.PENDING.value
    )
    instructor_credited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    platform_credited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    settlement_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Refunds
    is_refund_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refund_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="pending, approved, rejected, processed"
    )
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    refund_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Request metadata (ip, user agent, device)
    request_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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

    @property
    def is_completed(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED.value

    def __repr__(self) -> str:
        return f"<Order(order_id='{self.order_id}', payment_status='{self.payment_status}')>"
