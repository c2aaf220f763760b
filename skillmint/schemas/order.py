"""Order schemas for course purchases."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field

from skillmint.models.order import PaymentMethod
from skillmint.schemas.base import BaseCreateSchema, BaseResponseSchema, PaginatedResponse


class OrderCreate(BaseCreateSchema):
    """Start a course purchase."""
    course_id: uuid.UUID
    payment_method: PaymentMethod = PaymentMethod.GATEWAY
    referral_code: Optional[str] = Field(None, max_length=20)
    coupon_code: Optional[str] = Field(None, max_length=50)


class OrderCheckoutResponse(BaseModel):
    """
    Returned by create-order. For gateway orders the client opens the
    checkout with gateway_order_id and key; wallet orders come back settled.
    """
    order_id: str
    gateway_order_id: Optional[str] = None
    amount: Decimal
    currency: str
    key: Optional[str] = None
    payment_status: Optional[str] = None
    order_status: Optional[str] = None


class OrderResponse(BaseResponseSchema):
    order_id: str
    user_id: uuid.UUID
    course_id: uuid.UUID
    amount: Decimal
    discount: Decimal
    final_amount: Decimal
    coupon_code: Optional[str] = None
    payment_method: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    payment_status: str
    order_status: str
    referral_used_id: Optional[uuid.UUID] = None
    affiliate_commission: Decimal
    instructor_earnings: Decimal
    platform_earnings: Decimal
    commission_status: str
    settlement_status: str
    is_refund_requested: bool
    refund_status: Optional[str] = None
    refund_reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refunded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class OrderListResponse(PaginatedResponse[OrderResponse]):
    pass


class RefundRequest(BaseCreateSchema):
    reason: Optional[str] = Field(None, max_length=500)


class RefundDecision(BaseCreateSchema):
    note: Optional[str] = Field(None, max_length=500)


class RefundReject(BaseCreateSchema):
    reason: str = Field(..., min_length=1, max_length=500)


class RefundApprovalResponse(BaseModel):
    order: OrderResponse
    commissions_cancelled: int
    commissions_flagged: int
    reversal_errors: List[str] = Field(default_factory=list)
    gateway_refund_id: Optional[str] = None
