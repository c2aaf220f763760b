"""Payment schemas for the checkout callback and wallet top-ups."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from pydantic import BaseModel, Field

from skillmint.schemas.base import BaseCreateSchema, BaseResponseSchema


class VerifyPaymentRequest(BaseCreateSchema):
    """API request to verify a checkout callback."""
    razorpay_order_id: str = Field(..., description="Razorpay order ID")
    razorpay_payment_id: str = Field(..., description="Razorpay payment ID")
    razorpay_signature: str = Field(..., description="Razorpay signature for verification")


class WebhookAck(BaseModel):
    status: str = "ok"
    event: Optional[str] = None
    handled: bool = False


class TopupCreate(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0, le=100000, decimal_places=2, description="Amount in INR")


class TopupCheckoutResponse(BaseModel):
    """Everything the client needs to open the Razorpay checkout."""
    topup_id: str
    gateway_order_id: str
    amount: Decimal
    currency: str
    key: Optional[str] = None


class TopupResponse(BaseResponseSchema):
    topup_id: str
    user_id: uuid.UUID
    amount: Decimal
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    status: str
    transaction_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
