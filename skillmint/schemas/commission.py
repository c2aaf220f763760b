"""Affiliate commission schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
import uuid

from pydantic import BaseModel, Field

from skillmint.schemas.base import BaseCreateSchema, BaseResponseSchema, PaginatedResponse


class CommissionResponse(BaseResponseSchema):
    commission_id: str
    affiliate_id: uuid.UUID
    referred_user_id: uuid.UUID
    order_id: uuid.UUID
    course_id: uuid.UUID
    level: int
    order_amount: Decimal
    commission_percentage: Decimal
    commission_amount: Decimal
    status: str
    notes: Optional[str] = None
    needs_review: bool = False
    payout_method: Optional[str] = None
    external_txn_id: Optional[str] = None
    wallet_transaction_id: Optional[str] = None
    payout_date: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    created_at: datetime


class CommissionListResponse(PaginatedResponse[CommissionResponse]):
    pass


class CommissionApprove(BaseCreateSchema):
    note: Optional[str] = Field(None, max_length=500)
    override: bool = Field(False, description="Approve before the refund window has passed")


class CommissionReject(BaseCreateSchema):
    note: Optional[str] = Field(None, max_length=500)


class CommissionPay(BaseCreateSchema):
    payout_method: str = Field("wallet", max_length=50)
    external_txn_id: Optional[str] = Field(None, max_length=100)


class StatusBucket(BaseModel):
    count: int
    amount: Decimal


class CommissionStatsResponse(BaseModel):
    affiliate_id: uuid.UUID
    by_status: Dict[str, StatusBucket]
    total_earned: Decimal
    total_pending: Decimal


class EligibilityResponse(BaseModel):
    eligible: bool
    reasons: List[str]


class CommissionRatesPayload(BaseModel):
    """Level -> percentage, e.g. {"1": 10, "2": 5, "3": 2}."""
    rates: Dict[int, Decimal]
