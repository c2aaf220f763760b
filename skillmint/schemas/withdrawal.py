"""Withdrawal request schemas and per-method payout details."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, EmailStr, Field

from skillmint.models.withdrawal import WithdrawalMethod
from skillmint.schemas.base import BaseCreateSchema, BaseResponseSchema


class BankDetails(BaseModel):
    account_holder_name: str = Field(..., min_length=2, max_length=100)
    account_number: str = Field(..., pattern=r"^\d{9,18}$", description="9-18 digits")
    ifsc_code: str = Field(..., pattern=r"^[A-Z]{4}0[A-Z0-9]{6}$")
    bank_name: Optional[str] = Field(None, max_length=100)


class UpiDetails(BaseModel):
    upi_id: str = Field(..., pattern=r"^[A-Za-z0-9._-]{2,256}@[A-Za-z]{2,64}$")


class PaypalDetails(BaseModel):
    email: EmailStr


class WalletDetails(BaseModel):
    """Payout to an external wallet provider."""
    provider: Optional[str] = Field(None, max_length=50)
    wallet_id: Optional[str] = Field(None, max_length=100)


PAYMENT_DETAIL_SCHEMAS = {
    WithdrawalMethod.BANK.value: BankDetails,
    WithdrawalMethod.UPI.value: UpiDetails,
    WithdrawalMethod.PAYPAL.value: PaypalDetails,
    WithdrawalMethod.WALLET.value: WalletDetails,
}


class WithdrawalCreate(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_method: WithdrawalMethod
    payment_details: Dict[str, Any] = Field(default_factory=dict)


class WithdrawalApprove(BaseCreateSchema):
    admin_notes: Optional[str] = Field(None, max_length=500)


class WithdrawalComplete(BaseCreateSchema):
    transaction_id: str = Field(..., min_length=1, max_length=100, description="External payout reference")
    admin_notes: Optional[str] = Field(None, max_length=500)


class WithdrawalReject(BaseCreateSchema):
    reason: str = Field(..., min_length=1, max_length=500)


class WithdrawalResponse(BaseResponseSchema):
    request_id: str
    user_id: uuid.UUID
    amount: Decimal
    processing_fee: Decimal
    net_amount: Decimal
    payment_method: str
    payment_details: Dict[str, Any]
    status: str
    approved_by_id: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: datetime


class WithdrawalSettingsResponse(BaseModel):
    min_amount: Decimal
    max_amount: Decimal
    fee_percent: Decimal
    min_fee: Decimal
    payment_methods: list[str]
