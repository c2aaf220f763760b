"""Wallet and ledger schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, Field

from skillmint.models.wallet import TransactionType
from skillmint.schemas.base import BaseCreateSchema, BaseResponseSchema, PaginatedResponse


class WalletSummaryResponse(BaseModel):
    user_id: uuid.UUID
    balance: Decimal
    total_earned: Decimal
    total_topped_up: Decimal
    total_withdrawn: Decimal
    pending_withdrawals: Decimal
    currency: str
    last_transaction_at: Optional[datetime] = None


class TransactionResponse(BaseResponseSchema):
    transaction_id: str
    sequence: int
    type: str
    amount: Decimal
    balance_after: Decimal
    description: str
    reference_type: str
    reference_id: Optional[str] = None
    status: str
    extra: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    created_at: datetime


class TransactionListResponse(PaginatedResponse[TransactionResponse]):
    pass


class WalletAdjustment(BaseCreateSchema):
    """Admin correction entry."""
    user_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    type: TransactionType
    reason: str = Field(..., min_length=3, max_length=500)


class ReconcileResponse(BaseModel):
    user_id: uuid.UUID
    stored_balance: Decimal
    computed_balance: Decimal
    discrepancy: Decimal
    is_consistent: bool
    transaction_count: int
    min_balance_after: Optional[Decimal] = None
