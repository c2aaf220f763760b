"""API endpoints for the user wallet, top-ups and admin ledger tools."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from skillmint.api.deps import DB, AdminUser, CurrentUser, Gateway
from skillmint.models.wallet import ReferenceType, TransactionType
from skillmint.schemas.payment import (
    TopupCheckoutResponse,
    TopupCreate,
    TopupResponse,
    VerifyPaymentRequest,
)
from skillmint.schemas.wallet import (
    ReconcileResponse,
    TransactionListResponse,
    TransactionResponse,
    WalletAdjustment,
    WalletSummaryResponse,
)
from skillmint.services.topup_service import TopupService
from skillmint.services.wallet_service import WalletLedger

router = APIRouter()


@router.get("", response_model=WalletSummaryResponse)
async def get_wallet_summary(db: DB, current_user: CurrentUser):
    """Balance and running totals for the current user."""
    summary = await WalletLedger(db).summary(current_user.id)
    return WalletSummaryResponse(user_id=current_user.id, **summary)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    db: DB,
    current_user: CurrentUser,
    type: Optional[TransactionType] = None,
    reference_type: Optional[ReferenceType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    """Ledger history, newest first."""
    items, total = await WalletLedger(db).list_transactions(
        current_user.id,
        txn_type=type.value if type else None,
        reference_type=reference_type.value if reference_type else None,
        start_date=start_date,
        end_date=end_date,
        skip=(page - 1) * size,
        limit=size,
    )
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in items],
        total=total,
        page=page,
        size=size,
        pages=(total + size - 1) // size,
    )


@router.post("/topup", response_model=TopupCheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_topup(topup_in: TopupCreate, db: DB, current_user: CurrentUser, gateway: Gateway):
    result = await TopupService(db, gateway).create_topup(current_user.id, topup_in.amount)
    return TopupCheckoutResponse(**result)


@router.post("/topup/verify", response_model=TopupResponse)
async def verify_topup(verify_in: VerifyPaymentRequest, db: DB, current_user: CurrentUser, gateway: Gateway):
    """Verify the checkout signature and credit the wallet."""
    return await TopupService(db, gateway).verify_topup(
        current_user.id,
        verify_in.razorpay_order_id,
        verify_in.razorpay_payment_id,
        verify_in.razorpay_signature,
    )


# ==================== Admin ====================

@router.post("/admin/adjust", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def adjust_wallet(adjust_in: WalletAdjustment, db: DB, admin: AdminUser):
    """Record a correction entry against a user's wallet."""
    ledger = WalletLedger(db)
    txn = await ledger.admin_adjust(
        adjust_in.user_id,
        adjust_in.amount,
        adjust_in.type.value,
        adjust_in.reason,
        admin.id,
    )
    await db.commit()
    return txn


@router.get("/admin/reconcile/{user_id}", response_model=ReconcileResponse)
async def reconcile_wallet(user_id: UUID, db: DB, admin: AdminUser):
    """Compare the stored balance with the sum of the ledger."""
    return await WalletLedger(db).reconcile(user_id)
