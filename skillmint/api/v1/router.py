from fastapi import APIRouter

from skillmint.api.v1.endpoints import (
    # Purchases
    orders,
    payments,
    refunds,
    # Ledger
    wallet,
    withdrawals,
    # Affiliates
    commissions,
)

api_router = APIRouter(prefix="/api/v1")

# ==================== Orders & Payments ====================
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["Payments"]
)

api_router.include_router(
    refunds.router,
    prefix="/refunds",
    tags=["Refunds"]
)

# ==================== Wallet ====================
api_router.include_router(
    wallet.router,
    prefix="/wallet",
    tags=["Wallet"]
)

api_router.include_router(
    withdrawals.router,
    prefix="/withdrawals",
    tags=["Withdrawals"]
)

# ==================== Affiliate Commissions ====================
api_router.include_router(
    commissions.router,
    prefix="/commissions",
    tags=["Commissions"]
)
