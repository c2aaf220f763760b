"""API endpoints for affiliate commissions."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel

from skillmint.api.deps import DB, AdminUser, CurrentUser, Rates
from skillmint.models.commission import CommissionStatus
from skillmint.schemas.commission import (
    CommissionApprove,
    CommissionListResponse,
    CommissionPay,
    CommissionRatesPayload,
    CommissionReject,
    CommissionResponse,
    CommissionStatsResponse,
    EligibilityResponse,
)
from skillmint.services.commission_service import CommissionEngine

router = APIRouter()


class ReferralCodeResponse(BaseModel):
    referral_code: str


async def _list(engine: CommissionEngine, page: int, size: int, **filters) -> CommissionListResponse:
    items, total = await engine.list_commissions(skip=(page - 1) * size, limit=size, **filters)
    return CommissionListResponse(
        items=[CommissionResponse.model_validate(c) for c in items],
        total=total,
        page=page,
        size=size,
        pages=(total + size - 1) // size,
    )


# ==================== Affiliate ====================

@router.get("/me", response_model=CommissionListResponse)
async def list_my_commissions(
    db: DB,
    current_user: CurrentUser,
    rates: Rates,
    status: Optional[CommissionStatus] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    engine = CommissionEngine(db, rates)
    return await _list(
        engine, page, size,
        affiliate_id=current_user.id,
        status=status.value if status else None,
    )


@router.get("/me/stats", response_model=CommissionStatsResponse)
async def get_my_commission_stats(db: DB, current_user: CurrentUser, rates: Rates):
    """Count and amount per status for the current affiliate."""
    return await CommissionEngine(db, rates).get_stats(current_user.id)


@router.get("/me/eligibility", response_model=EligibilityResponse)
async def get_my_eligibility(db: DB, current_user: CurrentUser, rates: Rates):
    return await CommissionEngine(db, rates).check_eligibility(current_user.id)


@router.post("/me/referral-code", response_model=ReferralCodeResponse)
async def get_or_create_referral_code(db: DB, current_user: CurrentUser, rates: Rates):
    code = await CommissionEngine(db, rates).ensure_referral_code(current_user.id)
    return ReferralCodeResponse(referral_code=code)


# ==================== Rates ====================

@router.get("/rates", response_model=CommissionRatesPayload)
async def get_commission_rates(current_user: CurrentUser, rates: Rates):
    return CommissionRatesPayload(rates=rates.as_dict())


@router.put("/rates", response_model=CommissionRatesPayload)
async def update_commission_rates(rates_in: CommissionRatesPayload, admin: AdminUser, rates: Rates):
    """Change per-level percentages for commissions scheduled from now on."""
    rates.update(rates_in.rates)
    return CommissionRatesPayload(rates=rates.as_dict())


# ==================== Admin ====================

@router.get("", response_model=CommissionListResponse)
async def list_commissions(
    db: DB,
    admin: AdminUser,
    rates: Rates,
    affiliate_id: Optional[UUID] = None,
    status: Optional[CommissionStatus] = None,
    level: Optional[int] = Query(None, ge=1, le=3),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    engine = CommissionEngine(db, rates)
    return await _list(
        engine, page, size,
        affiliate_id=affiliate_id,
        status=status.value if status else None,
        level=level,
    )


@router.post("/{commission_id}/approve", response_model=CommissionResponse)
async def approve_commission(
    commission_id: str,
    approve_in: CommissionApprove,
    db: DB,
    admin: AdminUser,
    rates: Rates,
):
    return await CommissionEngine(db, rates).approve(
        commission_id, admin.id, approve_in.note, override=approve_in.override,
    )


@router.post("/{commission_id}/reject", response_model=CommissionResponse)
async def reject_commission(
    commission_id: str,
    reject_in: CommissionReject,
    db: DB,
    admin: AdminUser,
    rates: Rates,
):
    return await CommissionEngine(db, rates).reject(commission_id, admin.id, reject_in.note)


@router.post("/{commission_id}/pay", response_model=CommissionResponse)
async def pay_commission(
    commission_id: str,
    pay_in: CommissionPay,
    db: DB,
    admin: AdminUser,
    rates: Rates,
):
    """Credit an approved commission to the affiliate's wallet."""
    return await CommissionEngine(db, rates).pay(
        commission_id, admin.id, pay_in.payout_method, pay_in.external_txn_id,
    )
