"""API endpoints for wallet withdrawals."""
from typing import Optional

from fastapi import APIRouter, Query, status

from skillmint.api.deps import DB, AdminUser, CurrentUser
from skillmint.models.withdrawal import WithdrawalStatus
from skillmint.schemas.base import PaginatedResponse
from skillmint.schemas.withdrawal import (
    WithdrawalApprove,
    WithdrawalComplete,
    WithdrawalCreate,
    WithdrawalReject,
    WithdrawalResponse,
    WithdrawalSettingsResponse,
)
from skillmint.services.withdrawal_service import WithdrawalService

router = APIRouter()


def _page(items, total: int, page: int, size: int) -> PaginatedResponse[WithdrawalResponse]:
    return PaginatedResponse[WithdrawalResponse](
        items=[WithdrawalResponse.model_validate(w) for w in items],
        total=total,
        page=page,
        size=size,
        pages=(total + size - 1) // size,
    )


@router.get("/settings", response_model=WithdrawalSettingsResponse)
async def get_withdrawal_settings():
    return WithdrawalService.get_settings()


@router.post("", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(withdrawal_in: WithdrawalCreate, db: DB, current_user: CurrentUser):
    """Request a payout of wallet funds."""
    return await WithdrawalService(db).create_request(
        current_user.id,
        withdrawal_in.amount,
        withdrawal_in.payment_method.value,
        withdrawal_in.payment_details,
    )


@router.get("", response_model=PaginatedResponse[WithdrawalResponse])
async def list_my_withdrawals(
    db: DB,
    current_user: CurrentUser,
    status: Optional[WithdrawalStatus] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    items, total = await WithdrawalService(db).list_requests(
        user_id=current_user.id,
        status=status.value if status else None,
        skip=(page - 1) * size,
        limit=size,
    )
    return _page(items, total, page, size)


@router.post("/{request_id}/cancel", response_model=WithdrawalResponse)
async def cancel_withdrawal(request_id: str, db: DB, current_user: CurrentUser):
    return await WithdrawalService(db).cancel(request_id, current_user.id)


# ==================== Admin ====================

@router.get("/admin/queue", response_model=PaginatedResponse[WithdrawalResponse])
async def list_withdrawal_queue(
    db: DB,
    admin: AdminUser,
    status: Optional[WithdrawalStatus] = WithdrawalStatus.PENDING,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    """Withdrawal requests awaiting an admin decision."""
    items, total = await WithdrawalService(db).list_requests(
        status=status.value if status else None,
        skip=(page - 1) * size,
        limit=size,
    )
    return _page(items, total, page, size)


@router.post("/{request_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(request_id: str, approve_in: WithdrawalApprove, db: DB, admin: AdminUser):
    return await WithdrawalService(db).approve(request_id, admin.id, approve_in.admin_notes)


@router.post("/{request_id}/complete", response_model=WithdrawalResponse)
async def complete_withdrawal(request_id: str, complete_in: WithdrawalComplete, db: DB, admin: AdminUser):
    return await WithdrawalService(db).complete(
        request_id, admin.id, complete_in.transaction_id, complete_in.admin_notes,
    )


@router.post("/{request_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(request_id: str, reject_in: WithdrawalReject, db: DB, admin: AdminUser):
    return await WithdrawalService(db).reject(request_id, admin.id, reject_in.reason)
