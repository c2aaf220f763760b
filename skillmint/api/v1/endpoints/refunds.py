"""API endpoints for the order refund workflow."""
from typing import Optional

from fastapi import APIRouter, Query

from skillmint.api.deps import DB, AdminUser, CurrentUser, Gateway, Rates
from skillmint.models.order import RefundStatus
from skillmint.schemas.order import (
    OrderListResponse,
    OrderResponse,
    RefundApprovalResponse,
    RefundDecision,
    RefundReject,
    RefundRequest,
)
from skillmint.services.refund_service import RefundService

router = APIRouter()


@router.post("/orders/{order_id}", response_model=OrderResponse)
async def request_refund(
    order_id: str,
    refund_in: RefundRequest,
    db: DB,
    current_user: CurrentUser,
    gateway: Gateway,
    rates: Rates,
):
    """Ask for a refund of a completed order inside the refund window."""
    return await RefundService(db, gateway, rates).request_refund(order_id, current_user, refund_in.reason)


# ==================== Admin ====================

@router.get("", response_model=OrderListResponse)
async def list_refund_requests(
    db: DB,
    admin: AdminUser,
    gateway: Gateway,
    refund_status: Optional[RefundStatus] = RefundStatus.PENDING,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    items, total = await RefundService(db, gateway).list_requests(
        refund_status.value if refund_status else None,
        skip=(page - 1) * size,
        limit=size,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in items],
        total=total,
        page=page,
        size=size,
        pages=(total + size - 1) // size,
    )


@router.post("/orders/{order_id}/approve", response_model=RefundApprovalResponse)
async def approve_refund(
    order_id: str,
    decision_in: RefundDecision,
    db: DB,
    admin: AdminUser,
    gateway: Gateway,
    rates: Rates,
):
    """
    Refund the order: reverses earnings, cancels unpaid commissions,
    revokes the enrollment and starts the processor refund.
    """
    result = await RefundService(db, gateway, rates).approve_refund(order_id, admin.id, decision_in.note)
    return RefundApprovalResponse(
        order=OrderResponse.model_validate(result["order"]),
        commissions_cancelled=result["commissions_cancelled"],
        commissions_flagged=result["commissions_flagged"],
        reversal_errors=result["reversal_errors"],
        gateway_refund_id=result["gateway_refund_id"],
    )


@router.post("/orders/{order_id}/reject", response_model=OrderResponse)
async def reject_refund(
    order_id: str,
    reject_in: RefundReject,
    db: DB,
    admin: AdminUser,
    gateway: Gateway,
):
    return await RefundService(db, gateway).reject_refund(order_id, admin.id, reject_in.reason)
