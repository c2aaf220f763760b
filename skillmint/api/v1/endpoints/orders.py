"""API endpoints for course purchase orders."""
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from skillmint.api.deps import DB, CurrentUser, Gateway, Rates
from skillmint.models.order import OrderStatus, PaymentStatus
from skillmint.schemas.order import (
    OrderCheckoutResponse,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
)
from skillmint.services.order_service import OrderPipeline

router = APIRouter()


def _request_metadata(request: Request) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("", response_model=OrderCheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_in: OrderCreate,
    request: Request,
    db: DB,
    current_user: CurrentUser,
    gateway: Gateway,
    rates: Rates,
):
    """
    Start a course purchase.

    Gateway orders return the Razorpay order to open the checkout with;
    wallet orders are debited and completed immediately.
    """
    pipeline = OrderPipeline(db, gateway, rates)
    result = await pipeline.create_order(
        user_id=current_user.id,
        course_id=order_in.course_id,
        payment_method=order_in.payment_method.value,
        referral_code=order_in.referral_code,
        coupon_code=order_in.coupon_code,
        metadata=_request_metadata(request),
    )
    return OrderCheckoutResponse(**result)


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    db: DB,
    current_user: CurrentUser,
    gateway: Gateway,
    order_status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    """List the current user's orders, newest first."""
    pipeline = OrderPipeline(db, gateway)
    items, total = await pipeline.list_orders(
        current_user.id,
        order_status=order_status.value if order_status else None,
        payment_status=payment_status.value if payment_status else None,
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


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, db: DB, current_user: CurrentUser, gateway: Gateway):
    pipeline = OrderPipeline(db, gateway)
    return await pipeline.get_order(order_id, current_user)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: str, db: DB, current_user: CurrentUser, gateway: Gateway):
    """Cancel an order that has not been paid yet."""
    pipeline = OrderPipeline(db, gateway)
    return await pipeline.cancel_order(order_id, current_user)
