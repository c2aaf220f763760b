"""
Payment API endpoints for the Razorpay checkout callback and webhooks.
"""
from typing import Optional
import logging

from fastapi import APIRouter, Header, Request

from skillmint.api.deps import DB, CurrentUser, Gateway, Rates
from skillmint.schemas.order import OrderResponse
from skillmint.schemas.payment import VerifyPaymentRequest, WebhookAck
from skillmint.services.order_service import OrderPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/verify",
    response_model=OrderResponse,
    summary="Verify checkout payment",
)
async def verify_payment(
    verify_in: VerifyPaymentRequest,
    db: DB,
    current_user: CurrentUser,
    gateway: Gateway,
    rates: Rates,
):
    """
    Verify the signature Razorpay hands to the checkout page and complete
    the order. Repeating a successful verification returns the same order.
    """
    pipeline = OrderPipeline(db, gateway, rates)
    return await pipeline.verify_checkout(
        verify_in.razorpay_order_id,
        verify_in.razorpay_payment_id,
        verify_in.razorpay_signature,
        current_user,
    )


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Razorpay webhook handler",
)
async def razorpay_webhook(
    request: Request,
    db: DB,
    gateway: Gateway,
    rates: Rates,
    x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
):
    """
    Handle Razorpay webhook events.

    Events handled:
    - payment.captured: Payment was successful
    - payment.failed: Payment failed
    - refund.processed: Refund completed

    Security:
    - Verifies the signature over the raw request body
    - Idempotent: Safe to receive duplicate events
    """
    # Get raw body for signature verification
    body = await request.body()

    pipeline = OrderPipeline(db, gateway, rates)
    return await pipeline.handle_webhook(body, x_razorpay_signature)
