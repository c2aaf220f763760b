"""
Order Processing Jobs

Background jobs that keep the money pipeline converging:
- Expire pending orders nobody paid for
- Re-run settlement for orders whose finalization partly failed
- Ask Razorpay about payments whose callback and webhook were both lost
"""

import logging
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from skillmint.database import get_db_session
from skillmint.services.commission_service import CommissionRates
from skillmint.services.order_service import OrderPipeline
from skillmint.services.payment_service import PaymentGateway

logger = logging.getLogger(__name__)


async def expire_stale_orders(gateway: PaymentGateway) -> Dict[str, Any]:
    """Pending orders older than ORDER_TTL_HOURS become failed / cancelled."""
    logger.info("Starting stale order expiry...")
    start_time = datetime.now(timezone.utc)

    async with get_db_session() as session:
        expired = await OrderPipeline(session, gateway).expire_stale_orders()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(f"Stale order expiry completed: {expired} expired in {duration:.2f}s")
    return {"expired": expired, "duration_seconds": duration}


async def reconcile_order_settlements(
    gateway: PaymentGateway,
    rates: Optional[CommissionRates] = None,
) -> Dict[str, Any]:
    """
    Completed orders whose instructor / platform credit or commission
    scheduling failed are finalized again. Each step is idempotent.
    """
    logger.info("Starting order settlement reconciliation...")
    start_time = datetime.now(timezone.utc)

    async with get_db_session() as session:
        stats = await OrderPipeline(session, gateway, rates).reconcile_settlements()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Settlement reconciliation completed: checked={stats['checked']}, "
        f"settled={stats['settled']}, failed={stats['failed']} in {duration:.2f}s"
    )
    return {**stats, "duration_seconds": duration}


async def check_pending_payments(
    gateway: PaymentGateway,
    rates: Optional[CommissionRates] = None,
) -> Dict[str, Any]:
    """
    Check status of pending payments with Razorpay.

    Orders still pending five minutes after creation are looked up at the
    processor; a captured payment completes the order exactly as the
    webhook would have.
    """
    logger.info("Starting pending payments check...")
    start_time = datetime.now(timezone.utc)

    async with get_db_session() as session:
        stats = await OrderPipeline(session, gateway, rates).check_pending_payments()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Payment check completed: checked={stats['checked']}, "
        f"completed={stats['completed']} in {duration:.2f}s"
    )
    return {**stats, "duration_seconds": duration}
