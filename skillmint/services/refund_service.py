"""
Refund workflow for completed course orders.

The buyer requests a refund within the refund window; an admin approves or
rejects it. Approval flips the order to refunded, reverses the instructor and
platform credits, cancels unpaid commissions, removes the enrollment and asks
the processor to refund the payment. The processor confirms later through the
refund.processed webhook.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.config import settings
from skillmint.core.datetime_utils import as_utc
from skillmint.core.exceptions import (
    Forbidden,
    GatewayTimeout,
    GatewayUnavailable,
    IllegalStateTransition,
    InsufficientFunds,
    NotFound,
    OrderNotRefundable,
    WalletContention,
)
from skillmint.db_types import to_money
from skillmint.models.course import Course, Enrollment
from skillmint.models.order import Order, PaymentMethod, PaymentStatus, RefundStatus
from skillmint.models.user import User
from skillmint.models.wallet import ReferenceType
from skillmint.services.commission_service import CommissionEngine, CommissionRates
from skillmint.services.payment_service import PaymentGateway
from skillmint.services.state_machines import PAYMENT_TRANSITIONS, validate_transition
from skillmint.services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)


def can_be_refunded(order: Order, now: Optional[datetime] = None) -> bool:
    """Completed, not already requested, and inside the refund window."""
    if order.payment_status != PaymentStatus.COMPLETED.value:
        return False
    if order.is_refund_requested:
        return False
    now = now or datetime.now(timezone.utc)
    return now - as_utc(order.created_at) <= timedelta(days=settings.REFUND_WINDOW_DAYS)


class RefundService:
    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        rates: Optional[CommissionRates] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.ledger = WalletLedger(db)
        self.commissions = CommissionEngine(db, rates)

    async def _get_order(self, order_id: str) -> Order:
        stmt = (
            select(Order)
            .where(Order.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found", {"order_id": order_id})
        return order

    async def list_requests(
        self,
        refund_status: Optional[str] = RefundStatus.PENDING.value,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        filters = [Order.is_refund_requested.is_(True)]
        if refund_status:
            filters.append(Order.refund_status == refund_status)

        total = (await self.db.execute(select(func.count(Order.id)).where(*filters))).scalar() or 0
        stmt = (
            select(Order)
            .where(*filters)
            .order_by(Order.refund_requested_at.desc())
            .offset(skip)
            .limit(limit)
        )
        items = (await self.db.execute(stmt)).scalars().all()
        return list(items), total

    # ==================== REQUEST ====================

    async def request_refund(self, order_id: str, user: User, reason: Optional[str] = None) -> Order:
        """
        Buyer asks for a refund.

        Raises:
            OrderNotRefundable: not completed, already requested, or outside
                the refund window
        """
        order = await self._get_order(order_id)
        if order.user_id != user.id:
            raise Forbidden("You do not have access to this order")
        if not can_be_refunded(order):
            raise OrderNotRefundable(
                "This order is not eligible for a refund",
                {
                    "order_id": order_id,
                    "payment_status": order.payment_status,
                    "refund_requested": order.is_refund_requested,
                    "refund_window_days": settings.REFUND_WINDOW_DAYS,
                },
            )

        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status == PaymentStatus.COMPLETED.value,
                Order.is_refund_requested.is_(False),
            )
            .values(
                is_refund_requested=True,
                refund_status=RefundStatus.PENDING.value,
                refund_reason=reason,
                refund_amount=to_money(order.final_amount),
                refund_requested_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            raise OrderNotRefundable("A refund has already been requested", {"order_id": order_id})

        logger.info(f"Refund requested for order {order_id} by user {user.id}")
        return await self._get_order(order_id)

    # ==================== ADMIN ====================

    async def _reverse(
        self,
        account_id: uuid.UUID,
        amount: Decimal,
        order_ref: str,
        label: str,
    ) -> Optional[str]:
        """Debit back an earlier credit. Returns an error message instead of raising."""
        try:
            async with self.db.begin_nested():
                await self.ledger.debit(
                    account_id,
                    amount,
                    f"{label} reversed for refunded order {order_ref}",
                    reference_type=ReferenceType.REFUND.value,
                    reference_id=order_ref,
                )
        except (InsufficientFunds, WalletContention) as e:
            logger.error(f"{label} reversal failed for order {order_ref}: {e.message}")
            return f"{label}: {e.message}"
        return None

    async def approve_refund(
        self,
        order_id: str,
        admin_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        completed -> refunded.

        Wallet reversals that cannot be applied (the instructor already spent
        the money) are reported back and stored on the order; they do not
        block the refund.
        """
        order = await self._get_order(order_id)
        if order.refund_status != RefundStatus.PENDING.value:
            raise IllegalStateTransition(
                "No pending refund request for this order",
                {"order_id": order_id, "refund_status": order.refund_status},
            )
        validate_transition(PAYMENT_TRANSITIONS, order.payment_status, PaymentStatus.REFUNDED.value, "Order")

        order_pk = order.id
        now = datetime.now(timezone.utc)
        errors: List[str] = []
        try:
            result = await self.db.execute(
                update(Order)
                .where(
                    Order.id == order_pk,
                    Order.payment_status == PaymentStatus.COMPLETED.value,
                    Order.refund_status == RefundStatus.PENDING.value,
                )
                .values(
                    payment_status=PaymentStatus.REFUNDED.value,
                    refund_status=RefundStatus.APPROVED.value,
                    refunded_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise IllegalStateTransition("Order refund was already handled", {"order_id": order_id})

            course = await self.db.get(Course, order.course_id)
            if order.instructor_credited and to_money(order.instructor_earnings) > 0:
                error = await self._reverse(course.instructor_id, order.instructor_earnings, order_id, "Instructor earnings")
                if error:
                    errors.append(error)
            if order.platform_credited and settings.PLATFORM_ACCOUNT_ID and to_money(order.platform_earnings) > 0:
                error = await self._reverse(
                    uuid.UUID(settings.PLATFORM_ACCOUNT_ID), order.platform_earnings, order_id, "Platform revenue",
                )
                if error:
                    errors.append(error)

            if order.payment_method == PaymentMethod.WALLET.value and to_money(order.final_amount) > 0:
                await self.ledger.credit(
                    order.user_id,
                    order.final_amount,
                    f"Refund for order {order_id}",
                    reference_type=ReferenceType.REFUND.value,
                    reference_id=order_id,
                    metadata={"approved_by": str(admin_id), "note": note},
                )

            commission_result = await self.commissions.cancel_for_order(order)

            await self.db.execute(
                delete(Enrollment).where(
                    Enrollment.user_id == order.user_id,
                    Enrollment.course_id == order.course_id,
                )
            )

            if errors:
                await self.db.execute(
                    update(Order)
                    .where(Order.id == order_pk)
                    .values(settlement_error="; ".join(["refund reversal"] + errors)[:2000])
                    .execution_options(synchronize_session=False)
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Refund approved for order {order_id} by {admin_id}")

        order = await self._get_order(order_id)
        gateway_refund_id = None
        if order.payment_method == PaymentMethod.GATEWAY.value and order.gateway_payment_id:
            gateway_refund_id = await self._refund_at_gateway(order)

        return {
            "order": order,
            "commissions_cancelled": commission_result["cancelled"],
            "commissions_flagged": commission_result["flagged_for_review"],
            "reversal_errors": errors,
            "gateway_refund_id": gateway_refund_id,
        }

    async def _refund_at_gateway(self, order: Order) -> Optional[str]:
        try:
            refund = await self.gateway.refund_payment(
                order.gateway_payment_id,
                amount=to_money(order.final_amount),
                notes={"order_id": order.order_id},
            )
        except (GatewayUnavailable, GatewayTimeout) as e:
            # The order stays refunded locally; ops retries at the processor
            logger.error(f"Gateway refund failed for order {order.order_id}: {e.message}")
            return None
        return refund.refund_id

    async def reject_refund(self, order_id: str, admin_id: uuid.UUID, reason: str) -> Order:
        order = await self._get_order(order_id)
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.refund_status == RefundStatus.PENDING.value,
            )
            .values(
                refund_status=RefundStatus.REJECTED.value,
                refund_reason=f"{order.refund_reason or ''} | rejected: {reason}".strip(" |"),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            raise IllegalStateTransition(
                "No pending refund request for this order",
                {"order_id": order_id, "refund_status": order.refund_status},
            )

        logger.info(f"Refund rejected for order {order_id} by {admin_id}: {reason}")
        return await self._get_order(order_id)
