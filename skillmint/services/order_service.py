"""
Order / payment pipeline.

create_order -> gateway order -> checkout callback or webhook -> finalize.

The pending -> completed transition is a status-guarded UPDATE, so a
duplicated callback or webhook finds the order already completed and returns
without side effects. Finalization commits step by step; a failed step is
recorded on the order and retried by the reconciliation job instead of
failing the request.
"""
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import json
import uuid
import logging

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.config import settings
from skillmint.core.exceptions import (
    AlreadyEnrolled,
    GatewayTimeout,
    GatewayUnavailable,
    Forbidden,
    IllegalStateTransition,
    InsufficientFunds,
    InvalidInput,
    NotFound,
    OrderAlreadyFinalized,
    SelfReferralRejected,
    SignatureMismatch,
)
from skillmint.core.identifiers import generate_order_id, is_valid_referral_code
from skillmint.db_types import to_money
from skillmint.models.course import Course, Enrollment
from skillmint.models.order import (
    Order,
    OrderCommissionStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    SettlementStatus,
)
from skillmint.models.user import User
from skillmint.models.wallet import ReferenceType
from skillmint.services.commission_service import CommissionEngine, CommissionRates, PlannedCommission
from skillmint.services.coupon_service import CouponService
from skillmint.services.payment_service import PaymentGateway, WebhookEvent
from skillmint.services.state_machines import (
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    sources_of,
    validate_transition,
)
from skillmint.services.topup_service import TopupService
from skillmint.services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def compute_split(
    final_amount: Decimal,
    instructor_share_pct: Decimal,
    planned: List[PlannedCommission],
) -> Dict[str, Decimal]:
    """
    Revenue split of a completed order. The affiliate share is the sum of
    every scheduled commission level; the platform keeps the remainder.
    """
    final_amount = to_money(final_amount)
    affiliate = to_money(sum((p.amount for p in planned), ZERO))
    instructor = to_money(final_amount * Decimal(str(instructor_share_pct)) / 100)
    platform = final_amount - affiliate - instructor
    return {
        "affiliate_commission": affiliate,
        "instructor_earnings": instructor,
        "platform_earnings": platform,
    }


def _entity(payload: Any, key: str) -> Dict[str, Any]:
    """payload.<key>.entity of a webhook, or {} when that path is missing or malformed."""
    section = payload.get(key) if isinstance(payload, dict) else None
    entity = section.get("entity") if isinstance(section, dict) else None
    return entity if isinstance(entity, dict) else {}


class OrderPipeline:
    """Creates, verifies and finalizes course orders."""

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
        self.coupons = CouponService(db)

    # ==================== LOOKUPS ====================

    async def _reload(self, order_pk: uuid.UUID) -> Order:
        return await self.db.get(Order, order_pk, populate_existing=True)

    async def get_order(self, order_id: str, user: Optional[User] = None) -> Order:
        stmt = (
            select(Order)
            .where(Order.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found", {"order_id": order_id})
        if user is not None and not user.is_admin and order.user_id != user.id:
            raise Forbidden("You do not have access to this order")
        return order

    async def get_order_by_gateway_id(self, gateway_order_id: str) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.gateway_order_id == gateway_order_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_orders(
        self,
        user_id: uuid.UUID,
        order_status: Optional[str] = None,
        payment_status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        filters = [Order.user_id == user_id]
        if order_status:
            filters.append(Order.order_status == order_status)
        if payment_status:
            filters.append(Order.payment_status == payment_status)

        total = (await self.db.execute(select(func.count(Order.id)).where(*filters))).scalar() or 0
        stmt = (
            select(Order)
            .where(*filters)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        items = (await self.db.execute(stmt)).scalars().all()
        return list(items), total

    async def is_enrolled(self, user_id: uuid.UUID, course_id: uuid.UUID) -> bool:
        stmt = select(Enrollment.id).where(
            Enrollment.user_id == user_id,
            Enrollment.course_id == course_id,
        )
        return (await self.db.execute(stmt)).first() is not None

    # ==================== CREATE ====================

    async def _resolve_referrer(self, referral_code: Optional[str], buyer: User) -> Optional[User]:
        """
        Referrer for a new order. An explicit code must be valid; without
        one, the buyer's own referrer is used when still eligible.
        """
        if not referral_code:
            if buyer.referred_by_id is None:
                return None
            referrer = await self.db.get(User, buyer.referred_by_id)
            if referrer is not None and referrer.can_refer and referrer.id != buyer.id:
                return referrer
            return None

        code = referral_code.strip().upper()
        if buyer.referral_code and code == buyer.referral_code:
            raise SelfReferralRejected("You cannot use your own referral code")
        if not is_valid_referral_code(code):
            raise InvalidInput("Invalid referral code format", {"referral_code": code})

        referrer = (await self.db.execute(
            select(User).where(User.referral_code == code)
        )).scalar_one_or_none()
        if referrer is None:
            raise InvalidInput("Referral code not found", {"referral_code": code})
        if referrer.id == buyer.id:
            raise SelfReferralRejected("You cannot use your own referral code")
        if not referrer.can_refer:
            raise InvalidInput("Referral code is not eligible", {"referral_code": code})
        return referrer

    async def create_order(
        self,
        user_id: uuid.UUID,
        course_id: uuid.UUID,
        payment_method: str = PaymentMethod.GATEWAY.value,
        referral_code: Optional[str] = None,
        coupon_code: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Validate the purchase, record a pending order and open a gateway
        order for it (or pay straight from the wallet).

        Every validation runs before the order row is written.
        """
        if payment_method not in {m.value for m in PaymentMethod}:
            raise InvalidInput(f"Unsupported payment method: {payment_method}")

        buyer = await self.db.get(User, user_id)
        if buyer is None:
            raise NotFound("User not found")
        if not buyer.is_active:
            raise Forbidden("User account is deactivated")

        course = await self.db.get(Course, course_id)
        if course is None:
            raise NotFound("Course not found", {"course_id": str(course_id)})
        if not course.is_published:
            raise InvalidInput("Course is not available for purchase", {"course_id": str(course_id)})
        if course.instructor_id == buyer.id:
            raise InvalidInput("You cannot purchase your own course")
        if await self.is_enrolled(buyer.id, course.id):
            raise AlreadyEnrolled("You are already enrolled in this course")

        amount = to_money(course.price)
        discount = ZERO
        if coupon_code:
            coupon, discount = await self.coupons.validate(coupon_code, buyer.id, amount)
            coupon_code = coupon.code
        final_amount = amount - discount

        referrer = await self._resolve_referrer(referral_code, buyer)

        order = Order(
            order_id=generate_order_id(),
            user_id=buyer.id,
            course_id=course.id,
            amount=amount,
            discount=discount,
            final_amount=final_amount,
            coupon_code=coupon_code,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING.value,
            order_status=OrderStatus.PENDING.value,
            referral_used_id=referrer.id if referrer else None,
            request_metadata=metadata,
        )

        if payment_method == PaymentMethod.WALLET.value or final_amount == 0:
            return await self._pay_with_wallet(order, course)

        self.db.add(order)
        await self.db.commit()
        logger.info(f"Order {order.order_id} created for user {buyer.id}, amount {final_amount}")

        # A gateway failure leaves the order pending; the sweeper expires it
        gateway_order = await self.gateway.create_order(
            final_amount,
            settings.CURRENCY,
            receipt=order.order_id,
            notes={"order_id": order.order_id, "course_id": str(course.id), "user_id": str(buyer.id)},
        )

        order.gateway_order_id = gateway_order.gateway_order_id
        await self.db.commit()

        return {
            "order_id": order.order_id,
            "gateway_order_id": gateway_order.gateway_order_id,
            "amount": final_amount,
            "currency": settings.CURRENCY,
            "key": self.gateway.key_id,
        }

    async def _pay_with_wallet(self, order: Order, course: Course) -> Dict[str, Any]:
        """
        Wallet path: the order row, the ledger debit and the completion land
        in one database transaction, then the order is finalized.
        """
        final_amount = to_money(order.final_amount)
        if final_amount > 0 and not await self.ledger.has_balance(order.user_id, final_amount):
            raise InsufficientFunds(
                "Insufficient wallet balance",
                {"required": str(final_amount)},
            )

        now = datetime.now(timezone.utc)
        try:
            self.db.add(order)
            await self.db.flush()
            if final_amount > 0:
                await self.ledger.debit(
                    order.user_id,
                    final_amount,
                    f"Purchase of course: {course.title}",
                    reference_type=ReferenceType.COURSE_PURCHASE.value,
                    reference_id=order.order_id,
                )
            order.payment_status = PaymentStatus.COMPLETED.value
            order.order_status = OrderStatus.PROCESSING.value
            order.completed_at = now
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Order {order.order_id} paid from wallet, amount {final_amount}")
        order = await self.finalize(order.id)

        return {
            "order_id": order.order_id,
            "gateway_order_id": None,
            "amount": final_amount,
            "currency": settings.CURRENCY,
            "key": None,
            "payment_status": order.payment_status,
            "order_status": order.order_status,
        }

    # ==================== VERIFY ====================

    async def _mark_paid(self, order: Order, payment_id: Optional[str], signature: Optional[str] = None) -> bool:
        """pending -> completed. Returns False when another caller got there first."""
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status == PaymentStatus.PENDING.value,
            )
            .values(
                payment_status=PaymentStatus.COMPLETED.value,
                order_status=OrderStatus.PROCESSING.value,
                gateway_payment_id=payment_id,
                gateway_signature=signature,
                completed_at=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _complete(self, order: Order, payment_id: Optional[str], signature: Optional[str] = None) -> Order:
        if await self._mark_paid(order, payment_id, signature):
            logger.info(f"Order {order.order_id} payment completed ({payment_id})")
            return await self.finalize(order.id)

        order = await self._reload(order.id)
        if order.payment_status in (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value):
            logger.info(f"Order {order.order_id} already completed; duplicate confirmation ignored")
            return order

        logger.warning(
            f"Payment {payment_id} arrived for order {order.order_id} in status {order.payment_status}"
        )
        raise OrderAlreadyFinalized(
            "Order is no longer awaiting payment",
            {"order_id": order.order_id, "payment_status": order.payment_status},
        )

    async def verify_checkout(
        self,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        user: Optional[User] = None,
    ) -> Order:
        """
        Checkout callback. An invalid signature raises SignatureMismatch and
        leaves the order untouched; a repeat of a successful callback returns
        the completed order.
        """
        order = await self.get_order_by_gateway_id(gateway_order_id)
        if order is None:
            raise NotFound("Order not found", {"gateway_order_id": gateway_order_id})
        if user is not None and order.user_id != user.id:
            raise Forbidden("You do not have access to this order")

        self.gateway.verify_checkout_signature(gateway_order_id, payment_id, signature)

        return await self._complete(order, payment_id, signature)

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Processor webhook. Only payment.captured, payment.failed and
        refund.processed are acted on; anything else is acknowledged.
        """
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            raise SignatureMismatch("Invalid webhook signature")

        try:
            data = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise InvalidInput("Webhook body is not valid JSON")
        if not isinstance(data, dict):
            raise InvalidInput("Webhook body must be a JSON object")

        event = data.get("event")
        payload = data.get("payload") or {}
        logger.info(f"Received webhook event: {event}")

        if event == WebhookEvent.PAYMENT_CAPTURED:
            entity = _entity(payload, "payment")
            handled = await self._on_payment_captured(entity)
        elif event == WebhookEvent.PAYMENT_FAILED:
            entity = _entity(payload, "payment")
            handled = await self._on_payment_failed(entity)
        elif event == WebhookEvent.REFUND_PROCESSED:
            entity = _entity(payload, "refund")
            handled = await self._on_refund_processed(entity)
        else:
            logger.info(f"Unhandled webhook event: {event}")
            handled = False

        return {"status": "ok", "event": event, "handled": handled}

    async def _on_payment_captured(self, entity: Dict[str, Any]) -> bool:
        gateway_order_id = entity.get("order_id")
        payment_id = entity.get("id")
        if not gateway_order_id:
            return False

        order = await self.get_order_by_gateway_id(gateway_order_id)
        if order is None:
            return await TopupService(self.db, self.gateway).complete_from_webhook(gateway_order_id, payment_id)

        try:
            await self._complete(order, payment_id)
        except OrderAlreadyFinalized:
            # Acknowledge so the processor stops retrying; the late capture is logged
            return False
        return True

    async def _on_payment_failed(self, entity: Dict[str, Any]) -> bool:
        gateway_order_id = entity.get("order_id")
        if not gateway_order_id:
            return False

        order = await self.get_order_by_gateway_id(gateway_order_id)
        if order is None:
            return await TopupService(self.db, self.gateway).fail_from_webhook(gateway_order_id)

        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status == PaymentStatus.PENDING.value,
                Order.order_status.in_(sources_of(ORDER_TRANSITIONS, OrderStatus.CANCELLED.value)),
            )
            .values(
                payment_status=PaymentStatus.FAILED.value,
                order_status=OrderStatus.CANCELLED.value,
                gateway_payment_id=entity.get("id"),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Order {order.order_id} payment failed: {entity.get('error_description')}")
        return result.rowcount == 1

    async def _on_refund_processed(self, entity: Dict[str, Any]) -> bool:
        payment_id = entity.get("payment_id")
        if not payment_id:
            return False

        order = (await self.db.execute(
            select(Order).where(Order.gateway_payment_id == payment_id)
        )).scalar_one_or_none()
        if order is None:
            logger.warning(f"refund.processed for unknown payment {payment_id}")
            return False

        refund_amount = to_money(Decimal(entity.get("amount", 0)) / 100)
        await self.db.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(
                refund_status=RefundStatus.PROCESSED.value,
                refund_amount=refund_amount,
                refund_processed_at=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(f"Refund processed for order {order.order_id}: {refund_amount}")
        return True

    # ==================== FINALIZE ====================

    async def finalize(self, order_pk: uuid.UUID) -> Order:
        """
        Post-payment pipeline for a completed order. Safe to re-run: each
        step checks its own completion flag and commits on its own.

        1. Revenue split (stored once, before any credit)
        2. Instructor and platform wallet credits
        3. Pending affiliate commissions
        4. Enrollment and coupon usage
        5. orderStatus = completed
        """
        order = await self._reload(order_pk)
        if order.payment_status != PaymentStatus.COMPLETED.value:
            return order
        order_ref = order.order_id

        errors: List[str] = []
        planned: List[PlannedCommission] = []
        try:
            course = await self.db.get(Course, order.course_id)
            if order.commission_status == OrderCommissionStatus.PENDING.value:
                planned = await self.commissions.plan_for_order(order, course)
            split_stored = (
                order.instructor_credited
                or order.platform_credited
                or order.order_status == OrderStatus.COMPLETED.value
            )
            if not split_stored:
                split = compute_split(order.final_amount, course.instructor_share_pct, planned)
                await self.db.execute(
                    update(Order)
                    .where(Order.id == order_pk)
                    .values(**split)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Revenue split failed for order {order_ref}: {e}", exc_info=True)
            await self._record_settlement_error(order_pk, order_ref, [f"split: {e}"])
            return await self._reload(order_pk)

        errors.extend(await self._settle(order_pk, order_ref))
        errors.extend(await self._schedule_commissions(order_pk, order_ref, planned))
        errors.extend(await self._enroll(order_pk, order_ref))

        await self.db.execute(
            update(Order)
            .where(
                Order.id == order_pk,
                Order.payment_status == PaymentStatus.COMPLETED.value,
                Order.order_status.in_(sources_of(ORDER_TRANSITIONS, OrderStatus.COMPLETED.value)),
            )
            .values(order_status=OrderStatus.COMPLETED.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if errors:
            await self._record_settlement_error(order_pk, order_ref, errors)
        else:
            logger.info(f"Order {order_ref} finalized")
        return await self._reload(order_pk)

    async def _claim(self, order_pk: uuid.UUID, flag: str) -> bool:
        """Flip a settlement flag False -> True; the winner applies the credit."""
        column = getattr(Order, flag)
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_pk, column.is_(False))
            .values({flag: True})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _settle(self, order_pk: uuid.UUID, order_ref: str) -> List[str]:
        order = await self._reload(order_pk)
        course = await self.db.get(Course, order.course_id)
        platform_account = uuid.UUID(settings.PLATFORM_ACCOUNT_ID) if settings.PLATFORM_ACCOUNT_ID else None

        credits = [
            ("instructor_credited", course.instructor_id, to_money(order.instructor_earnings), "Course sale earnings"),
            ("platform_credited", platform_account, to_money(order.platform_earnings), "Platform revenue"),
        ]
        errors: List[str] = []
        for flag, account_id, amount, label in credits:
            if account_id is None or amount <= 0:
                continue
            try:
                if await self._claim(order_pk, flag):
                    await self.ledger.credit(
                        account_id,
                        amount,
                        f"{label} for order {order_ref}",
                        reference_type=ReferenceType.COURSE_PURCHASE.value,
                        reference_id=order_ref,
                    )
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(f"{label} credit failed for order {order_ref}: {e}", exc_info=True)
                errors.append(f"{flag}: {e}")

        if not errors:
            await self.db.execute(
                update(Order)
                .where(Order.id == order_pk)
                .values(settlement_status=SettlementStatus.SETTLED.value, settlement_error=None)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        return errors

    async def _schedule_commissions(
        self,
        order_pk: uuid.UUID,
        order_ref: str,
        planned: List[PlannedCommission],
    ) -> List[str]:
        try:
            order = await self._reload(order_pk)
            if order.commission_status != OrderCommissionStatus.PENDING.value:
                return []
            course = await self.db.get(Course, order.course_id)
            await self.commissions.schedule_for_order(order, course, planned)
            await self.db.execute(
                update(Order)
                .where(Order.id == order_pk)
                .values(
                    commission_status=OrderCommissionStatus.PROCESSED.value,
                    commission_processed_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Commission scheduling failed for order {order_ref}: {e}", exc_info=True)
            return [f"commissions: {e}"]
        return []

    async def _enroll(self, order_pk: uuid.UUID, order_ref: str) -> List[str]:
        try:
            order = await self._reload(order_pk)
            if not await self.is_enrolled(order.user_id, order.course_id):
                try:
                    async with self.db.begin_nested():
                        self.db.add(Enrollment(
                            user_id=order.user_id,
                            course_id=order.course_id,
                            order_id=order.id,
                        ))
                except IntegrityError:
                    pass  # Enrolled concurrently
            if order.coupon_code:
                await self.coupons.record_usage(order.coupon_code, order.user_id, order.id, order.discount)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Enrollment failed for order {order_ref}: {e}", exc_info=True)
            return [f"enrollment: {e}"]
        return []

    async def _record_settlement_error(self, order_pk: uuid.UUID, order_ref: str, errors: List[str]) -> None:
        await self.db.execute(
            update(Order)
            .where(Order.id == order_pk)
            .values(
                settlement_status=SettlementStatus.FAILED.value,
                settlement_error="; ".join(errors)[:2000],
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.error(f"Order {order_ref} completed with settlement errors: {errors}")

    # ==================== CANCEL / SWEEP ====================

    async def cancel_order(self, order_id: str, user: User) -> Order:
        """Buyer cancels their own unpaid order."""
        order = await self.get_order(order_id, user)
        validate_transition(PAYMENT_TRANSITIONS, order.payment_status, PaymentStatus.FAILED.value, "Order")
        validate_transition(ORDER_TRANSITIONS, order.order_status, OrderStatus.CANCELLED.value, "Order")

        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status == PaymentStatus.PENDING.value,
                Order.order_status.in_(sources_of(ORDER_TRANSITIONS, OrderStatus.CANCELLED.value)),
            )
            .values(
                payment_status=PaymentStatus.FAILED.value,
                order_status=OrderStatus.CANCELLED.value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            raise IllegalStateTransition("Order is no longer pending", {"order_id": order_id})

        logger.info(f"Order {order_id} cancelled by user {user.id}")
        return await self._reload(order.id)

    async def expire_stale_orders(self, ttl_hours: Optional[int] = None) -> int:
        """Mark pending orders older than the TTL as failed / cancelled."""
        ttl_hours = ttl_hours or settings.ORDER_TTL_HOURS
        cutoff = datetime.now(timezone.utc) - timedelta(hours=ttl_hours)
        result = await self.db.execute(
            update(Order)
            .where(
                Order.payment_status == PaymentStatus.PENDING.value,
                Order.created_at < cutoff,
                Order.order_status.in_(sources_of(ORDER_TRANSITIONS, OrderStatus.CANCELLED.value)),
            )
            .values(
                payment_status=PaymentStatus.FAILED.value,
                order_status=OrderStatus.CANCELLED.value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} stale pending order(s)")
        return result.rowcount

    async def reconcile_settlements(self, limit: int = 100) -> Dict[str, int]:
        """Re-run finalization for completed orders with unfinished steps."""
        stmt = (
            select(Order.id)
            .where(
                Order.payment_status == PaymentStatus.COMPLETED.value,
                or_(
                    Order.settlement_status != SettlementStatus.SETTLED.value,
                    Order.commission_status == OrderCommissionStatus.PENDING.value,
                    Order.order_status != OrderStatus.COMPLETED.value,
                ),
            )
            .order_by(Order.created_at)
            .limit(limit)
        )
        order_ids = (await self.db.execute(stmt)).scalars().all()

        stats = {"checked": len(order_ids), "settled": 0, "failed": 0}
        for order_pk in order_ids:
            order = await self.finalize(order_pk)
            if order.settlement_status == SettlementStatus.SETTLED.value:
                stats["settled"] += 1
            else:
                stats["failed"] += 1
        return stats

    async def check_pending_payments(self, older_than_minutes: int = 5, limit: int = 50) -> Dict[str, int]:
        """
        Ask the processor about gateway orders still pending locally, in case
        both the callback and the webhook were lost.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        stmt = (
            select(Order.id, Order.order_id, Order.gateway_order_id)
            .where(
                Order.payment_status == PaymentStatus.PENDING.value,
                Order.gateway_order_id.is_not(None),
                Order.created_at < cutoff,
            )
            .order_by(Order.created_at)
            .limit(limit)
        )
        rows = (await self.db.execute(stmt)).all()

        stats = {"checked": len(rows), "completed": 0}
        for order_pk, order_id, gateway_order_id in rows:
            try:
                payments = await self.gateway.get_order_payments(gateway_order_id)
            except (GatewayUnavailable, GatewayTimeout) as e:
                logger.warning(f"Could not check payments for order {order_id}: {e.message}")
                continue
            captured = next((p for p in payments if p.status == "captured" or p.captured), None)
            if captured is None:
                continue
            try:
                await self._complete(await self._reload(order_pk), captured.id)
                stats["completed"] += 1
            except OrderAlreadyFinalized:
                continue
        return stats
