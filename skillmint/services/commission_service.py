"""
Multi-level affiliate commission engine.

Commissions are planned from the buyer's referral chain when an order
completes, stored as pending, approved by an admin once the refund window has
passed and finally paid into the affiliate's wallet.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.config import settings
from skillmint.core.datetime_utils import as_utc
from skillmint.core.exceptions import Forbidden, IllegalStateTransition, InvalidInput, NotFound
from skillmint.core.identifiers import generate_commission_id, generate_referral_code
from skillmint.db_types import to_money
from skillmint.models.commission import AffiliateCommission, CommissionStatus
from skillmint.models.course import Course
from skillmint.models.order import Order, PaymentStatus
from skillmint.models.user import User, REFERRER_ROLES
from skillmint.models.wallet import ReferenceType
from skillmint.services.state_machines import COMMISSION_TRANSITIONS, validate_transition
from skillmint.services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)

MAX_LEVELS = 3
MAX_RATE = Decimal("50")


class CommissionRates:
    """
    Live per-level commission percentages.

    One instance is held on app.state and injected into the engine; admins
    may change the rates at runtime.
    """

    def __init__(self, rates: Optional[Dict[int, Any]] = None):
        self._rates: Dict[int, Decimal] = {}
        self.update(rates if rates is not None else settings.COMMISSION_LEVEL_RATES)

    def update(self, rates: Dict[int, Any]) -> None:
        validated = dict(self._rates)
        for level, rate in rates.items():
            level = int(level)
            rate = Decimal(str(rate))
            if level < 1 or level > MAX_LEVELS:
                raise InvalidInput(f"Unsupported commission level: {level}")
            if rate < 0 or rate > MAX_RATE:
                raise InvalidInput(
                    f"Commission rate for level {level} must be between 0 and {MAX_RATE}",
                    {"level": level, "rate": str(rate)},
                )
            validated[level] = rate
        self._rates = validated
        logger.info(f"Commission rates set to {self.as_dict()}")

    def get(self, level: int) -> Decimal:
        return self._rates.get(level, Decimal("0"))

    def as_dict(self) -> Dict[int, Decimal]:
        return {level: self._rates.get(level, Decimal("0")) for level in range(1, MAX_LEVELS + 1)}


@dataclass
class PlannedCommission:
    affiliate_id: uuid.UUID
    level: int
    percentage: Decimal
    amount: Decimal


def is_eligible_referrer(user: Optional[User], buyer_id: uuid.UUID, instructor_id: uuid.UUID) -> bool:
    return (
        user is not None
        and user.is_active
        and user.role in REFERRER_ROLES
        and user.id != buyer_id
        and user.id != instructor_id
    )


class CommissionEngine:
    """Schedules and moves affiliate commissions."""

    def __init__(self, db: AsyncSession, rates: Optional[CommissionRates] = None):
        self.db = db
        self.rates = rates or CommissionRates()
        self.ledger = WalletLedger(db)

    # ==================== PLANNING ====================

    async def _referral_chain(self, order: Order, course: Course) -> List[User]:
        """
        Walk referred_by upward from the order's referrer, once, up to
        MAX_LEVELS hops. Stops at the first ineligible node.
        """
        chain: List[User] = []
        seen = {order.user_id}
        next_id = order.referral_used_id

        while next_id is not None and len(chain) < MAX_LEVELS:
            if next_id in seen:
                logger.warning(f"Referral cycle detected at user {next_id} for order {order.order_id}")
                break
            seen.add(next_id)

            user = await self.db.get(User, next_id)
            if not is_eligible_referrer(user, order.user_id, course.instructor_id):
                logger.info(
                    f"Referral chain for order {order.order_id} stops at level {len(chain) + 1}: "
                    f"user {next_id} is not eligible"
                )
                break
            chain.append(user)
            next_id = user.referred_by_id

        return chain

    def _rate_for_level(self, level: int, course: Course) -> Decimal:
        if level == 1 and course.affiliate_commission_pct:
            return Decimal(str(course.affiliate_commission_pct))
        return self.rates.get(level)

    async def plan_for_order(self, order: Order, course: Course) -> List[PlannedCommission]:
        """
        Compute the commissions an order would produce, without writing.

        Levels whose amount would push the platform share below zero are
        dropped, together with every level above them.
        """
        if order.referral_used_id is None:
            return []

        final_amount = to_money(order.final_amount)
        instructor_share = to_money(final_amount * Decimal(str(course.instructor_share_pct)) / 100)
        available = final_amount - instructor_share

        planned: List[PlannedCommission] = []
        chain = await self._referral_chain(order, course)
        for level, affiliate in enumerate(chain, start=1):
            pct = self._rate_for_level(level, course)
            if pct <= 0:
                continue
            amount = to_money(final_amount * pct / 100)
            if amount > available:
                logger.warning(
                    f"Level {level} commission for order {order.order_id} exceeds the platform share; "
                    f"not scheduled"
                )
                break
            available -= amount
            planned.append(PlannedCommission(
                affiliate_id=affiliate.id,
                level=level,
                percentage=pct,
                amount=amount,
            ))
        return planned

    # ==================== SCHEDULING ====================

    async def schedule_for_order(
        self,
        order: Order,
        course: Course,
        planned: Optional[List[PlannedCommission]] = None,
    ) -> List[AffiliateCommission]:
        """
        Record pending commissions for a completed order.

        Idempotent: a level that already has a commission for this order is
        skipped, and a concurrent insert of the same (order, level) loses
        quietly to the unique constraint. Does not commit.
        """
        if planned is None:
            planned = await self.plan_for_order(order, course)

        existing = set((await self.db.execute(
            select(AffiliateCommission.level).where(AffiliateCommission.order_id == order.id)
        )).scalars().all())

        created: List[AffiliateCommission] = []
        for item in planned:
            if item.level in existing:
                continue

            commission = AffiliateCommission(
                commission_id=generate_commission_id(),
                affiliate_id=item.affiliate_id,
                referred_user_id=order.user_id,
                order_id=order.id,
                course_id=order.course_id,
                level=item.level,
                order_amount=to_money(order.final_amount),
                commission_percentage=item.percentage,
                commission_amount=item.amount,
                status=CommissionStatus.PENDING.value,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(commission)
            except IntegrityError:
                logger.warning(f"Commission for order {order.order_id} level {item.level} already exists")
                continue

            created.append(commission)
            logger.info(
                f"Scheduled commission {commission.commission_id}: order={order.order_id} "
                f"level={item.level} affiliate={item.affiliate_id} amount={item.amount}"
            )

        return created

    # ==================== LIFECYCLE ====================

    async def get_commission(self, commission_id: str) -> AffiliateCommission:
        stmt = (
            select(AffiliateCommission)
            .where(AffiliateCommission.commission_id == commission_id)
            .execution_options(populate_existing=True)
        )
        commission = (await self.db.execute(stmt)).scalar_one_or_none()
        if commission is None:
            raise NotFound("Commission not found", {"commission_id": commission_id})
        return commission

    async def _transition(
        self,
        commission: AffiliateCommission,
        from_status: str,
        to_status: str,
        **values,
    ) -> None:
        """Status-guarded update; loses cleanly to a concurrent admin action."""
        result = await self.db.execute(
            update(AffiliateCommission)
            .where(
                AffiliateCommission.id == commission.id,
                AffiliateCommission.status == from_status,
            )
            .values(status=to_status, updated_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise IllegalStateTransition(
                f"Commission {commission.commission_id} is no longer {from_status}",
                {"commission_id": commission.commission_id},
            )

    async def approve(
        self,
        commission_id: str,
        admin_id: uuid.UUID,
        note: Optional[str] = None,
        override: bool = False,
    ) -> AffiliateCommission:
        """
        pending -> approved.

        The order must be completed and older than the refund window, unless
        an admin overrides the hold.
        """
        commission = await self.get_commission(commission_id)
        validate_transition(COMMISSION_TRANSITIONS, commission.status, CommissionStatus.APPROVED.value, "Commission")

        order = await self.db.get(Order, commission.order_id, populate_existing=True)
        if order is None or order.payment_status != PaymentStatus.COMPLETED.value:
            raise IllegalStateTransition(
                "Commission can only be approved for completed orders",
                {"commission_id": commission_id},
            )

        hold_until = as_utc(order.created_at) + timedelta(days=settings.REFUND_WINDOW_DAYS)
        if not override and datetime.now(timezone.utc) <= hold_until:
            raise IllegalStateTransition(
                "Commission is still within the refund window",
                {"commission_id": commission_id, "hold_until": hold_until.isoformat()},
            )

        await self._transition(
            commission,
            CommissionStatus.PENDING.value,
            CommissionStatus.APPROVED.value,
            approved_by_id=admin_id,
            approved_at=datetime.now(timezone.utc),
            notes=note,
        )
        await self.db.commit()

        logger.info(f"Commission {commission_id} approved by {admin_id} (override={override})")
        return await self.get_commission(commission_id)

    async def reject(self, commission_id: str, admin_id: uuid.UUID, note: Optional[str] = None) -> AffiliateCommission:
        """pending -> rejected."""
        commission = await self.get_commission(commission_id)
        validate_transition(COMMISSION_TRANSITIONS, commission.status, CommissionStatus.REJECTED.value, "Commission")

        await self._transition(
            commission,
            CommissionStatus.PENDING.value,
            CommissionStatus.REJECTED.value,
            notes=note,
        )
        await self.db.commit()

        logger.info(f"Commission {commission_id} rejected by {admin_id}")
        return await self.get_commission(commission_id)

    async def pay(
        self,
        commission_id: str,
        admin_id: uuid.UUID,
        method: str = "wallet",
        external_txn_id: Optional[str] = None,
    ) -> AffiliateCommission:
        """
        approved -> paid, crediting the affiliate's wallet in the same
        database transaction as the status change.
        """
        commission = await self.get_commission(commission_id)
        validate_transition(COMMISSION_TRANSITIONS, commission.status, CommissionStatus.PAID.value, "Commission")

        try:
            await self._transition(
                commission,
                CommissionStatus.APPROVED.value,
                CommissionStatus.PAID.value,
                payout_date=datetime.now(timezone.utc),
                payout_method=method,
                external_txn_id=external_txn_id,
            )
            txn = await self.ledger.credit(
                commission.affiliate_id,
                commission.commission_amount,
                f"Level {commission.level} affiliate commission",
                reference_type=ReferenceType.AFFILIATE_COMMISSION.value,
                reference_id=commission.commission_id,
                metadata={"paid_by": str(admin_id), "method": method},
            )
            await self.db.execute(
                update(AffiliateCommission)
                .where(AffiliateCommission.id == commission.id)
                .values(wallet_transaction_id=txn.transaction_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Commission {commission_id} paid to {commission.affiliate_id} via {txn.transaction_id}")
        return await self.get_commission(commission_id)

    async def cancel_for_order(self, order: Order) -> Dict[str, int]:
        """
        Cancel every unpaid commission on a refunded order. Paid commissions
        are not clawed back; they are flagged for review. Does not commit.
        """
        now = datetime.now(timezone.utc)
        cancelled = await self.db.execute(
            update(AffiliateCommission)
            .where(
                AffiliateCommission.order_id == order.id,
                AffiliateCommission.status.in_([
                    CommissionStatus.PENDING.value,
                    CommissionStatus.APPROVED.value,
                ]),
            )
            .values(status=CommissionStatus.CANCELLED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        flagged = await self.db.execute(
            update(AffiliateCommission)
            .where(
                AffiliateCommission.order_id == order.id,
                AffiliateCommission.status == CommissionStatus.PAID.value,
            )
            .values(needs_review=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        if flagged.rowcount:
            logger.warning(f"Order {order.order_id} refunded with {flagged.rowcount} paid commission(s); flagged for review")
        logger.info(f"Cancelled {cancelled.rowcount} commission(s) for order {order.order_id}")
        return {"cancelled": cancelled.rowcount, "flagged_for_review": flagged.rowcount}

    # ==================== VIEWS ====================

    async def list_commissions(
        self,
        affiliate_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        level: Optional[int] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[AffiliateCommission], int]:
        filters = []
        if affiliate_id:
            filters.append(AffiliateCommission.affiliate_id == affiliate_id)
        if status:
            filters.append(AffiliateCommission.status == status)
        if level:
            filters.append(AffiliateCommission.level == level)

        total = (await self.db.execute(
            select(func.count(AffiliateCommission.id)).where(*filters)
        )).scalar() or 0
        stmt = (
            select(AffiliateCommission)
            .where(*filters)
            .order_by(AffiliateCommission.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        items = (await self.db.execute(stmt)).scalars().all()
        return list(items), total

    async def get_stats(self, affiliate_id: uuid.UUID) -> Dict[str, Any]:
        """Count and total per status for one affiliate."""
        stmt = (
            select(
                AffiliateCommission.status,
                func.count(AffiliateCommission.id),
                func.coalesce(func.sum(AffiliateCommission.commission_amount), 0),
            )
            .where(AffiliateCommission.affiliate_id == affiliate_id)
            .group_by(AffiliateCommission.status)
        )
        by_status = {
            status.value: {"count": 0, "amount": Decimal("0.00")} for status in CommissionStatus
        }
        for status, count, amount in (await self.db.execute(stmt)).all():
            by_status[status] = {"count": count, "amount": to_money(amount)}

        return {
            "affiliate_id": affiliate_id,
            "by_status": by_status,
            "total_earned": by_status[CommissionStatus.PAID.value]["amount"],
            "total_pending": (
                by_status[CommissionStatus.PENDING.value]["amount"]
                + by_status[CommissionStatus.APPROVED.value]["amount"]
            ),
        }

    async def check_eligibility(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """Whether a user can act as a referrer, and why not."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found", {"user_id": str(user_id)})

        reasons = []
        if not user.is_active:
            reasons.append("Account is not active")
        if user.role not in REFERRER_ROLES:
            reasons.append(f"Role '{user.role}' cannot earn commissions")
        if not user.referral_code:
            reasons.append("No referral code assigned")

        return {"eligible": not reasons, "reasons": reasons}

    async def ensure_referral_code(self, user_id: uuid.UUID) -> str:
        """Assign a referral code to an eligible referrer that has none yet."""
        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFound("User not found", {"user_id": str(user_id)})
        if user.referral_code:
            return user.referral_code
        if user.role not in REFERRER_ROLES:
            raise Forbidden(f"Role '{user.role}' cannot refer other users")

        for _ in range(5):
            code = generate_referral_code(user.name, str(user.id))
            taken = (await self.db.execute(select(User.id).where(User.referral_code == code))).first()
            if taken is not None:
                continue
            try:
                async with self.db.begin_nested():
                    await self.db.execute(
                        update(User)
                        .where(User.id == user_id, User.referral_code.is_(None))
                        .values(referral_code=code)
                        .execution_options(synchronize_session=False)
                    )
            except IntegrityError:
                continue
            await self.db.commit()
            user = await self.db.get(User, user_id, populate_existing=True)
            logger.info(f"Referral code {user.referral_code} assigned to user {user_id}")
            return user.referral_code

        raise InvalidInput("Could not generate a unique referral code, please retry")
