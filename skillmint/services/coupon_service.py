"""Coupon validation and usage tracking for course purchases."""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Tuple

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.core.datetime_utils import as_utc
from skillmint.core.exceptions import CouponInvalid
from skillmint.db_types import to_money
from skillmint.models.coupon import Coupon, CouponUsage, DiscountType

logger = logging.getLogger(__name__)


def calculate_discount(coupon: Coupon, amount: Decimal) -> Decimal:
    """Discount for a list price. Never exceeds the price itself."""
    amount = to_money(amount)
    value = to_money(coupon.discount_value)

    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = amount * value / 100
        # Apply max discount cap if set
        if coupon.max_discount_amount:
            discount = min(discount, to_money(coupon.max_discount_amount))
        return to_money(discount)

    if coupon.discount_type == DiscountType.FIXED.value:
        return min(value, amount)

    return Decimal("0.00")


class CouponService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def validate(self, code: str, user_id: uuid.UUID, amount: Decimal) -> Tuple[Coupon, Decimal]:
        """
        Resolve a coupon for a purchase.

        Returns:
            (coupon, discount)

        Raises:
            CouponInvalid: unknown, inactive, expired, exhausted, already used
                by this user, or below the minimum amount
        """
        code = code.upper().strip()
        coupon = (await self.db.execute(
            select(Coupon).where(func.upper(Coupon.code) == code)
        )).scalar_one_or_none()

        if coupon is None or not coupon.is_active:
            raise CouponInvalid("Invalid coupon code", {"code": code})

        now = datetime.now(timezone.utc)
        if now < as_utc(coupon.valid_from):
            raise CouponInvalid("This coupon is not yet active", {"code": code})
        if coupon.valid_until and now > as_utc(coupon.valid_until):
            raise CouponInvalid("This coupon has expired", {"code": code})
        if coupon.usage_limit and coupon.used_count >= coupon.usage_limit:
            raise CouponInvalid("This coupon has reached its usage limit", {"code": code})

        amount = to_money(amount)
        if coupon.minimum_order_amount and amount < to_money(coupon.minimum_order_amount):
            raise CouponInvalid(
                f"Minimum order amount of {coupon.minimum_order_amount} required",
                {"code": code, "minimum_order_amount": str(coupon.minimum_order_amount)},
            )

        used = (await self.db.execute(
            select(func.count(CouponUsage.id)).where(
                CouponUsage.coupon_id == coupon.id,
                CouponUsage.user_id == user_id,
            )
        )).scalar() or 0
        if used >= (coupon.usage_limit_per_user or 1):
            raise CouponInvalid("You have already used this coupon", {"code": code})

        discount = calculate_discount(coupon, amount)
        if discount > amount:
            raise CouponInvalid("Discount exceeds the order amount", {"code": code})

        return coupon, discount

    async def record_usage(
        self,
        code: str,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        discount_amount: Decimal,
    ) -> None:
        """
        Record coupon usage once the order completes. Does not commit.
        """
        coupon = (await self.db.execute(
            select(Coupon).where(func.upper(Coupon.code) == code.upper())
        )).scalar_one_or_none()
        if coupon is None:
            return

        try:
            async with self.db.begin_nested():
                self.db.add(CouponUsage(
                    coupon_id=coupon.id,
                    user_id=user_id,
                    order_id=order_id,
                    discount_amount=to_money(discount_amount),
                ))
        except IntegrityError:
            return  # Already recorded for this order

        await self.db.execute(
            update(Coupon)
            .where(Coupon.id == coupon.id)
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Coupon {code} used by user {user_id} on order {order_id}")
