from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from skillmint.core.exceptions import CouponInvalid
from skillmint.models.coupon import Coupon, CouponUsage
from skillmint.services.coupon_service import CouponService, calculate_discount
from skillmint.services.order_service import OrderPipeline


async def _coupon(db, code, **fields):
    coupon = Coupon(code=code, **fields)
    db.add(coupon)
    await db.commit()
    return coupon


@pytest.mark.parametrize("discount_type,value,cap,amount,expected", [
    ("percentage", "10", None, "1000", "100.00"),
    ("percentage", "50", "200", "1000", "200.00"),
    ("percentage", "15", None, "333.33", "50.00"),
    ("fixed", "150", None, "1000", "150.00"),
    ("fixed", "5000", None, "1000", "1000.00"),
    ("bogus", "10", None, "1000", "0.00"),
])
def test_calculate_discount(discount_type, value, cap, amount, expected):
    coupon = Coupon(
        code="X",
        discount_type=discount_type,
        discount_value=Decimal(value),
        max_discount_amount=Decimal(cap) if cap else None,
    )
    assert calculate_discount(coupon, Decimal(amount)) == Decimal(expected)


@pytest.mark.asyncio
async def test_valid_coupon_is_case_insensitive(db, make_user):
    user_id = (await make_user(db, "Cody Coupon")).id
    await _coupon(db, "WELCOME10", discount_type="percentage", discount_value=Decimal("10"))

    coupon, discount = await CouponService(db).validate(" welcome10 ", user_id, Decimal("1000"))

    assert coupon.code == "WELCOME10"
    assert discount == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("fields,message", [
    ({"is_active": False}, "Invalid coupon code"),
    ({"valid_until": datetime.now(timezone.utc) - timedelta(days=1)}, "expired"),
    ({"valid_from": datetime.now(timezone.utc) + timedelta(days=1)}, "not yet active"),
    ({"usage_limit": 5, "used_count": 5}, "usage limit"),
    ({"minimum_order_amount": Decimal("1500")}, "Minimum order amount"),
])
async def test_unusable_coupons(db, make_user, fields, message):
    user_id = (await make_user(db, "Cody Coupon")).id
    await _coupon(db, "SPRING", discount_type="fixed", discount_value=Decimal("100"), **fields)

    with pytest.raises(CouponInvalid) as exc_info:
        await CouponService(db).validate("SPRING", user_id, Decimal("1000"))
    assert message in exc_info.value.message
    assert exc_info.value.details["code"] == "SPRING"


@pytest.mark.asyncio
async def test_unknown_coupon(db, make_user):
    user_id = (await make_user(db, "Cody Coupon")).id
    with pytest.raises(CouponInvalid):
        await CouponService(db).validate("NOPE", user_id, Decimal("1000"))


@pytest.mark.asyncio
async def test_usage_recorded_once_per_order(db, marketplace, gateway, rates):
    await _coupon(db, "ONCE", discount_type="fixed", discount_value=Decimal("100"))
    buyer_id, course_id = marketplace["buyer"].id, marketplace["course"].id
    checkout = await OrderPipeline(db, gateway, rates).create_order(buyer_id, course_id, coupon_code="ONCE")
    order_pk = (await OrderPipeline(db, gateway, rates).get_order(checkout["order_id"])).id

    service = CouponService(db)
    await service.record_usage("ONCE", buyer_id, order_pk, Decimal("100"))
    await service.record_usage("ONCE", buyer_id, order_pk, Decimal("100"))
    await db.commit()

    usages = (await db.execute(select(CouponUsage))).scalars().all()
    assert len(usages) == 1
    coupon = (await db.execute(
        select(Coupon).where(Coupon.code == "ONCE").execution_options(populate_existing=True)
    )).scalar_one()
    assert coupon.used_count == 1

    with pytest.raises(CouponInvalid) as exc_info:
        await service.validate("ONCE", buyer_id, Decimal("1000"))
    assert "already used" in exc_info.value.message

