"""Seeded randomized checks of the ledger and revenue split invariants."""
import random
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from skillmint.core.exceptions import InsufficientFunds
from skillmint.db_types import to_money
from skillmint.models.commission import AffiliateCommission
from skillmint.models.course import Course
from skillmint.models.order import Order
from skillmint.models.wallet import WalletTransaction
from skillmint.services.commission_service import CommissionEngine
from skillmint.services.order_service import OrderPipeline, compute_split
from skillmint.services.wallet_service import WalletLedger

SEEDS = [3, 17, 2024, 90210]


def _amount(rng, low=1, high=500000):
    return Decimal(rng.randint(low, high)) / 100


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", SEEDS)
async def test_ledger_balance_matches_history(db, make_user, seed):
    rng = random.Random(seed)
    user_id = (await make_user(db, f"Ledger {seed}")).id
    ledger = WalletLedger(db)
    expected = Decimal("0.00")

    for _ in range(40):
        amount = _amount(rng, high=200000)
        if rng.random() < 0.55:
            await ledger.credit(user_id, amount, "Random credit", reference_type="bonus")
            expected += amount
        else:
            try:
                await ledger.debit(user_id, amount, "Random debit")
            except InsufficientFunds:
                continue
            expected -= amount
    await db.commit()

    report = await ledger.reconcile(user_id)
    assert report["stored_balance"] == expected
    assert report["computed_balance"] == expected
    assert report["is_consistent"] is True
    if report["transaction_count"]:
        assert report["min_balance_after"] >= 0

    sequences = sorted((await db.execute(
        select(WalletTransaction.sequence).where(WalletTransaction.user_id == user_id)
    )).scalars().all())
    assert sequences == list(range(1, len(sequences) + 1))


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", SEEDS)
async def test_split_always_sums_to_final_amount(db, marketplace, rates, seed):
    rng = random.Random(seed)
    engine = CommissionEngine(db, rates)
    referrers = [None, marketplace["affiliate_a"].id, marketplace["affiliate_b"].id, marketplace["affiliate_c"].id]

    for _ in range(25):
        course = Course(
            instructor_id=marketplace["instructor"].id,
            price=_amount(rng),
            instructor_share_pct=Decimal(rng.choice([0, 50, 70, 85, 90, 100])),
            affiliate_commission_pct=Decimal(rng.choice([0, 5, 10, 20])),
        )
        order = Order(
            order_id="ORD0000000000000PROP",
            user_id=marketplace["buyer"].id,
            final_amount=course.price,
            referral_used_id=rng.choice(referrers),
        )

        planned = await engine.plan_for_order(order, course)
        split = compute_split(order.final_amount, course.instructor_share_pct, planned)

        assert sum(split.values()) == order.final_amount
        assert split["platform_earnings"] >= 0
        assert split["affiliate_commission"] >= 0
        levels = [p.level for p in planned]
        assert levels == sorted(set(levels))
        assert all(1 <= level <= 3 for level in levels)


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", SEEDS[:2])
async def test_settled_orders_keep_their_invariants(db, marketplace, gateway, rates, make_user, make_course, fund, seed):
    rng = random.Random(seed)
    pipeline = OrderPipeline(db, gateway, rates)
    affiliates = [marketplace["affiliate_a"], marketplace["affiliate_b"], marketplace["affiliate_c"], None]
    instructor = marketplace["instructor"]

    for i in range(6):
        buyer = await make_user(db, f"Buyer {seed} {i}", referred_by=rng.choice(affiliates))
        course = await make_course(
            db,
            instructor,
            price=str(_amount(rng, low=10000, high=300000)),
            instructor_share_pct=str(rng.choice([60, 70, 80])),
        )
        buyer_id, course_id, price = buyer.id, course.id, course.price
        await fund(db, buyer_id, str(price))
        result = await pipeline.create_order(buyer_id, course_id, payment_method="wallet")

        order_pk = (await db.execute(select(Order.id).where(Order.order_id == result["order_id"]))).scalar_one()
        await pipeline.finalize(order_pk)

    orders = (await db.execute(
        select(Order).execution_options(populate_existing=True)
    )).scalars().all()
    assert len(orders) == 6
    for order in orders:
        assert order.settlement_status == "settled"
        assert order.instructor_earnings + order.platform_earnings + order.affiliate_commission == order.final_amount
        scheduled = (await db.execute(
            select(func.coalesce(func.sum(AffiliateCommission.commission_amount), 0))
            .where(AffiliateCommission.order_id == order.id)
        )).scalar()
        assert to_money(scheduled) == order.affiliate_commission

    duplicates = (await db.execute(
        select(AffiliateCommission.order_id, AffiliateCommission.level)
        .group_by(AffiliateCommission.order_id, AffiliateCommission.level)
        .having(func.count(AffiliateCommission.id) > 1)
    )).all()
    assert duplicates == []

    for user in [instructor, marketplace["platform"]]:
        assert (await WalletLedger(db).reconcile(user.id))["is_consistent"] is True
