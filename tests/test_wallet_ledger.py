import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from skillmint.core.exceptions import InsufficientFunds, InvalidInput, WalletContention
from skillmint.models.wallet import Wallet, WalletTransaction
from skillmint.services.wallet_service import WalletLedger


@pytest.mark.asyncio
async def test_wallet_created_lazily(db, make_user):
    user = await make_user(db, "Lazy")
    ledger = WalletLedger(db)

    assert await ledger.get_wallet(user.id) is None
    wallet = await ledger.get_or_create_wallet(user.id)
    again = await ledger.get_or_create_wallet(user.id)

    assert wallet.id == again.id
    assert wallet.balance == Decimal("0.00")
    assert wallet.version == 0


@pytest.mark.asyncio
async def test_credit_and_debit_append_sequenced_entries(db, make_user):
    user = await make_user(db, "Ledger")
    ledger = WalletLedger(db)

    first = await ledger.credit(user.id, Decimal("500"), "Top-up", reference_type="wallet_topup", reference_id="TOP1")
    second = await ledger.debit(user.id, Decimal("120.50"), "Purchase", reference_type="course_purchase", reference_id="ORD1")
    await db.commit()

    assert (first.sequence, second.sequence) == (1, 2)
    assert first.balance_after == Decimal("500.00")
    assert second.balance_after == Decimal("379.50")

    summary = await ledger.summary(user.id)
    assert summary["balance"] == Decimal("379.50")
    assert summary["total_topped_up"] == Decimal("500.00")
    assert summary["total_earned"] == Decimal("0.00")


@pytest.mark.asyncio
async def test_earning_credits_raise_total_earned(db, make_user):
    user = await make_user(db, "Earner")
    ledger = WalletLedger(db)

    await ledger.credit(user.id, Decimal("700"), "Sale", reference_type="course_purchase", reference_id="ORD1")
    await ledger.credit(user.id, Decimal("100"), "Commission", reference_type="affiliate_commission", reference_id="COM1")
    await ledger.credit(user.id, Decimal("5"), "Correction", reference_type="correction")
    await db.commit()

    summary = await ledger.summary(user.id)
    assert summary["total_earned"] == Decimal("800.00")
    assert summary["balance"] == Decimal("805.00")


@pytest.mark.asyncio
async def test_debit_beyond_balance_is_rejected(db, make_user, fund):
    user = await make_user(db, "Broke")
    await fund(db, user.id, "50")
    ledger = WalletLedger(db)

    with pytest.raises(InsufficientFunds) as exc_info:
        await ledger.debit(user.id, Decimal("50.01"), "Too much")
    assert exc_info.value.details == {"balance": "50.00", "requested": "50.01"}

    wallet = await ledger.get_wallet(user.id)
    assert wallet.balance == Decimal("50.00")
    assert wallet.version == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-5", "0.001"])
async def test_non_positive_amounts_rejected(db, make_user, amount):
    user = await make_user(db, "Zero")
    with pytest.raises(InvalidInput):
        await WalletLedger(db).credit(user.id, Decimal(amount), "Nothing")


@pytest.mark.asyncio
async def test_version_conflict_is_retried(db, make_user, fund):
    user = await make_user(db, "Racer")
    await fund(db, user.id, "100")
    ledger = WalletLedger(db, retry_base_delay=0)
    original = ledger._compare_and_set
    calls = []

    async def racing_compare_and_set(wallet_id, expected_version, values):
        calls.append(expected_version)
        if len(calls) == 1:
            # Another writer lands a credit of 25 between our read and our write
            await db.execute(
                update(Wallet)
                .where(Wallet.id == wallet_id)
                .values(balance=Wallet.balance + 25, version=Wallet.version + 1)
            )
        return await original(wallet_id, expected_version, values)

    ledger._compare_and_set = racing_compare_and_set
    txn = await ledger.debit(user.id, Decimal("30"), "Purchase")
    await db.commit()

    assert len(calls) == 2
    assert txn.sequence == 3
    assert txn.balance_after == Decimal("95.00")
    wallet = await WalletLedger(db).get_wallet(user.id)
    assert (wallet.balance, wallet.version) == (Decimal("95.00"), 3)


@pytest.mark.asyncio
async def test_persistent_conflict_raises_wallet_contention(db, make_user, fund):
    user = await make_user(db, "Busy")
    await fund(db, user.id, "100")
    ledger = WalletLedger(db, retry_base_delay=0)
    attempts = []

    async def always_conflict(wallet_id, expected_version, values):
        attempts.append(1)
        return False

    ledger._compare_and_set = always_conflict
    with pytest.raises(WalletContention) as exc_info:
        await ledger.debit(user.id, Decimal("10"), "Purchase")

    assert len(attempts) == 5
    assert exc_info.value.details["attempts"] == 5
    wallet = await WalletLedger(db).get_wallet(user.id)
    assert wallet.balance == Decimal("100.00")


@pytest.mark.asyncio
async def test_reconcile_reports_consistency(db, make_user):
    user = await make_user(db, "Auditor")
    ledger = WalletLedger(db)
    await ledger.credit(user.id, Decimal("300"), "Top-up", reference_type="wallet_topup")
    await ledger.debit(user.id, Decimal("100"), "Purchase")
    await db.commit()

    report = await ledger.reconcile(user.id)
    assert report["is_consistent"] is True
    assert report["computed_balance"] == Decimal("200.00")
    assert report["transaction_count"] == 2
    assert report["min_balance_after"] == Decimal("200.00")

    # Tamper with the stored balance behind the ledger's back
    await db.execute(update(Wallet).where(Wallet.user_id == user.id).values(balance=Decimal("999.00")))
    await db.commit()

    report = await ledger.reconcile(user.id)
    assert report["is_consistent"] is False
    assert report["discrepancy"] == Decimal("799.00")


@pytest.mark.asyncio
async def test_admin_adjust_requires_reason_and_records_correction(db, make_user):
    user = await make_user(db, "Adjusted")
    admin_id = uuid.uuid4()
    ledger = WalletLedger(db)

    with pytest.raises(InvalidInput):
        await ledger.admin_adjust(user.id, Decimal("10"), "credit", "", admin_id)
    with pytest.raises(InvalidInput):
        await ledger.admin_adjust(user.id, Decimal("10"), "refund", "typo", admin_id)

    txn = await ledger.admin_adjust(user.id, Decimal("10"), "credit", "Goodwill", admin_id)
    await db.commit()

    assert txn.reference_type == "correction"
    assert txn.extra == {"admin_id": str(admin_id), "reason": "Goodwill"}


@pytest.mark.asyncio
async def test_counters_cannot_go_negative(db, make_user):
    user = await make_user(db, "Counter")
    ledger = WalletLedger(db)
    await ledger.get_or_create_wallet(user.id)

    with pytest.raises(InvalidInput):
        await ledger.adjust_counters(user.id, {"pending_withdrawals": Decimal("-1")})
    with pytest.raises(ValueError):
        await ledger.adjust_counters(user.id, {"balance": Decimal("1")})


@pytest.mark.asyncio
async def test_history_newest_first_with_filters(db, make_user):
    user = await make_user(db, "History")
    ledger = WalletLedger(db)
    await ledger.credit(user.id, Decimal("100"), "Top-up", reference_type="wallet_topup")
    await ledger.debit(user.id, Decimal("10"), "One", reference_type="course_purchase")
    await ledger.debit(user.id, Decimal("20"), "Two", reference_type="course_purchase")
    await db.commit()

    items, total = await ledger.list_transactions(user.id)
    assert total == 3
    assert [t.sequence for t in items] == [3, 2, 1]

    debits, total = await ledger.list_transactions(user.id, txn_type="debit", limit=1)
    assert total == 2
    assert debits[0].amount == Decimal("20.00")

    rows = (await db.execute(select(WalletTransaction).where(WalletTransaction.user_id == user.id))).scalars().all()
    assert all(t.status == "completed" for t in rows)
