import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from skillmint.jobs import order_jobs
from skillmint.jobs.scheduler import get_job_status, run_job
from skillmint.models.order import Order
from skillmint.services.order_service import OrderPipeline


@pytest.fixture
def job_sessions(monkeypatch, session_factory):
    """Run background jobs against the test database."""

    @asynccontextmanager
    async def test_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    monkeypatch.setattr(order_jobs, "get_db_session", test_db_session)


async def _pending_order(db, gateway, rates, marketplace, age):
    checkout = await OrderPipeline(db, gateway, rates).create_order(marketplace["buyer"].id, marketplace["course"].id)
    await db.execute(
        update(Order)
        .where(Order.order_id == checkout["order_id"])
        .values(created_at=datetime.now(timezone.utc) - age)
    )
    await db.commit()
    return checkout


async def _status(db, order_id):
    stmt = (
        select(Order.payment_status, Order.order_status)
        .where(Order.order_id == order_id)
    )
    row = (await db.execute(stmt)).one()
    await db.commit()
    return tuple(row)


@pytest.mark.asyncio
async def test_expire_job(db, marketplace, gateway, rates, job_sessions):
    stale = await _pending_order(db, gateway, rates, marketplace, timedelta(hours=25))

    result = await order_jobs.expire_stale_orders(gateway)

    assert result["expired"] == 1
    assert result["duration_seconds"] >= 0
    assert await _status(db, stale["order_id"]) == ("failed", "cancelled")


@pytest.mark.asyncio
async def test_recent_orders_are_not_expired(db, marketplace, gateway, rates, job_sessions):
    fresh = await _pending_order(db, gateway, rates, marketplace, timedelta(hours=1))

    result = await order_jobs.expire_stale_orders(gateway)

    assert result["expired"] == 0
    assert await _status(db, fresh["order_id"]) == ("pending", "pending")


@pytest.mark.asyncio
async def test_payment_check_job_completes_captured_orders(db, marketplace, gateway, rates, job_sessions):
    checkout = await _pending_order(db, gateway, rates, marketplace, timedelta(minutes=10))
    gateway.capture(checkout["gateway_order_id"], "pay_lost_webhook")

    result = await order_jobs.check_pending_payments(gateway, rates)

    assert (result["checked"], result["completed"]) == (1, 1)
    assert await _status(db, checkout["order_id"]) == ("completed", "completed")


@pytest.mark.asyncio
async def test_payment_check_skips_uncaptured(db, marketplace, gateway, rates, job_sessions):
    checkout = await _pending_order(db, gateway, rates, marketplace, timedelta(minutes=10))

    result = await order_jobs.check_pending_payments(gateway, rates)

    assert (result["checked"], result["completed"]) == (1, 0)
    assert await _status(db, checkout["order_id"]) == ("pending", "pending")


@pytest.mark.asyncio
async def test_reconcile_job_with_nothing_to_do(db, marketplace, gateway, rates, job_sessions):
    result = await order_jobs.reconcile_order_settlements(gateway, rates)
    assert (result["checked"], result["settled"], result["failed"]) == (0, 0, 0)


@pytest.mark.asyncio
async def test_failed_job_run_is_logged(caplog):
    async def broken_job():
        raise RuntimeError("database went away")

    with caplog.at_level(logging.ERROR, logger="skillmint.jobs.scheduler"):
        await run_job("broken_job", broken_job)

    assert "Job 'broken_job' failed: database went away" in caplog.text


def test_no_jobs_before_scheduler_starts():
    assert get_job_status() == []
