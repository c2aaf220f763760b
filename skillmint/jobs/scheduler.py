"""
APScheduler Configuration

Background job scheduler for the money pipeline. Jobs share the payment
gateway and the live commission rates built in the application lifespan.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from skillmint.config import settings
from skillmint.services.commission_service import CommissionRates
from skillmint.services.payment_service import PaymentGateway

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


async def run_job(job_name: str, job, *args):
    """Run a job from the scheduler; a failed run is logged and retried on the next tick."""
    try:
        await job(*args)
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}", exc_info=True)


def start_scheduler(gateway: PaymentGateway, rates: Optional[CommissionRates] = None):
    """Start the background job scheduler."""
    if scheduler.running:
        return

    from skillmint.jobs.order_jobs import (
        check_pending_payments,
        expire_stale_orders,
        reconcile_order_settlements,
    )

    # Expire unpaid orders past their TTL
    scheduler.add_job(
        run_job,
        'interval',
        minutes=settings.EXPIRE_ORDERS_INTERVAL_MINUTES,
        args=['expire_stale_orders', expire_stale_orders, gateway],
        id='expire_stale_orders',
        name='Expire Stale Orders',
        replace_existing=True,
    )

    # Retry failed instructor / platform credits and commission scheduling
    scheduler.add_job(
        run_job,
        'interval',
        minutes=settings.RECONCILE_INTERVAL_MINUTES,
        args=['reconcile_order_settlements', reconcile_order_settlements, gateway, rates],
        id='reconcile_order_settlements',
        name='Reconcile Order Settlements',
        replace_existing=True,
    )

    # Check pending payments with the processor
    scheduler.add_job(
        run_job,
        'interval',
        minutes=settings.PAYMENT_CHECK_INTERVAL_MINUTES,
        args=['check_pending_payments', check_pending_payments, gateway, rates],
        id='check_pending_payments',
        name='Check Pending Payments',
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    # Log all scheduled jobs
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
