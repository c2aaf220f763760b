"""
Background Jobs Module

Handles scheduled tasks for:
- Stale order expiry
- Settlement reconciliation
- Payment status checks
"""

from skillmint.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from skillmint.jobs.order_jobs import (
    check_pending_payments,
    expire_stale_orders,
    reconcile_order_settlements,
)

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "check_pending_payments",
    "expire_stale_orders",
    "reconcile_order_settlements",
]
