"""
Status state machines for orders, commissions and withdrawals.

Every status change in the money subsystem is checked here first, then
applied with a status-guarded UPDATE so that concurrent callers cannot both
win the same transition.
"""

from typing import Dict, List

from skillmint.core.exceptions import IllegalStateTransition
from skillmint.models.commission import CommissionStatus
from skillmint.models.order import PaymentStatus, OrderStatus
from skillmint.models.withdrawal import WithdrawalStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

PAYMENT_TRANSITIONS: Dict[str, List[str]] = {
    PaymentStatus.PENDING.value: [
        PaymentStatus.COMPLETED.value,   # Payment verified / captured
        PaymentStatus.FAILED.value,      # Gateway failure, TTL or cancel
    ],
    PaymentStatus.COMPLETED.value: [
        PaymentStatus.REFUNDED.value,    # Admin-approved refund
    ],
    PaymentStatus.FAILED.value: [],      # Terminal state
    PaymentStatus.REFUNDED.value: [],    # Terminal state
}

ORDER_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.PENDING.value: [
        OrderStatus.PROCESSING.value,
        OrderStatus.COMPLETED.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.PROCESSING.value: [
        OrderStatus.COMPLETED.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.COMPLETED.value: [],
    OrderStatus.CANCELLED.value: [],
}

COMMISSION_TRANSITIONS: Dict[str, List[str]] = {
    CommissionStatus.PENDING.value: [
        CommissionStatus.APPROVED.value,
        CommissionStatus.REJECTED.value,
        CommissionStatus.CANCELLED.value,
    ],
    CommissionStatus.APPROVED.value: [
        CommissionStatus.PAID.value,
        CommissionStatus.CANCELLED.value,
    ],
    CommissionStatus.REJECTED.value: [],
    CommissionStatus.PAID.value: [],
    CommissionStatus.CANCELLED.value: [],
}

# approve collapses approved -> processing into a single step
WITHDRAWAL_TRANSITIONS: Dict[str, List[str]] = {
    WithdrawalStatus.PENDING.value: [
        WithdrawalStatus.PROCESSING.value,  # Approve (debit applied)
        WithdrawalStatus.REJECTED.value,    # Reject before any debit
        WithdrawalStatus.CANCELLED.value,   # Cancel by owner
    ],
    WithdrawalStatus.APPROVED.value: [
        WithdrawalStatus.PROCESSING.value,
        WithdrawalStatus.REJECTED.value,
    ],
    WithdrawalStatus.PROCESSING.value: [
        WithdrawalStatus.COMPLETED.value,   # Payout confirmed
        WithdrawalStatus.REJECTED.value,    # Payout failed, funds returned
    ],
    WithdrawalStatus.COMPLETED.value: [],
    WithdrawalStatus.REJECTED.value: [],
    WithdrawalStatus.CANCELLED.value: [],
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(transitions: Dict[str, List[str]], current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in transitions.get(current_status, [])


def sources_of(transitions: Dict[str, List[str]], new_status: str) -> List[str]:
    """Statuses from which new_status can be reached, for status-guarded UPDATEs."""
    return [status for status, targets in transitions.items() if new_status in targets]


def validate_transition(
    transitions: Dict[str, List[str]],
    current_status: str,
    new_status: str,
    entity: str = "record",
) -> None:
    """
    Validate a status transition. Raises IllegalStateTransition if invalid.

    Unlike a plain equality check, staying in the same status is NOT allowed:
    callers rely on this to turn duplicate actions into errors or no-ops.
    """
    if can_transition(transitions, current_status, new_status):
        return

    allowed = transitions.get(current_status, [])
    if not allowed:
        raise IllegalStateTransition(
            f"{entity} in '{current_status}' status cannot be modified. This is a terminal state.",
            {"current_status": current_status, "requested_status": new_status},
        )
    raise IllegalStateTransition(
        f"Cannot change {entity} from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        {"current_status": current_status, "requested_status": new_status},
    )
