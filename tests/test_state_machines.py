import pytest

from skillmint.core.exceptions import IllegalStateTransition
from skillmint.services.state_machines import (
    COMMISSION_TRANSITIONS,
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    WITHDRAWAL_TRANSITIONS,
    can_transition,
    sources_of,
    validate_transition,
)


def test_completed_payment_only_moves_to_refunded():
    assert PAYMENT_TRANSITIONS["completed"] == ["refunded"]
    assert can_transition(PAYMENT_TRANSITIONS, "pending", "completed")
    assert not can_transition(PAYMENT_TRANSITIONS, "completed", "pending")
    assert not can_transition(PAYMENT_TRANSITIONS, "completed", "failed")


@pytest.mark.parametrize("transitions,status", [
    (PAYMENT_TRANSITIONS, "failed"),
    (PAYMENT_TRANSITIONS, "refunded"),
    (ORDER_TRANSITIONS, "completed"),
    (ORDER_TRANSITIONS, "cancelled"),
    (COMMISSION_TRANSITIONS, "paid"),
    (COMMISSION_TRANSITIONS, "rejected"),
    (COMMISSION_TRANSITIONS, "cancelled"),
    (WITHDRAWAL_TRANSITIONS, "completed"),
    (WITHDRAWAL_TRANSITIONS, "rejected"),
    (WITHDRAWAL_TRANSITIONS, "cancelled"),
])
def test_terminal_states_reject_every_transition(transitions, status):
    assert transitions[status] == []
    for target in transitions:
        with pytest.raises(IllegalStateTransition) as exc_info:
            validate_transition(transitions, status, target)
        assert exc_info.value.code == "ILLEGAL_STATE_TRANSITION"


def test_sources_of_a_status():
    assert sources_of(ORDER_TRANSITIONS, "completed") == ["pending", "processing"]
    assert sources_of(ORDER_TRANSITIONS, "cancelled") == ["pending", "processing"]
    assert sources_of(PAYMENT_TRANSITIONS, "refunded") == ["completed"]
    assert sources_of(PAYMENT_TRANSITIONS, "pending") == []


def test_same_status_is_not_a_transition():
    with pytest.raises(IllegalStateTransition):
        validate_transition(COMMISSION_TRANSITIONS, "pending", "pending", "Commission")


def test_withdrawal_approve_goes_straight_to_processing():
    validate_transition(WITHDRAWAL_TRANSITIONS, "pending", "processing")
    validate_transition(WITHDRAWAL_TRANSITIONS, "processing", "rejected")
    with pytest.raises(IllegalStateTransition):
        validate_transition(WITHDRAWAL_TRANSITIONS, "pending", "completed")


def test_error_lists_allowed_targets():
    with pytest.raises(IllegalStateTransition) as exc_info:
        validate_transition(COMMISSION_TRANSITIONS, "approved", "rejected", "Commission")
    assert "paid" in exc_info.value.message
    assert exc_info.value.details == {"current_status": "approved", "requested_status": "rejected"}
