import pytest

from order_app.constants import ORDER_PATHS, CancelPolicy, OrderStatus, OrderType
from order_app.events import AuditAction
from order_app.lifecycle import (
    TransitionKind,
    classify_transition,
    decide_transition,
    is_authorized,
    valid_next_statuses,
)

ALL_TYPES = list(OrderType)


# ── トポロジー ───────────────────────────────────

@pytest.mark.parametrize("order_type", ALL_TYPES)
def test_forward_path_visits_each_status_once_and_ends_finished(order_type):
    path = ORDER_PATHS[order_type]
    assert path[0] == OrderStatus.DRAFT
    assert path[-1] == OrderStatus.FINISHED
    assert len(set(path)) == len(path)

    status = OrderStatus.DRAFT
    visited = [status]
    while status != OrderStatus.FINISHED:
        forward = [
            s for s in OrderStatus
            if classify_transition(order_type, status, s) == TransitionKind.FORWARD
        ]
        assert len(forward) == 1
        status = forward[0]
        visited.append(status)
    assert tuple(visited) == path


@pytest.mark.parametrize("order_type", ALL_TYPES)
def test_forward_moves_never_skip(order_type):
    path = ORDER_PATHS[order_type]
    for i, current in enumerate(path):
        for j, target in enumerate(path):
            if j > i + 1:
                assert classify_transition(order_type, current, target) == TransitionKind.INVALID


def test_foreign_branch_is_invalid():
    assert classify_transition("DINE", "READY", "PICKED_UP") == TransitionKind.INVALID
    assert classify_transition("TAKEAWAY", "READY", "OUT_FOR_DELIVERY") == TransitionKind.INVALID
    assert classify_transition("DELIVERY", "OUT_FOR_DELIVERY", "PICKED_UP") == TransitionKind.INVALID


def test_same_status_is_noop():
    assert classify_transition("DINE", "READY", "READY") == TransitionKind.NOOP


def test_cancelled_is_a_dead_end():
    for status in OrderStatus:
        kind = classify_transition("DELIVERY", "CANCELLED", status)
        assert kind in (TransitionKind.INVALID, TransitionKind.NOOP)


def test_finished_only_leaves_backward():
    assert classify_transition("DINE", "FINISHED", "READY") == TransitionKind.BACKWARD
    assert classify_transition("DINE", "FINISHED", "CANCELLED") == TransitionKind.INVALID
    assert classify_transition("DINE", "FINISHED", "DRAFT") == TransitionKind.INVALID


# ── 権限 ─────────────────────────────────────────

def test_authorization_is_independent_of_topology():
    assert is_authorized(TransitionKind.FORWARD, is_manager=False)
    assert not is_authorized(TransitionKind.BACKWARD, is_manager=False)
    assert is_authorized(TransitionKind.BACKWARD, is_manager=True)
    assert is_authorized(TransitionKind.CANCEL, is_manager=False)
    assert not is_authorized(TransitionKind.CANCEL, False, CancelPolicy.MANAGER_ONLY)
    assert is_authorized(TransitionKind.CANCEL, True, CancelPolicy.MANAGER_ONLY)
    assert not is_authorized(TransitionKind.INVALID, is_manager=True)
    assert not is_authorized(TransitionKind.NOOP, is_manager=True)


# ── 判定 ─────────────────────────────────────────

@pytest.mark.parametrize("order_type", ALL_TYPES)
@pytest.mark.parametrize("is_manager", [True, False])
def test_cancel_reachable_from_every_non_terminal_status(order_type, is_manager):
    for status in ORDER_PATHS[order_type]:
        decision = decide_transition(order_type, status, "CANCELLED", is_manager)
        if status == OrderStatus.FINISHED:
            assert not decision.allowed
        else:
            assert decision.allowed
            assert not decision.is_override
            assert decision.audit_action == AuditAction.ORDER_CANCELLED


def test_cancel_under_manager_only_policy():
    rejected = decide_transition("DINE", "PREPARING", "CANCELLED", False, CancelPolicy.MANAGER_ONLY)
    assert not rejected.allowed
    assert "Only Managers can cancel orders" in rejected.reason

    accepted = decide_transition("DINE", "PREPARING", "CANCELLED", True, CancelPolicy.MANAGER_ONLY)
    assert accepted.allowed


@pytest.mark.parametrize("order_type", ALL_TYPES)
def test_backward_moves_require_manager(order_type):
    path = ORDER_PATHS[order_type]
    for i in range(1, len(path)):
        current, previous = path[i], path[i - 1]
        as_user = decide_transition(order_type, current, previous, is_manager=False)
        as_manager = decide_transition(order_type, current, previous, is_manager=True)
        assert not as_user.allowed
        assert "Only Managers" in as_user.reason
        assert as_manager.allowed
        assert as_manager.is_override
        assert as_manager.audit_action == AuditAction.ORDER_REOPENED


def test_forward_move_is_plain_status_change():
    decision = decide_transition("TAKEAWAY", "READY", "PICKED_UP", is_manager=False)
    assert decision.allowed
    assert not decision.is_override
    assert decision.audit_action == AuditAction.ORDER_STATUS_CHANGED
    assert decision.reason == "Status transition allowed"


def test_manager_reopens_finished_dine_order():
    decision = decide_transition("DINE", "FINISHED", "READY", is_manager=True)
    assert decision.allowed
    assert decision.is_override
    assert decision.reason == "Status transition allowed (Manager override)"


def test_rejection_names_allowed_statuses():
    decision = decide_transition("DINE", "DRAFT", "READY", is_manager=False)
    assert not decision.allowed
    assert decision.reason == (
        "Invalid status transition from DRAFT to READY for DINE order. "
        "Valid next statuses: PREPARING, CANCELLED"
    )


def test_same_status_rejected():
    decision = decide_transition("DINE", "PREPARING", "PREPARING", is_manager=True)
    assert not decision.allowed
    assert decision.reason.startswith("Order is already PREPARING")


def test_unknown_requested_status_rejected():
    decision = decide_transition("DINE", "DRAFT", "SERVED", is_manager=True)
    assert not decision.allowed
    assert "Invalid order status" in decision.reason


def test_cancelled_order_has_no_options():
    decision = decide_transition("DELIVERY", "CANCELLED", "DRAFT", is_manager=True)
    assert not decision.allowed
    assert decision.reason.endswith("Valid next statuses: none")


def test_valid_next_statuses_order_forward_cancel_backward():
    assert valid_next_statuses("DELIVERY", "READY", is_manager=True) == [
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.CANCELLED,
        OrderStatus.PREPARING,
    ]
    assert valid_next_statuses("DELIVERY", "READY", is_manager=False) == [
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.CANCELLED,
    ]
    assert valid_next_statuses("DINE", "FINISHED", is_manager=False) == []
    assert valid_next_statuses("DINE", "FINISHED", is_manager=True) == [OrderStatus.READY]
    assert valid_next_statuses(
        "DINE", "DRAFT", is_manager=False, cancel_policy=CancelPolicy.MANAGER_ONLY
    ) == [OrderStatus.PREPARING]
