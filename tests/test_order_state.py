"""Unit tests for the order state machine and transition commands."""

from itertools import product

import pytest

from carryon.domain.entities import Location, Order, Place, StatusHistoryEntry, utcnow
from carryon.domain.enums import (
    DRIVER_BOUND_STATUSES,
    ORDER_TRANSITIONS,
    TERMINAL_STATUSES,
    OrderStatus,
)
from carryon.domain.errors import InvalidTransition, Unauthorized
from carryon.domain.identity import ANONYMOUS, Customer, Driver, System
from carryon.domain.transitions import (
    DRIVER_COMMANDS,
    AssignDriver,
    CancelOrder,
    CompletePickup,
    MarkArrived,
    MarkDelivered,
    StartTransit,
    plan_transition,
)

CUSTOMER = Customer(1)
DRIVER = Driver(7)


def _order(status: OrderStatus) -> Order:
    now = utcnow()
    return Order(
        id=42,
        customer_id=CUSTOMER.id,
        driver_id=DRIVER.id if status in DRIVER_BOUND_STATUSES else None,
        pickup=Place(Location(12.97, 77.60), "A"),
        drop=Place(Location(12.98, 77.64), "B"),
        status=status,
        history=(StatusHistoryEntry(OrderStatus.PENDING, now),),
    )


def _command_for(target: OrderStatus):
    """The command and actor that would legitimately request *target*."""
    if target is OrderStatus.DRIVER_ASSIGNED:
        return AssignDriver(DRIVER.id), DRIVER
    if target is OrderStatus.CANCELLED:
        return CancelOrder(reason="changed my mind"), CUSTOMER
    if target in DRIVER_COMMANDS:
        return DRIVER_COMMANDS[target](), DRIVER
    return None, None


class TestTransitionTable:
    def test_pending_is_the_only_initial_state(self):
        assert Order().status is OrderStatus.PENDING

    def test_terminal_states(self):
        assert TERMINAL_STATUSES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def test_cancellable_states(self):
        cancellable = {s for s, nxt in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in nxt}
        assert cancellable == {
            OrderStatus.PENDING,
            OrderStatus.DRIVER_ASSIGNED,
            OrderStatus.DRIVER_ARRIVED,
            OrderStatus.PICKUP_COMPLETE,
        }

    # pending is never a transition target
    @pytest.mark.parametrize(
        "current,requested",
        list(product(OrderStatus, [s for s in OrderStatus if s is not OrderStatus.PENDING])),
    )
    def test_transition_closure(self, current, requested):
        command, actor = _command_for(requested)
        order = _order(current)
        if requested in ORDER_TRANSITIONS[current]:
            change = plan_transition(order, command, actor)
            assert change.status is requested
            assert change.from_status is current
        else:
            # Driver commands on an order with no driver fail the identity guard first
            with pytest.raises((InvalidTransition, Unauthorized)) as exc_info:
                plan_transition(order, command, actor)
            if isinstance(exc_info.value, InvalidTransition):
                assert exc_info.value.current is current
                assert exc_info.value.requested is requested
            else:
                assert order.driver_id is None
        # Planning never mutates the snapshot
        assert order.status is current
        assert len(order.history) == 1


class TestGuards:
    def test_identity_checked_before_table(self):
        # Wrong driver AND wrong timing: the identity error wins
        order = _order(OrderStatus.DELIVERED)
        with pytest.raises(Unauthorized):
            plan_transition(order, MarkArrived(), Driver(99))

    def test_unassigned_driver_cannot_push_status(self):
        with pytest.raises(Unauthorized):
            plan_transition(_order(OrderStatus.DRIVER_ASSIGNED), MarkArrived(), Driver(8))

    def test_customer_cannot_push_driver_status(self):
        with pytest.raises(Unauthorized):
            plan_transition(_order(OrderStatus.DRIVER_ASSIGNED), MarkArrived(), CUSTOMER)

    def test_other_customer_cannot_cancel(self):
        with pytest.raises(Unauthorized):
            plan_transition(_order(OrderStatus.PENDING), CancelOrder(), Customer(2))

    def test_driver_cannot_cancel(self):
        with pytest.raises(Unauthorized):
            plan_transition(_order(OrderStatus.DRIVER_ASSIGNED), CancelOrder(), DRIVER)

    def test_anonymous_rejected(self):
        with pytest.raises(Unauthorized):
            plan_transition(_order(OrderStatus.PENDING), CancelOrder(), ANONYMOUS)

    def test_system_may_cancel(self):
        change = plan_transition(
            _order(OrderStatus.PENDING), CancelOrder(reason="No drivers available"), System()
        )
        assert change.cancellation_reason == "No drivers available"

    def test_claim_only_for_yourself(self):
        with pytest.raises(Unauthorized):
            plan_transition(_order(OrderStatus.PENDING), AssignDriver(7), Driver(8))


class TestCommands:
    def test_assign_sets_driver_and_accepted_at(self):
        change = plan_transition(_order(OrderStatus.PENDING), AssignDriver(7), DRIVER)
        assert change.driver_id == 7
        assert change.expected_driver_id is None
        assert change.accepted_at is not None
        assert change.as_values()["status"] is OrderStatus.DRIVER_ASSIGNED

    def test_pickup_sets_picked_up_at_only(self):
        change = plan_transition(_order(OrderStatus.DRIVER_ARRIVED), CompletePickup(), DRIVER)
        values = change.as_values()
        assert "picked_up_at" in values
        assert "delivered_at" not in values
        assert values["driver_id"] == DRIVER.id

    def test_transit_records_position(self):
        position = Location(12.99, 77.61)
        change = plan_transition(
            _order(OrderStatus.PICKUP_COMPLETE), StartTransit(position=position), DRIVER
        )
        assert (change.entry.latitude, change.entry.longitude) == (12.99, 77.61)

    def test_delivery_increments_counter(self):
        change = plan_transition(_order(OrderStatus.IN_TRANSIT), MarkDelivered(), DRIVER)
        assert change.increments_deliveries
        assert change.delivered_at is not None

    def test_cancel_releases_driver(self):
        order = _order(OrderStatus.DRIVER_ARRIVED)
        change = plan_transition(order, CancelOrder(reason="late"), CUSTOMER)
        assert change.driver_id is None
        assert change.expected_driver_id == DRIVER.id
        assert "driver 7 released" in change.entry.note
        order.apply(change)
        order.check_invariants()
        assert order.cancelled_at is not None

    def test_apply_appends_history(self):
        order = _order(OrderStatus.PENDING)
        before = order.history
        order.apply(plan_transition(order, AssignDriver(7), DRIVER))
        assert order.history[: len(before)] == before
        assert len(order.history) == len(before) + 1
        assert order.history[-1].status is OrderStatus.DRIVER_ASSIGNED
        order.check_invariants()

    def test_invariant_catches_unbound_assigned_order(self):
        order = _order(OrderStatus.DRIVER_ASSIGNED)
        order.driver_id = None
        with pytest.raises(AssertionError):
            order.check_invariants()
