from __future__ import annotations

import pytest

from dineflow.core.exceptions import StateConflictError
from dineflow.models import CancellationStatus, DeliveryStatus, OrderStatus, PaymentStatus
from dineflow.state_machine import (
    CANCELLATION_MACHINE,
    DELIVERY_MACHINE,
    ORDER_MACHINE,
    PAYMENT_MACHINE,
    delivery_status_for,
)


def test_order_terminal_states() -> None:
    assert ORDER_MACHINE.is_terminal(OrderStatus.DELIVERED)
    assert ORDER_MACHINE.is_terminal(OrderStatus.CANCELLED)
    assert not ORDER_MACHINE.is_terminal(OrderStatus.REFUNDED)
    assert not ORDER_MACHINE.is_terminal(OrderStatus.PENDING)


def test_order_allows_any_move_between_open_states() -> None:
    assert ORDER_MACHINE.can_transition(OrderStatus.PENDING, OrderStatus.PREPARING)
    assert ORDER_MACHINE.can_transition(OrderStatus.PREPARING, OrderStatus.SHIPPED)
    assert ORDER_MACHINE.can_transition(OrderStatus.SHIPPED, OrderStatus.DELIVERED)
    assert ORDER_MACHINE.can_transition(OrderStatus.SHIPPED, OrderStatus.CANCELLED)
    assert ORDER_MACHINE.can_transition(OrderStatus.REFUNDED, OrderStatus.CANCELLED)
    assert ORDER_MACHINE.can_transition(OrderStatus.SHIPPED, OrderStatus.PREPARING)
    assert ORDER_MACHINE.can_transition(OrderStatus.PREPARING, OrderStatus.PENDING)


def test_same_state_is_allowed() -> None:
    assert ORDER_MACHINE.can_transition(OrderStatus.CANCELLED, OrderStatus.CANCELLED)
    ORDER_MACHINE.ensure(OrderStatus.DELIVERED, OrderStatus.DELIVERED)


def test_ensure_names_terminal_state() -> None:
    with pytest.raises(StateConflictError) as exc_info:
        ORDER_MACHINE.ensure(OrderStatus.CANCELLED, OrderStatus.PREPARING)
    assert "terminal state CANCELLED" in exc_info.value.message
    assert exc_info.value.status_code == 409


def test_ensure_names_invalid_transition() -> None:
    with pytest.raises(StateConflictError) as exc_info:
        DELIVERY_MACHINE.ensure(DeliveryStatus.IN_TRANSIT, DeliveryStatus.ASSIGNED)
    assert "from IN_TRANSIT to ASSIGNED" in exc_info.value.message


def test_payment_success_is_final_except_refund() -> None:
    assert PAYMENT_MACHINE.can_transition(PaymentStatus.PENDING, PaymentStatus.PAID)
    assert PAYMENT_MACHINE.can_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)
    assert not PAYMENT_MACHINE.can_transition(PaymentStatus.PAID, PaymentStatus.FAILED)
    assert not PAYMENT_MACHINE.can_transition(PaymentStatus.FAILED, PaymentStatus.PAID)


def test_delivery_allows_forward_skips() -> None:
    assert DELIVERY_MACHINE.can_transition(DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT)
    assert DELIVERY_MACHINE.can_transition(DeliveryStatus.ASSIGNED, DeliveryStatus.DELIVERED)
    assert not DELIVERY_MACHINE.can_transition(DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)
    assert not DELIVERY_MACHINE.can_transition(DeliveryStatus.IN_TRANSIT, DeliveryStatus.ASSIGNED)


def test_cancellation_is_decided_once() -> None:
    assert CANCELLATION_MACHINE.can_transition(CancellationStatus.REQUESTED, CancellationStatus.APPROVED)
    assert not CANCELLATION_MACHINE.can_transition(CancellationStatus.REJECTED, CancellationStatus.APPROVED)


def test_delivery_status_for_order_status() -> None:
    assert delivery_status_for(OrderStatus.SHIPPED) == DeliveryStatus.ASSIGNED
    assert delivery_status_for(OrderStatus.DELIVERED) == DeliveryStatus.DELIVERED
    assert delivery_status_for(OrderStatus.CANCELLED) == DeliveryStatus.FAILED
    assert delivery_status_for(OrderStatus.PENDING) is None
