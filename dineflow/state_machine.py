"""
Entity State Machines

One transition table per entity (Order, Payment, Delivery, Cancellation).
Every mutating path (caller updates, gateway webhooks, cancellation approval,
delivery updates) asks the same machine whether a move is allowed.

Version: 4.0.0
"""

from typing import Dict, FrozenSet, Generic, Optional, TypeVar

from dineflow.core.exceptions import StateConflictError
from dineflow.models import (
    CancellationStatus,
    DeliveryStatus,
    OrderStatus,
    PaymentStatus,
)

S = TypeVar("S")


class StateMachine(Generic[S]):
    """
    Transition table for one status enum.

    A state with no outgoing transitions is terminal. Moving to the current
    state is always allowed and is treated as a no-op by callers.
    """

    def __init__(self, name: str, transitions: Dict[S, FrozenSet[S]]):
        self.name = name
        self.transitions = transitions

    def is_terminal(self, state: S) -> bool:
        return not self.transitions.get(state)

    def can_transition(self, current: S, target: S) -> bool:
        if current == target:
            return True
        return target in self.transitions.get(current, frozenset())

    def ensure(self, current: S, target: S) -> None:
        """Raise ``StateConflictError`` if ``current -> target`` is not allowed."""
        if self.can_transition(current, target):
            return
        if self.is_terminal(current):
            raise StateConflictError(
                f"Cannot change status of {self.name} in terminal state {_label(current)}"
            )
        raise StateConflictError(
            f"Invalid {self.name} status transition from {_label(current)} to {_label(target)}"
        )


def _label(state) -> str:
    return getattr(state, "value", str(state))


# =============================================================================
# TRANSITION TABLES
# =============================================================================

# DELIVERED and CANCELLED are terminal; every other status may move to any
# status, backwards included.
ORDER_TERMINAL_STATES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

ORDER_MACHINE: StateMachine[OrderStatus] = StateMachine(
    "order",
    {
        status: (
            frozenset()
            if status in ORDER_TERMINAL_STATES
            else frozenset(s for s in OrderStatus if s != status)
        )
        for status in OrderStatus
    },
)

PAYMENT_MACHINE: StateMachine[PaymentStatus] = StateMachine(
    "payment",
    {
        PaymentStatus.PENDING: frozenset({
            PaymentStatus.AUTHORIZED,
            PaymentStatus.PAID,
            PaymentStatus.FAILED,
        }),
        PaymentStatus.AUTHORIZED: frozenset({
            PaymentStatus.PAID,
            PaymentStatus.FAILED,
            PaymentStatus.REFUNDED,
        }),
        PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
        PaymentStatus.FAILED: frozenset(),
        PaymentStatus.REFUNDED: frozenset(),
    },
)

# Forward skips are allowed (a driver may be recorded as already in transit);
# FAILED is reachable from every non-terminal state.
DELIVERY_MACHINE: StateMachine[DeliveryStatus] = StateMachine(
    "delivery",
    {
        DeliveryStatus.PENDING: frozenset({
            DeliveryStatus.ASSIGNED,
            DeliveryStatus.IN_TRANSIT,
            DeliveryStatus.DELIVERED,
            DeliveryStatus.FAILED,
        }),
        DeliveryStatus.ASSIGNED: frozenset({
            DeliveryStatus.IN_TRANSIT,
            DeliveryStatus.DELIVERED,
            DeliveryStatus.FAILED,
        }),
        DeliveryStatus.IN_TRANSIT: frozenset({
            DeliveryStatus.DELIVERED,
            DeliveryStatus.FAILED,
        }),
        DeliveryStatus.DELIVERED: frozenset(),
        DeliveryStatus.FAILED: frozenset(),
    },
)

CANCELLATION_MACHINE: StateMachine[CancellationStatus] = StateMachine(
    "cancellation",
    {
        CancellationStatus.REQUESTED: frozenset({
            CancellationStatus.APPROVED,
            CancellationStatus.REJECTED,
        }),
        CancellationStatus.APPROVED: frozenset(),
        CancellationStatus.REJECTED: frozenset(),
    },
)


# Order status -> delivery status applied when an order with a delivery moves
ORDER_TO_DELIVERY_STATUS: Dict[OrderStatus, DeliveryStatus] = {
    OrderStatus.PREPARING: DeliveryStatus.PENDING,
    OrderStatus.SHIPPED: DeliveryStatus.ASSIGNED,
    OrderStatus.DELIVERED: DeliveryStatus.DELIVERED,
    OrderStatus.CANCELLED: DeliveryStatus.FAILED,
}


def delivery_status_for(order_status: OrderStatus) -> Optional[DeliveryStatus]:
    """Delivery status implied by an order status, or None to leave it alone."""
    return ORDER_TO_DELIVERY_STATUS.get(order_status)
