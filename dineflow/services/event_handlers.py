"""
Outbox event type -> handler registry used by the dispatcher.
"""

from dineflow.services import fanout, payments
from dineflow.services.outbox import (
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    PAYMENT_COMPLETED,
    PAYMENT_REFUND_REQUESTED,
)

EVENT_HANDLERS = {
    ORDER_CREATED: fanout.handle_order_created,
    ORDER_STATUS_CHANGED: fanout.handle_order_status_changed,
    PAYMENT_COMPLETED: fanout.handle_payment_completed,
    PAYMENT_REFUND_REQUESTED: payments.handle_refund_requested,
}
