"""
Order Cancellations

Customers (or staff) request a cancellation with a reason; the restaurant
side approves or rejects it. Approval cancels the order, credits the
ordered quantities back to inventory and, for paid orders, queues a refund.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models
from dineflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from dineflow.services import inventory
from dineflow.services.audit import SYSTEM_ACTOR, append_audit
from dineflow.services.orders import change_order_status, get_order
from dineflow.services.outbox import PAYMENT_REFUND_REQUESTED, enqueue_event
from dineflow.state_machine import CANCELLATION_MACHINE, ORDER_MACHINE

logger = logging.getLogger(__name__)

NOT_CANCELLABLE = (models.OrderStatus.DELIVERED, models.OrderStatus.CANCELLED)
MAX_PAGE_SIZE = 100


async def get_cancellation(session: AsyncSession, cancellation_id: str) -> models.OrderCancellation:
    cancellation = await session.get(models.OrderCancellation, cancellation_id, populate_existing=True)
    if cancellation is None:
        raise NotFoundError(f"Cancellation with ID {cancellation_id} not found")
    return cancellation


async def list_cancellations(
    session: AsyncSession,
    filters: dict,
    *,
    page: int = 1,
    limit: int = 20,
) -> tuple[Sequence[models.OrderCancellation], int]:
    """List cancellations; filters come from ``apply_cancellation_filters``."""
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError("Invalid pagination parameters")

    stmt = select(models.OrderCancellation)
    if filters.get("requested_by"):
        stmt = stmt.where(models.OrderCancellation.requested_by == filters["requested_by"])
    if filters.get("order_id"):
        stmt = stmt.where(models.OrderCancellation.order_id == filters["order_id"])
    if filters.get("status"):
        stmt = stmt.where(models.OrderCancellation.status == filters["status"])
    if filters.get("restaurant_ids"):
        stmt = stmt.join(models.Order, models.Order.id == models.OrderCancellation.order_id).where(
            models.Order.restaurant_id.in_(filters["restaurant_ids"])
        )

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    rows = await session.scalars(
        stmt.order_by(models.OrderCancellation.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return rows.all(), total or 0


async def create_cancellation(
    session: AsyncSession,
    order_id: str,
    reason: str,
    requested_by: str,
) -> models.OrderCancellation:
    """
    Open a cancellation request.

    Raises:
        NotFoundError: Unknown order
        StateConflictError: Order already delivered or cancelled
        ValidationError: Blank reason
    """
    order = await get_order(session, order_id)
    if order.status in NOT_CANCELLABLE:
        raise StateConflictError(f"Cannot cancel order in {order.status.value} state")
    if not reason or not reason.strip():
        raise ValidationError("Cancellation reason is required")

    if order.payment_status == models.PaymentStatus.PAID:
        logger.warning(f"Cancellation requested for paid order {order_id}; approval will trigger a refund")

    cancellation = models.OrderCancellation(
        order_id=order_id,
        requested_by=requested_by,
        reason=reason.strip(),
        status=models.CancellationStatus.REQUESTED,
    )
    session.add(cancellation)
    await session.commit()

    logger.info(f"Cancellation {cancellation.id} requested for order {order_id} by {requested_by}")
    return await get_cancellation(session, cancellation.id)


async def _credit_inventory(session: AsyncSession, order: models.Order) -> set[str]:
    credited = set()
    for item in order.items:
        row = await inventory.apply_adjustment(
            session,
            item.menu_item_id,
            item.quantity,
            item.variant_id,
            reason="ORDER_CANCELLED",
            notes=f"Order {order.id}",
        )
        if row is not None:
            credited.add(item.menu_item_id)
    return credited


async def update_cancellation(
    session: AsyncSession,
    cancellation_id: str,
    status: models.CancellationStatus,
    approved_by: Optional[str] = None,
) -> models.OrderCancellation:
    """
    Approve or reject a cancellation request.

    Raises:
        StateConflictError: Request already decided, or the order can no longer be cancelled
    """
    cancellation = await get_cancellation(session, cancellation_id)
    if cancellation.status == status:
        return cancellation
    CANCELLATION_MACHINE.ensure(cancellation.status, status)

    credited: set[str] = set()
    if status == models.CancellationStatus.APPROVED:
        order = await get_order(session, cancellation.order_id)
        ORDER_MACHINE.ensure(order.status, models.OrderStatus.CANCELLED)

        old_status = order.status
        change_order_status(session, order, models.OrderStatus.CANCELLED)
        order.cancel_reason = cancellation.reason
        append_audit(
            session,
            order.id,
            "CANCELLED",
            approved_by or SYSTEM_ACTOR,
            {
                "status": {"from": old_status.value, "to": models.OrderStatus.CANCELLED.value},
                "reason": cancellation.reason,
                "cancellationId": cancellation.id,
            },
        )
        credited = await _credit_inventory(session, order)

        if order.payment_status == models.PaymentStatus.PAID:
            enqueue_event(
                session,
                event_type=PAYMENT_REFUND_REQUESTED,
                aggregate_id=order.id,
                payload={"order_id": order.id, "reason": "requested_by_customer"},
            )

    cancellation.status = status
    cancellation.approved_by = approved_by
    await session.commit()

    logger.info(f"Cancellation {cancellation_id} {status.value} by {approved_by or SYSTEM_ACTOR}")

    for menu_item_id in credited:
        await inventory.sync_menu_item_stock_status(session, menu_item_id)
    return await get_cancellation(session, cancellation_id)
