"""
Deliveries

Delivery rows are created with DELIVERY orders and can also be opened
explicitly. Status changes follow ``DELIVERY_MACHINE`` and stamp their
timestamps; a delivered delivery completes the order through the regular
order update path.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from dineflow.services.orders import apply_order_update, get_order
from dineflow.state_machine import DELIVERY_MACHINE, ORDER_MACHINE

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


async def get_delivery(session: AsyncSession, delivery_id: str) -> models.Delivery:
    delivery = await session.get(models.Delivery, delivery_id, populate_existing=True)
    if delivery is None:
        raise NotFoundError(f"Delivery with ID {delivery_id} not found")
    return delivery


async def list_deliveries(
    session: AsyncSession,
    filters: dict,
    *,
    page: int = 1,
    limit: int = 20,
) -> tuple[Sequence[models.Delivery], int]:
    """List deliveries; filters come from ``apply_delivery_filters``."""
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError("Invalid pagination parameters")

    stmt = select(models.Delivery)
    if filters.get("driver_id"):
        stmt = stmt.where(models.Delivery.driver_id == filters["driver_id"])
    if filters.get("status"):
        stmt = stmt.where(models.Delivery.status == filters["status"])
    if filters.get("order_id"):
        stmt = stmt.where(models.Delivery.order_id == filters["order_id"])
    if filters.get("restaurant_ids") or filters.get("user_id"):
        stmt = stmt.join(models.Order, models.Order.id == models.Delivery.order_id)
        if filters.get("restaurant_ids"):
            stmt = stmt.where(models.Order.restaurant_id.in_(filters["restaurant_ids"]))
        if filters.get("user_id"):
            stmt = stmt.where(models.Order.user_id == filters["user_id"])

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    rows = await session.scalars(
        stmt.order_by(models.Delivery.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return rows.all(), total or 0


async def create_delivery(session: AsyncSession, payload: schemas.DeliveryCreate) -> models.Delivery:
    order = await get_order(session, payload.order_id)
    if order.delivery is not None:
        raise StateConflictError(f"Order {order.id} already has a delivery")
    if ORDER_MACHINE.is_terminal(order.status):
        raise StateConflictError(f"Cannot create a delivery for a {order.status.value} order")

    now = models.utcnow()
    delivery = models.Delivery(
        order_id=order.id,
        tenant_id=order.tenant_id,
        driver_id=payload.driver_id,
        status=models.DeliveryStatus.ASSIGNED if payload.driver_id else models.DeliveryStatus.PENDING,
        assigned_at=now if payload.driver_id else None,
    )
    session.add(delivery)
    await session.commit()

    logger.info(f"Delivery {delivery.id} created for order {order.id}")
    return await get_delivery(session, delivery.id)


def _stamp(delivery: models.Delivery, status: models.DeliveryStatus) -> None:
    now = models.utcnow()
    if status == models.DeliveryStatus.ASSIGNED and delivery.assigned_at is None:
        delivery.assigned_at = now
    elif status == models.DeliveryStatus.IN_TRANSIT:
        delivery.picked_up_at = now
    elif status in (models.DeliveryStatus.DELIVERED, models.DeliveryStatus.FAILED):
        delivery.completed_at = now


async def update_delivery(
    session: AsyncSession,
    delivery_id: str,
    payload: schemas.DeliveryUpdate,
    changed_by: Optional[str] = None,
) -> models.Delivery:
    """
    Assign a driver and/or move the delivery along.

    Raises:
        StateConflictError: Transition not allowed, or the order cannot be delivered
    """
    delivery = await get_delivery(session, delivery_id)
    new_status = payload.status

    if payload.driver_id is not None and payload.driver_id != delivery.driver_id:
        delivery.driver_id = payload.driver_id
        if new_status is None and delivery.status == models.DeliveryStatus.PENDING:
            new_status = models.DeliveryStatus.ASSIGNED

    if new_status is not None and new_status != delivery.status:
        DELIVERY_MACHINE.ensure(delivery.status, new_status)

        if new_status == models.DeliveryStatus.DELIVERED:
            await session.flush()
            order = await get_order(session, delivery.order_id)
            apply_order_update(
                session,
                order,
                schemas.OrderUpdate(status=models.OrderStatus.DELIVERED),
                changed_by,
            )

        delivery.status = new_status
        _stamp(delivery, new_status)
        logger.info(f"Delivery {delivery_id} -> {new_status.value}")

    await session.commit()
    return await get_delivery(session, delivery_id)
