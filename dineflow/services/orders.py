"""
Order Workflow

Creation validates and prices every line, then persists the order, its
items, the inventory debit, the delivery row, the CREATE audit entry and the
notification events in a single transaction.

Status updates go through ``ORDER_MACHINE``; terminal orders (DELIVERED,
CANCELLED) reject any change. Every status change keeps the delivery row in
step and emits an ``order.status_changed`` event for the fan-out.

Version: 4.0.0
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.config import get_settings
from dineflow.core.exceptions import NotFoundError, ValidationError
from dineflow.services import catalog, inventory
from dineflow.services.audit import append_audit
from dineflow.services.cart import unit_price as current_unit_price
from dineflow.services.outbox import ORDER_CREATED, ORDER_STATUS_CHANGED, enqueue_event
from dineflow.state_machine import DELIVERY_MACHINE, ORDER_MACHINE, delivery_status_for

logger = logging.getLogger(__name__)

UNAVAILABLE_STOCK = (models.StockStatus.OUT_OF_STOCK, models.StockStatus.DISCONTINUED)
MAX_PAGE_SIZE = 100


# =============================================================================
# PRICING
# =============================================================================

def calculate_order_totals(
    lines: Iterable[tuple[float, int]],
    order_type: models.OrderType,
    *,
    tax_rate_percent: float,
    delivery_fee: float,
    discount: float = 0.0,
) -> dict:
    """
    Derive order totals from (unit_price, quantity) pairs.

    Example:
        >>> calculate_order_totals([(12.5, 2)], models.OrderType.DELIVERY,
        ...                        tax_rate_percent=10, delivery_fee=5)
        {'subtotal': 25.0, 'tax': 2.5, 'delivery_fee': 5.0, 'discount': 0.0, 'total': 32.5}
    """
    subtotal = sum(price * quantity for price, quantity in lines)
    tax = subtotal * tax_rate_percent / 100
    fee = delivery_fee if order_type == models.OrderType.DELIVERY else 0.0
    total = subtotal + tax + fee - discount

    return {
        "subtotal": round(subtotal, 2),
        "tax": round(tax, 2),
        "delivery_fee": round(fee, 2),
        "discount": round(discount, 2),
        "total": round(total, 2),
    }


# =============================================================================
# LOOKUPS
# =============================================================================

async def get_order(session: AsyncSession, order_id: str) -> models.Order:
    """Load an order with items and delivery, refreshing any cached copy."""
    order = await session.get(models.Order, order_id, populate_existing=True)
    if order is None:
        raise NotFoundError(f"Order with ID {order_id} not found")
    return order


async def list_orders(
    session: AsyncSession,
    filters: dict,
    *,
    page: int = 1,
    limit: int = 20,
) -> tuple[Sequence[models.Order], int]:
    """
    List orders matching already-authorized filters.

    Recognized keys: user_id, restaurant_id, restaurant_ids, status,
    payment_status, order_type.
    """
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError("Invalid pagination parameters")

    stmt = select(models.Order)
    if filters.get("user_id"):
        stmt = stmt.where(models.Order.user_id == filters["user_id"])
    if filters.get("restaurant_id"):
        stmt = stmt.where(models.Order.restaurant_id == filters["restaurant_id"])
    if filters.get("restaurant_ids"):
        stmt = stmt.where(models.Order.restaurant_id.in_(filters["restaurant_ids"]))
    if filters.get("status"):
        stmt = stmt.where(models.Order.status == filters["status"])
    if filters.get("payment_status"):
        stmt = stmt.where(models.Order.payment_status == filters["payment_status"])
    if filters.get("order_type"):
        stmt = stmt.where(models.Order.order_type == filters["order_type"])

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    rows = await session.scalars(
        stmt.order_by(models.Order.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return rows.all(), total or 0


# =============================================================================
# CREATE
# =============================================================================

async def _check_inventory(
    session: AsyncSession,
    menu_item: models.MenuItem,
    variant_id: Optional[str],
    quantity: int,
    strict: bool,
) -> None:
    """Advisory unless STRICT_INVENTORY_CHECK is on; untracked items always pass."""
    try:
        # Savepoint keeps the loaded restaurant and menu items usable on failure
        async with session.begin_nested():
            stock = await inventory.get_inventory_by_menu_item(session, menu_item.id, variant_id)
    except SQLAlchemyError as e:
        logger.warning(f"Inventory check failed for {menu_item.id}, continuing: {e}")
        return

    if stock is None or stock.quantity >= quantity:
        return

    message = (
        f"Insufficient inventory for {menu_item.title}: "
        f"requested {quantity}, available {stock.quantity}"
    )
    if strict:
        raise ValidationError(message)
    logger.warning(message)


async def _validate_line(
    session: AsyncSession,
    restaurant: models.Restaurant,
    line: schemas.OrderItemCreate,
    strict_inventory: bool,
) -> tuple[models.MenuItem, float]:
    """Validate one order line and return (menu_item, current unit price)."""
    menu_item = await catalog.find_menu_item_by_id(session, line.menu_item_id)
    if menu_item is None:
        raise NotFoundError(f"Menu item with ID {line.menu_item_id} not found")
    if not menu_item.is_active:
        raise ValidationError(f"Menu item {menu_item.title} is not available")
    if menu_item.restaurant_id != restaurant.id:
        raise ValidationError(f"Menu item {menu_item.title} does not belong to this restaurant")
    if menu_item.stock_status in UNAVAILABLE_STOCK:
        raise ValidationError(f"Menu item {menu_item.title} is out of stock")

    variant = None
    if line.variant_id:
        variant = await catalog.find_variant_by_id(session, line.variant_id)
        if variant is None or variant.menu_item_id != menu_item.id or not variant.is_active:
            raise NotFoundError(f"Variant with ID {line.variant_id} not found for {menu_item.title}")

    if line.quantity < menu_item.min_order_quantity:
        raise ValidationError(
            f"Minimum order quantity for {menu_item.title} is {menu_item.min_order_quantity}"
        )
    if menu_item.max_order_quantity is not None and line.quantity > menu_item.max_order_quantity:
        raise ValidationError(
            f"Maximum order quantity for {menu_item.title} is {menu_item.max_order_quantity}"
        )

    await _check_inventory(session, menu_item, line.variant_id, line.quantity, strict_inventory)

    # Client-supplied unit prices are ignored
    return menu_item, current_unit_price(menu_item, variant)


async def create_order(
    session: AsyncSession,
    payload: schemas.OrderCreate,
    user_id: str,
    tenant_id: Optional[str] = None,
) -> models.Order:
    """
    Validate, price and persist a new order.

    Raises:
        NotFoundError: Restaurant, menu item or variant does not exist
        ValidationError: Inactive restaurant/item, out of stock, quantity bounds
    """
    settings = get_settings()
    tenant_id = tenant_id or settings.default_tenant_id

    restaurant = await catalog.find_restaurant_by_id(session, payload.restaurant_id)
    if restaurant is None:
        raise NotFoundError(f"Restaurant with ID {payload.restaurant_id} not found")
    if not restaurant.is_active:
        raise ValidationError(f"Restaurant {restaurant.name} is not accepting orders")

    priced_lines = []
    for line in payload.items:
        menu_item, unit_price = await _validate_line(
            session, restaurant, line, settings.strict_inventory_check
        )
        priced_lines.append((line, menu_item, unit_price))

    totals = calculate_order_totals(
        [(unit_price, line.quantity) for line, _, unit_price in priced_lines],
        payload.order_type,
        tax_rate_percent=settings.tax_rate_percent,
        delivery_fee=settings.delivery_fee,
    )

    # ==========================================================================
    # UNIT OF WORK: everything below commits together
    # ==========================================================================
    order = models.Order(
        user_id=user_id,
        restaurant_id=restaurant.id,
        tenant_id=tenant_id,
        correlation_id=models.new_id(),
        order_type=payload.order_type,
        delivery_address=payload.delivery_address,
        delivery_instructions=payload.delivery_instructions,
        notes=payload.notes,
        priority=payload.priority,
        source=payload.source,
        status=models.OrderStatus.PENDING,
        payment_status=models.PaymentStatus.PENDING,
        **totals,
    )
    session.add(order)
    await session.flush()

    for line, _, unit_price in priced_lines:
        session.add(models.OrderItem(
            order_id=order.id,
            menu_item_id=line.menu_item_id,
            variant_id=line.variant_id,
            quantity=line.quantity,
            unit_price=unit_price,
            subtotal=round(unit_price * line.quantity, 2),
            notes=line.notes,
        ))

    for line, _, _ in priced_lines:
        debited = await inventory.apply_adjustment(
            session,
            line.menu_item_id,
            -line.quantity,
            line.variant_id,
            reason="ORDER_PLACED",
            notes=f"Order {order.id}",
        )
        if debited is None:
            logger.debug(f"Menu item {line.menu_item_id} has no inventory row, nothing debited")

    if payload.order_type == models.OrderType.DELIVERY:
        session.add(models.Delivery(
            order_id=order.id,
            tenant_id=tenant_id,
            status=models.DeliveryStatus.PENDING,
        ))

    append_audit(
        session,
        order.id,
        "CREATE",
        user_id,
        {"status": models.OrderStatus.PENDING.value, "total": totals["total"], "itemCount": len(priced_lines)},
    )

    customer = await catalog.find_user_by_id(session, user_id)
    enqueue_event(
        session,
        event_type=ORDER_CREATED,
        aggregate_id=order.id,
        payload={
            "order_id": order.id,
            "user_id": user_id,
            "restaurant_id": restaurant.id,
            "owner_id": restaurant.owner_id,
            "tenant_id": tenant_id,
            "total": totals["total"],
            "customer_name": customer.display_name if customer else "Customer",
        },
    )

    await session.commit()

    logger.info(
        f"Order created: {order.id} - {payload.order_type.value} - "
        f"{len(priced_lines)} lines - ${totals['total']:.2f}"
    )

    for menu_item_id in {line.menu_item_id for line, _, _ in priced_lines}:
        await inventory.sync_menu_item_stock_status(session, menu_item_id)

    return await get_order(session, order.id)


# =============================================================================
# STATUS CHANGES
# =============================================================================

def _sync_delivery(order: models.Order, new_status: models.OrderStatus, now: datetime) -> None:
    """Move the delivery row along with the order when the mapping allows it."""
    delivery = order.delivery
    if delivery is None:
        return

    target = delivery_status_for(new_status)
    if target is None or target == delivery.status:
        return
    if not DELIVERY_MACHINE.can_transition(delivery.status, target):
        logger.info(
            f"Delivery {delivery.id} left at {delivery.status.value}; "
            f"order {order.id} moved to {new_status.value}"
        )
        return

    delivery.status = target
    if target == models.DeliveryStatus.ASSIGNED and delivery.assigned_at is None:
        delivery.assigned_at = now
    elif target == models.DeliveryStatus.DELIVERED:
        delivery.completed_at = now


def change_order_status(
    session: AsyncSession,
    order: models.Order,
    new_status: models.OrderStatus,
    *,
    notify: bool = True,
) -> Optional[models.OrderStatus]:
    """
    Apply a status transition already allowed by ``ORDER_MACHINE``.

    Syncs the delivery, stamps the actual delivery time and, unless
    ``notify`` is off, stages the ``order.status_changed`` event. Returns the
    previous status, or None when the status did not change. The caller
    commits.
    """
    old_status = order.status
    if new_status == old_status:
        return None
    ORDER_MACHINE.ensure(old_status, new_status)

    now = models.utcnow()
    order.status = new_status
    if new_status == models.OrderStatus.DELIVERED:
        order.actual_delivery_time = now
    _sync_delivery(order, new_status, now)

    if not notify:
        return old_status

    estimated = order.estimated_delivery_time
    enqueue_event(
        session,
        event_type=ORDER_STATUS_CHANGED,
        aggregate_id=order.id,
        payload={
            "order_id": order.id,
            "user_id": order.user_id,
            "restaurant_id": order.restaurant_id,
            "tenant_id": order.tenant_id,
            "order_type": order.order_type.value,
            "old_status": old_status.value,
            "new_status": new_status.value,
            "estimated_delivery_time": estimated.isoformat() if estimated else None,
            "changed_at": now.isoformat(),
        },
    )
    return old_status


def apply_order_update(
    session: AsyncSession,
    order: models.Order,
    payload: schemas.OrderUpdate,
    changed_by: Optional[str],
) -> dict:
    """
    Apply a partial update in the caller's transaction.

    Returns the audited diff ({field: {"from", "to"}}); empty when nothing
    audited changed.

    Raises:
        StateConflictError: Status change on a terminal order or a disallowed transition
    """
    changes = payload.model_dump(exclude_unset=True)
    new_status = changes.get("status")

    # Validate before touching anything
    if new_status is not None and new_status != order.status:
        ORDER_MACHINE.ensure(order.status, new_status)

    diff = {}
    for field in ("notes", "priority"):
        if field in changes and changes[field] != getattr(order, field):
            diff[field] = {"from": getattr(order, field), "to": changes[field]}
            setattr(order, field, changes[field])

    if "estimated_delivery_time" in changes:
        order.estimated_delivery_time = changes["estimated_delivery_time"]

    if new_status is not None:
        old_status = change_order_status(session, order, new_status)
        if old_status is not None:
            diff["status"] = {"from": old_status.value, "to": new_status.value}

    if diff:
        append_audit(session, order.id, "UPDATE", changed_by, diff)
    return diff


async def update_order(
    session: AsyncSession,
    order_id: str,
    payload: schemas.OrderUpdate,
    changed_by: Optional[str],
) -> models.Order:
    order = await get_order(session, order_id)
    diff = apply_order_update(session, order, payload, changed_by)
    await session.commit()

    if "status" in diff:
        logger.info(f"Order {order_id} status {diff['status']['from']} -> {diff['status']['to']}")
    return await get_order(session, order_id)
