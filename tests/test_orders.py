from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from dineflow.services import audit, inventory, orders, outbox


def test_totals_for_delivery_order() -> None:
    totals = orders.calculate_order_totals(
        [(10.00, 2), (5.00, 1)],
        models.OrderType.DELIVERY,
        tax_rate_percent=10,
        delivery_fee=5.00,
    )
    assert totals == {"subtotal": 25.0, "tax": 2.5, "delivery_fee": 5.0, "discount": 0.0, "total": 32.5}


def test_pickup_orders_have_no_delivery_fee() -> None:
    totals = orders.calculate_order_totals(
        [(3.33, 3)], models.OrderType.PICKUP, tax_rate_percent=8.875, delivery_fee=5.00
    )
    assert totals["delivery_fee"] == 0.0
    assert totals["subtotal"] == 9.99
    assert totals["total"] == round(9.99 + 9.99 * 8.875 / 100, 2)


async def test_create_order_persists_unit_of_work(session, seed, place_order) -> None:
    order = await place_order()

    assert order.status == models.OrderStatus.PENDING
    assert order.payment_status == models.PaymentStatus.PENDING
    assert (order.subtotal, order.tax, order.delivery_fee, order.total) == (25.0, 2.5, 5.0, 32.5)
    assert order.correlation_id
    assert sorted((item.unit_price, item.quantity) for item in order.items) == [(5.0, 1), (10.0, 2)]
    assert order.delivery is not None
    assert order.delivery.status == models.DeliveryStatus.PENDING

    pizza_stock = await inventory.get_inventory_by_menu_item(session, seed.pizza.id)
    salad_stock = await inventory.get_inventory_by_menu_item(session, seed.salad.id)
    assert pizza_stock.quantity == 48
    assert salad_stock.quantity == 49
    assert pizza_stock.last_adjustment_reason == "ORDER_PLACED"

    entries = await audit.list_audits(session, order.id)
    assert [entry.operation for entry in entries] == ["CREATE"]
    assert entries[0].changed_by == seed.customer.id
    assert entries[0].changes == {"status": "PENDING", "total": 32.5, "itemCount": 2}

    events = await outbox.list_outbox_events(session, aggregate_id=order.id)
    assert [event.event_type for event in events] == [outbox.ORDER_CREATED]
    assert events[0].payload["owner_id"] == seed.owner.id
    assert events[0].payload["customer_name"] == "Jane"


async def test_pickup_order_has_no_delivery(place_order) -> None:
    order = await place_order(models.OrderType.PICKUP)

    assert order.delivery is None
    assert order.delivery_fee == 0.0
    assert order.total == 27.5


async def test_client_unit_price_is_ignored(session, seed) -> None:
    payload = schemas.OrderCreate(
        restaurant_id=seed.restaurant.id,
        order_type=models.OrderType.PICKUP,
        items=[schemas.OrderItemCreate(menu_item_id=seed.pizza.id, quantity=1, unit_price=0.01)],
    )
    order = await orders.create_order(session, payload, seed.customer.id)

    assert order.items[0].unit_price == 10.0


async def test_out_of_stock_item_is_rejected(session, seed, place_order) -> None:
    seed.salad.stock_status = models.StockStatus.OUT_OF_STOCK
    await session.commit()

    with pytest.raises(ValidationError, match="out of stock"):
        await place_order()

    rows, total = await orders.list_orders(session, {})
    assert total == 0


async def test_quantity_bounds_are_enforced(seed, place_order) -> None:
    with pytest.raises(ValidationError, match="Maximum order quantity"):
        await place_order(items=[(seed.pizza, 11)])


async def test_item_from_other_restaurant_is_rejected(session, seed, place_order) -> None:
    other = models.Restaurant(name="Burger Barn", owner_id=seed.outsider.id)
    session.add(other)
    await session.flush()
    burger = models.MenuItem(restaurant_id=other.id, title="Cheeseburger", final_price=9.0)
    session.add(burger)
    await session.commit()

    with pytest.raises(ValidationError, match="does not belong"):
        await place_order(items=[(burger, 1)])


async def test_inactive_restaurant_does_not_accept_orders(session, seed, place_order) -> None:
    seed.restaurant.is_active = False
    await session.commit()

    with pytest.raises(ValidationError, match="not accepting orders"):
        await place_order()


async def test_insufficient_stock_is_advisory(session, seed, place_order) -> None:
    seed.pizza_stock.quantity = 1
    await session.commit()

    order = await place_order(items=[(seed.pizza, 3)])

    assert order.status == models.OrderStatus.PENDING
    row = await inventory.get_inventory_by_menu_item(session, seed.pizza.id)
    assert row.quantity == 0
    assert row.status == models.InventoryStatus.OUT_OF_STOCK


async def test_failed_inventory_lookup_does_not_block_order(session, seed, place_order, monkeypatch) -> None:
    lookup = inventory.get_inventory_by_menu_item

    async def unreachable_for_reads(db_session, menu_item_id, variant_id=None, *, for_update=False):
        if not for_update:
            raise OperationalError("SELECT inventory", {}, Exception("connection reset"))
        return await lookup(db_session, menu_item_id, variant_id, for_update=for_update)

    monkeypatch.setattr(inventory, "get_inventory_by_menu_item", unreachable_for_reads)

    order = await place_order()

    assert order.status == models.OrderStatus.PENDING
    assert order.total == 32.5
    row = await lookup(session, seed.pizza.id)
    assert row.quantity == 48


async def test_update_status_syncs_delivery_and_audits(session, seed, place_order) -> None:
    order = await place_order()

    order = await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.SHIPPED), seed.owner.id
    )

    assert order.status == models.OrderStatus.SHIPPED
    assert order.delivery.status == models.DeliveryStatus.ASSIGNED
    assert order.delivery.assigned_at is not None

    entries = await audit.list_audits(session, order.id)
    assert entries[-1].operation == "UPDATE"
    assert entries[-1].changes == {"status": {"from": "PENDING", "to": "SHIPPED"}}

    events = await outbox.list_outbox_events(session, aggregate_id=order.id)
    changed = [event for event in events if event.event_type == outbox.ORDER_STATUS_CHANGED]
    assert changed[0].payload["old_status"] == "PENDING"
    assert changed[0].payload["new_status"] == "SHIPPED"


async def test_noop_update_writes_no_audit(session, seed, place_order) -> None:
    order = await place_order()

    await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.PENDING), seed.owner.id
    )

    entries = await audit.list_audits(session, order.id)
    assert [entry.operation for entry in entries] == ["CREATE"]


async def test_cancelled_order_rejects_status_change(session, seed, place_order) -> None:
    order = await place_order()
    await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.CANCELLED), seed.owner.id
    )
    audits_before = len(await audit.list_audits(session, order.id))

    with pytest.raises(StateConflictError, match="terminal state CANCELLED"):
        await orders.update_order(
            session, order.id, schemas.OrderUpdate(status=models.OrderStatus.PREPARING), seed.owner.id
        )

    assert len(await audit.list_audits(session, order.id)) == audits_before
    reloaded = await orders.get_order(session, order.id)
    assert reloaded.status == models.OrderStatus.CANCELLED


async def test_open_order_can_move_backwards(session, seed, place_order) -> None:
    order = await place_order()
    await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.SHIPPED), seed.owner.id
    )

    order = await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.PREPARING), seed.owner.id
    )

    assert order.status == models.OrderStatus.PREPARING
    entries = await audit.list_audits(session, order.id)
    assert entries[-1].changes == {"status": {"from": "SHIPPED", "to": "PREPARING"}}


async def test_notes_and_priority_are_audited(session, seed, place_order) -> None:
    order = await place_order()

    order = await orders.update_order(
        session, order.id, schemas.OrderUpdate(notes="No onions", priority="HIGH"), seed.staff.id
    )

    assert order.notes == "No onions"
    assert order.priority == "HIGH"
    entries = await audit.list_audits(session, order.id)
    assert entries[-1].changes == {
        "notes": {"from": None, "to": "No onions"},
        "priority": {"from": "NORMAL", "to": "HIGH"},
    }


async def test_unknown_order_is_not_found(session, seed) -> None:
    with pytest.raises(NotFoundError):
        await orders.get_order(session, models.new_id())


async def test_list_orders_filters_and_pages(session, seed, place_order) -> None:
    await place_order()
    await place_order(models.OrderType.PICKUP)
    await place_order(user=seed.other_customer)

    rows, total = await orders.list_orders(session, {"user_id": seed.customer.id})
    assert total == 2

    rows, total = await orders.list_orders(session, {"order_type": models.OrderType.PICKUP})
    assert total == 1
    assert rows[0].order_type == models.OrderType.PICKUP

    rows, total = await orders.list_orders(session, {}, page=2, limit=2)
    assert total == 3
    assert len(rows) == 1

    with pytest.raises(ValidationError, match="Invalid pagination"):
        await orders.list_orders(session, {}, limit=500)
