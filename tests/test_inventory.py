from __future__ import annotations

import pytest

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from dineflow.services import catalog, inventory


def test_derive_status_thresholds() -> None:
    assert inventory.derive_status(0, 5) == models.InventoryStatus.OUT_OF_STOCK
    assert inventory.derive_status(5, 5) == models.InventoryStatus.LOW_STOCK
    assert inventory.derive_status(6, 5) == models.InventoryStatus.IN_STOCK
    assert inventory.derive_status(1, 0) == models.InventoryStatus.IN_STOCK


async def _set_stock(session, row: models.Inventory, quantity: int, threshold: int) -> None:
    await inventory.update_inventory(
        session, row.id, schemas.InventoryUpdate(quantity=quantity, reorder_threshold=threshold)
    )


async def test_adjustment_down_to_low_stock(session, seed) -> None:
    await _set_stock(session, seed.pizza_stock, 5, 5)

    row = await inventory.adjust_inventory(
        session,
        schemas.InventoryAdjust(menu_item_id=seed.pizza.id, delta=-2, reason="WASTE"),
        changed_by=seed.owner.id,
    )

    assert row.quantity == 3
    assert row.status == models.InventoryStatus.LOW_STOCK
    assert row.last_adjustment_reason == "WASTE"
    menu_item = await catalog.get_menu_item(session, seed.pizza.id)
    assert menu_item.stock_status == models.StockStatus.LOW_STOCK


async def test_adjustment_clamps_at_zero(session, seed) -> None:
    await _set_stock(session, seed.pizza_stock, 3, 5)

    row = await inventory.adjust_inventory(
        session, schemas.InventoryAdjust(menu_item_id=seed.pizza.id, delta=-10)
    )

    assert row.quantity == 0
    assert row.status == models.InventoryStatus.OUT_OF_STOCK
    menu_item = await catalog.get_menu_item(session, seed.pizza.id)
    assert menu_item.stock_status == models.StockStatus.OUT_OF_STOCK


async def test_restock_brings_item_back(session, seed) -> None:
    await _set_stock(session, seed.pizza_stock, 0, 5)
    await inventory.adjust_inventory(session, schemas.InventoryAdjust(menu_item_id=seed.pizza.id, delta=20))

    menu_item = await catalog.get_menu_item(session, seed.pizza.id)
    assert menu_item.stock_status == models.StockStatus.IN_STOCK


async def test_adjusting_untracked_item_is_not_found(session, seed) -> None:
    untracked = models.MenuItem(restaurant_id=seed.restaurant.id, title="Tiramisu", final_price=7.0)
    session.add(untracked)
    await session.commit()

    with pytest.raises(NotFoundError):
        await inventory.adjust_inventory(session, schemas.InventoryAdjust(menu_item_id=untracked.id, delta=1))


async def test_discontinued_item_keeps_its_status(session, seed) -> None:
    seed.salad.stock_status = models.StockStatus.DISCONTINUED
    await session.commit()

    await inventory.adjust_inventory(session, schemas.InventoryAdjust(menu_item_id=seed.salad.id, delta=-50))

    menu_item = await catalog.get_menu_item(session, seed.salad.id)
    assert menu_item.stock_status == models.StockStatus.DISCONTINUED


async def test_create_inventory_rejects_duplicate(session, seed) -> None:
    payload = schemas.InventoryCreate(
        restaurant_id=seed.restaurant.id, menu_item_id=seed.pizza.id, quantity=10
    )
    with pytest.raises(StateConflictError):
        await inventory.create_inventory(session, payload)


async def test_create_inventory_checks_restaurant_of_item(session, seed) -> None:
    other = models.Restaurant(name="Burger Barn", owner_id=seed.outsider.id)
    session.add(other)
    await session.commit()

    payload = schemas.InventoryCreate(restaurant_id=other.id, menu_item_id=seed.pizza.id, quantity=10)
    with pytest.raises(ValidationError):
        await inventory.create_inventory(session, payload)


async def test_create_inventory_derives_status(session, seed) -> None:
    tiramisu = models.MenuItem(restaurant_id=seed.restaurant.id, title="Tiramisu", final_price=7.0)
    session.add(tiramisu)
    await session.commit()

    row = await inventory.create_inventory(
        session,
        schemas.InventoryCreate(
            restaurant_id=seed.restaurant.id, menu_item_id=tiramisu.id, quantity=2, reorder_threshold=4
        ),
    )

    assert row.status == models.InventoryStatus.LOW_STOCK
    assert row.variant_key == ""


async def test_low_stock_and_analytics(session, seed) -> None:
    await _set_stock(session, seed.pizza_stock, 2, 5)

    low = await inventory.get_low_stock_items(session, seed.restaurant.id)
    assert [row.menu_item_id for row in low] == [seed.pizza.id]

    analytics = await inventory.get_inventory_analytics(session, seed.restaurant.id)
    assert analytics["total_items"] == 2
    assert analytics["in_stock"] == 1
    assert analytics["low_stock"] == 1
    assert analytics["below_threshold"] == 1
    assert analytics["average_quantity"] == 26.0


async def test_delete_inventory(session, seed) -> None:
    await inventory.delete_inventory(session, seed.salad_stock.id)

    assert await inventory.get_inventory_by_menu_item(session, seed.salad.id) is None
    with pytest.raises(NotFoundError):
        await inventory.get_inventory(session, seed.salad_stock.id)
