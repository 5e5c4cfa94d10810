"""
Inventory Ledger

One row per (menu item, variant). Quantities never go below zero: every
change goes through ``apply_adjustment`` which locks the row, clamps the
result and recomputes the derived status in the caller's transaction.

After each committed change the menu item's ``stock_status`` display cache
is re-synced (best-effort).
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from dineflow.services import catalog

logger = logging.getLogger(__name__)


def derive_status(quantity: int, reorder_threshold: int) -> models.InventoryStatus:
    """Status is a pure function of (quantity, reorder_threshold)."""
    if quantity <= 0:
        return models.InventoryStatus.OUT_OF_STOCK
    if quantity <= reorder_threshold:
        return models.InventoryStatus.LOW_STOCK
    return models.InventoryStatus.IN_STOCK


def variant_key(variant_id: Optional[str]) -> str:
    return variant_id or ""


# =============================================================================
# LOOKUPS
# =============================================================================

async def get_inventory_by_menu_item(
    session: AsyncSession,
    menu_item_id: str,
    variant_id: Optional[str] = None,
    *,
    for_update: bool = False,
) -> Optional[models.Inventory]:
    stmt = select(models.Inventory).where(
        models.Inventory.menu_item_id == menu_item_id,
        models.Inventory.variant_key == variant_key(variant_id),
    )
    if for_update:
        stmt = stmt.with_for_update()
    return await session.scalar(stmt)


async def get_inventory(session: AsyncSession, inventory_id: str) -> models.Inventory:
    inventory = await session.get(models.Inventory, inventory_id)
    if inventory is None:
        raise NotFoundError(f"Inventory with ID {inventory_id} not found")
    return inventory


async def list_inventory(
    session: AsyncSession,
    *,
    restaurant_id: Optional[str] = None,
    menu_item_id: Optional[str] = None,
    status: Optional[models.InventoryStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[Sequence[models.Inventory], int]:
    stmt = select(models.Inventory)
    if restaurant_id:
        stmt = stmt.where(models.Inventory.restaurant_id == restaurant_id)
    if menu_item_id:
        stmt = stmt.where(models.Inventory.menu_item_id == menu_item_id)
    if status:
        stmt = stmt.where(models.Inventory.status == status)

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    rows = await session.scalars(
        stmt.order_by(models.Inventory.last_updated.desc()).offset((page - 1) * limit).limit(limit)
    )
    return rows.all(), total or 0


async def get_low_stock_items(
    session: AsyncSession,
    restaurant_id: Optional[str] = None,
) -> Sequence[models.Inventory]:
    """Rows at or below their reorder threshold, out-of-stock included."""
    stmt = select(models.Inventory).where(
        models.Inventory.status.in_([models.InventoryStatus.LOW_STOCK, models.InventoryStatus.OUT_OF_STOCK])
    )
    if restaurant_id:
        stmt = stmt.where(models.Inventory.restaurant_id == restaurant_id)
    return (await session.scalars(stmt.order_by(models.Inventory.quantity))).all()


async def get_inventory_analytics(session: AsyncSession, restaurant_id: Optional[str] = None) -> dict:
    stmt = select(models.Inventory.quantity, models.Inventory.reorder_threshold, models.Inventory.status)
    if restaurant_id:
        stmt = stmt.where(models.Inventory.restaurant_id == restaurant_id)
    rows = (await session.execute(stmt)).all()

    counts = {status: 0 for status in models.InventoryStatus}
    for row in rows:
        counts[row.status] += 1

    total_items = len(rows)
    return {
        "total_items": total_items,
        "in_stock": counts[models.InventoryStatus.IN_STOCK],
        "low_stock": counts[models.InventoryStatus.LOW_STOCK],
        "out_of_stock": counts[models.InventoryStatus.OUT_OF_STOCK],
        "below_threshold": sum(1 for row in rows if row.quantity <= row.reorder_threshold),
        "average_quantity": round(sum(row.quantity for row in rows) / total_items, 2) if total_items else 0.0,
    }


# =============================================================================
# ATOMIC ADJUSTMENT
# =============================================================================

async def apply_adjustment(
    session: AsyncSession,
    menu_item_id: str,
    delta: int,
    variant_id: Optional[str] = None,
    *,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Optional[models.Inventory]:
    """
    Lock the ledger row and apply ``max(0, quantity + delta)``.

    Runs inside the caller's transaction and does not commit. Returns None
    when the item is not tracked.
    """
    inventory = await get_inventory_by_menu_item(session, menu_item_id, variant_id, for_update=True)
    if inventory is None:
        return None

    requested = inventory.quantity + delta
    if requested < 0:
        logger.warning(
            f"Inventory for {menu_item_id} clamped at 0 "
            f"(quantity={inventory.quantity}, delta={delta})"
        )
    inventory.quantity = max(0, requested)
    inventory.status = derive_status(inventory.quantity, inventory.reorder_threshold)
    inventory.last_adjustment_reason = reason
    inventory.last_adjustment_notes = notes
    await session.flush()
    return inventory


async def adjust_inventory(
    session: AsyncSession,
    payload: schemas.InventoryAdjust,
    changed_by: Optional[str] = None,
) -> models.Inventory:
    inventory = await apply_adjustment(
        session,
        payload.menu_item_id,
        payload.delta,
        payload.variant_id,
        reason=payload.reason,
        notes=payload.notes,
    )
    if inventory is None:
        raise NotFoundError("Inventory not found for the specified menu item")
    await session.commit()

    logger.info(
        f"Inventory adjusted by {changed_by or 'SYSTEM'}: {inventory.id} "
        f"menu_item={payload.menu_item_id} delta={payload.delta} -> {inventory.quantity}"
    )
    await sync_menu_item_stock_status(session, payload.menu_item_id)
    return inventory


# =============================================================================
# CRUD
# =============================================================================

async def create_inventory(
    session: AsyncSession,
    payload: schemas.InventoryCreate,
    tenant_id: Optional[str] = None,
) -> models.Inventory:
    await catalog.get_restaurant(session, payload.restaurant_id)
    menu_item = await catalog.get_menu_item(session, payload.menu_item_id)
    if menu_item.restaurant_id != payload.restaurant_id:
        raise ValidationError("Menu item does not belong to the specified restaurant")

    if payload.variant_id:
        variant = await catalog.find_variant_by_id(session, payload.variant_id)
        if variant is None or variant.menu_item_id != payload.menu_item_id:
            raise ValidationError(f"Variant with ID {payload.variant_id} not found for this menu item")

    existing = await get_inventory_by_menu_item(session, payload.menu_item_id, payload.variant_id)
    if existing is not None:
        raise StateConflictError("Inventory already exists for this menu item and variant")

    inventory = models.Inventory(
        restaurant_id=payload.restaurant_id,
        menu_item_id=payload.menu_item_id,
        variant_id=payload.variant_id,
        variant_key=variant_key(payload.variant_id),
        tenant_id=tenant_id,
        quantity=payload.quantity,
        reorder_threshold=payload.reorder_threshold,
        status=derive_status(payload.quantity, payload.reorder_threshold),
    )
    session.add(inventory)
    await session.commit()

    await sync_menu_item_stock_status(session, payload.menu_item_id)
    return await session.get(models.Inventory, inventory.id, populate_existing=True)


async def update_inventory(
    session: AsyncSession,
    inventory_id: str,
    payload: schemas.InventoryUpdate,
) -> models.Inventory:
    inventory = await get_inventory(session, inventory_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(inventory, field, value)
    inventory.status = derive_status(inventory.quantity, inventory.reorder_threshold)
    await session.commit()

    await sync_menu_item_stock_status(session, inventory.menu_item_id)
    return inventory


async def delete_inventory(session: AsyncSession, inventory_id: str) -> None:
    inventory = await get_inventory(session, inventory_id)
    menu_item_id = inventory.menu_item_id
    await session.delete(inventory)
    await session.commit()
    await sync_menu_item_stock_status(session, menu_item_id)


# =============================================================================
# MENU ITEM STOCK STATUS
# =============================================================================

def aggregate_stock_status(rows: Sequence[models.Inventory]) -> models.StockStatus:
    total = sum(row.quantity for row in rows)
    if total == 0:
        return models.StockStatus.OUT_OF_STOCK
    if any(row.status != models.InventoryStatus.IN_STOCK for row in rows):
        return models.StockStatus.LOW_STOCK
    return models.StockStatus.IN_STOCK


async def sync_menu_item_stock_status(session: AsyncSession, menu_item_id: str) -> None:
    """
    Recompute a menu item's display status from all of its ledger rows.

    Untracked and DISCONTINUED items are left alone. Failures are logged
    and swallowed; the ledger stays authoritative.
    """
    try:
        rows = (
            await session.scalars(
                select(models.Inventory).where(models.Inventory.menu_item_id == menu_item_id)
            )
        ).all()
        if not rows:
            return

        menu_item = await catalog.find_menu_item_by_id(session, menu_item_id)
        if menu_item is None or menu_item.stock_status == models.StockStatus.DISCONTINUED:
            return

        new_status = aggregate_stock_status(rows)
        if menu_item.stock_status != new_status:
            menu_item.stock_status = new_status
            await session.commit()
            logger.info(f"Menu item {menu_item_id} stock status updated to {new_status.value}")
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning(f"Error updating menu item stock status for {menu_item_id}: {e}")
