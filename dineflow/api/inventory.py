"""
Inventory endpoints for restaurant staff.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, status

from dineflow import models, schemas
from dineflow.api.dependencies import CurrentUser, DbSession, require_restaurant_manager
from dineflow.services import catalog, inventory

router = APIRouter(prefix="/api/inventory", tags=["Inventory"])


@router.post("", response_model=schemas.InventoryResponse, status_code=status.HTTP_201_CREATED)
async def create_inventory(payload: schemas.InventoryCreate, db: DbSession, user: CurrentUser):
    await require_restaurant_manager(db, user, payload.restaurant_id)
    return await inventory.create_inventory(db, payload, user.tenant_id)


@router.get("", response_model=List[schemas.InventoryResponse])
async def list_inventory(
    db: DbSession,
    user: CurrentUser,
    restaurant_id: str = Query(...),
    status_filter: Optional[models.InventoryStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    await require_restaurant_manager(db, user, restaurant_id)
    rows, _ = await inventory.list_inventory(
        db, restaurant_id=restaurant_id, status=status_filter, page=page, limit=limit
    )
    return rows


@router.get("/low-stock", response_model=List[schemas.InventoryResponse])
async def low_stock(db: DbSession, user: CurrentUser, restaurant_id: str = Query(...)):
    await require_restaurant_manager(db, user, restaurant_id)
    return await inventory.get_low_stock_items(db, restaurant_id)


@router.get("/analytics", response_model=schemas.InventoryAnalytics)
async def analytics(db: DbSession, user: CurrentUser, restaurant_id: str = Query(...)):
    await require_restaurant_manager(db, user, restaurant_id)
    return await inventory.get_inventory_analytics(db, restaurant_id)


@router.post("/adjust", response_model=schemas.InventoryResponse)
async def adjust_inventory(payload: schemas.InventoryAdjust, db: DbSession, user: CurrentUser):
    menu_item = await catalog.get_menu_item(db, payload.menu_item_id)
    await require_restaurant_manager(db, user, menu_item.restaurant_id)
    return await inventory.adjust_inventory(db, payload, user.id)


@router.get("/{inventory_id}", response_model=schemas.InventoryResponse)
async def get_inventory(inventory_id: str, db: DbSession, user: CurrentUser):
    row = await inventory.get_inventory(db, inventory_id)
    await require_restaurant_manager(db, user, row.restaurant_id)
    return row


@router.patch("/{inventory_id}", response_model=schemas.InventoryResponse)
async def update_inventory(
    inventory_id: str,
    payload: schemas.InventoryUpdate,
    db: DbSession,
    user: CurrentUser,
):
    row = await inventory.get_inventory(db, inventory_id)
    await require_restaurant_manager(db, user, row.restaurant_id)
    return await inventory.update_inventory(db, inventory_id, payload)


@router.delete("/{inventory_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_inventory(inventory_id: str, db: DbSession, user: CurrentUser):
    row = await inventory.get_inventory(db, inventory_id)
    await require_restaurant_manager(db, user, row.restaurant_id)
    await inventory.delete_inventory(db, inventory_id)
