"""
Shopping cart endpoints; every call acts on the caller's own cart.
"""

from fastapi import APIRouter

from dineflow import schemas
from dineflow.api.dependencies import CurrentUser, DbSession
from dineflow.services import cart

router = APIRouter(prefix="/api/cart", tags=["Cart"])


@router.get("", response_model=schemas.CartResponse)
async def get_cart(db: DbSession, user: CurrentUser):
    return await cart.get_cart_with_summary(db, user.id, user.tenant_id)


@router.post("/items", response_model=schemas.CartResponse)
async def add_item(payload: schemas.CartItemAdd, db: DbSession, user: CurrentUser):
    return await cart.add_item(db, user.id, payload, user.tenant_id)


@router.patch("/items/{item_id}", response_model=schemas.CartResponse)
async def update_item(item_id: str, payload: schemas.CartItemUpdate, db: DbSession, user: CurrentUser):
    return await cart.update_item_quantity(db, user.id, item_id, payload)


@router.delete("/items/{item_id}", response_model=schemas.CartResponse)
async def remove_item(item_id: str, db: DbSession, user: CurrentUser):
    return await cart.remove_item(db, user.id, item_id)


@router.delete("", response_model=schemas.CartResponse)
async def clear_cart(db: DbSession, user: CurrentUser):
    return await cart.clear_cart(db, user.id)
