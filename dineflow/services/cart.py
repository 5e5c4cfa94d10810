"""
Cart Service

Per-user staging area created lazily on first use. Adding an item that is
already in the cart merges quantities with a single
``INSERT ... ON CONFLICT DO UPDATE`` whose update only fires while the merged
quantity stays within the item's max order quantity.
"""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, ValidationError
from dineflow.services import catalog

logger = logging.getLogger(__name__)

UNAVAILABLE_STOCK = (models.StockStatus.OUT_OF_STOCK, models.StockStatus.DISCONTINUED)


def _insert_for(session: AsyncSession):
    """Dialect-specific INSERT that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Cart upsert is not supported on {dialect}")


def _variant_for(menu_item: models.MenuItem, variant_id: Optional[str]) -> Optional[models.MenuItemVariant]:
    if variant_id is None:
        return None
    for variant in menu_item.variants:
        if variant.id == variant_id:
            return variant
    return None


def unit_price(menu_item: models.MenuItem, variant: Optional[models.MenuItemVariant] = None) -> float:
    """Current price of one unit, variant delta included."""
    price = menu_item.final_price + (variant.price_delta if variant else 0.0)
    return round(price, 2)


# =============================================================================
# CART
# =============================================================================

async def get_or_create_cart(
    session: AsyncSession,
    user_id: str,
    tenant_id: Optional[str] = None,
) -> models.Cart:
    insert = _insert_for(session)
    stmt = (
        insert(models.Cart)
        .values(id=models.new_id(), user_id=user_id, tenant_id=tenant_id, created_at=models.utcnow())
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    await session.execute(stmt)
    await session.commit()

    cart = await session.scalar(
        select(models.Cart)
        .where(models.Cart.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return cart


def summarize_cart(cart: models.Cart) -> dict:
    """Totals for display; prices are recomputed at order time."""
    lines = []
    subtotal = 0.0
    currency = None
    for item in cart.items:
        menu_item = item.menu_item
        price = unit_price(menu_item, _variant_for(menu_item, item.variant_id))
        line_total = round(price * item.quantity, 2)
        subtotal += line_total
        if currency is None and menu_item.restaurant is not None:
            currency = menu_item.restaurant.currency
        lines.append({
            "id": item.id,
            "menu_item_id": item.menu_item_id,
            "variant_id": item.variant_id,
            "quantity": item.quantity,
            "title": menu_item.title,
            "unit_price": price,
            "line_total": line_total,
        })

    return {
        "id": cart.id,
        "user_id": cart.user_id,
        "items": lines,
        "total_items": sum(item.quantity for item in cart.items),
        "subtotal": round(subtotal, 2),
        "currency": currency or "USD",
    }


async def get_cart_with_summary(
    session: AsyncSession,
    user_id: str,
    tenant_id: Optional[str] = None,
) -> dict:
    cart = await get_or_create_cart(session, user_id, tenant_id)
    return summarize_cart(cart)


# =============================================================================
# ITEMS
# =============================================================================

async def _validate_line(
    session: AsyncSession,
    menu_item_id: str,
    variant_id: Optional[str],
    quantity: int,
) -> models.MenuItem:
    menu_item = await catalog.find_menu_item_by_id(session, menu_item_id)
    if menu_item is None or not menu_item.is_active:
        raise NotFoundError(f"Menu item with ID {menu_item_id} not found or inactive")
    if menu_item.stock_status in UNAVAILABLE_STOCK:
        raise ValidationError(f"Menu item {menu_item.title} is currently out of stock")

    if variant_id is not None:
        variant = _variant_for(menu_item, variant_id)
        if variant is None or not variant.is_active:
            raise NotFoundError(f"Variant with ID {variant_id} not found or inactive")

    if quantity < menu_item.min_order_quantity:
        raise ValidationError(
            f"Minimum order quantity for {menu_item.title} is {menu_item.min_order_quantity}"
        )
    if menu_item.max_order_quantity is not None and quantity > menu_item.max_order_quantity:
        raise ValidationError(
            f"Maximum order quantity for {menu_item.title} is {menu_item.max_order_quantity}"
        )
    return menu_item


async def add_item(
    session: AsyncSession,
    user_id: str,
    payload: schemas.CartItemAdd,
    tenant_id: Optional[str] = None,
) -> dict:
    """
    Add a line or merge into the existing one.

    Raises:
        ValidationError: Merged quantity would exceed the max order quantity
    """
    menu_item = await _validate_line(session, payload.menu_item_id, payload.variant_id, payload.quantity)
    cart = await get_or_create_cart(session, user_id, tenant_id)

    insert = _insert_for(session)
    stmt = insert(models.CartItem).values(
        id=models.new_id(),
        cart_id=cart.id,
        menu_item_id=payload.menu_item_id,
        variant_id=payload.variant_id,
        variant_key=payload.variant_id or "",
        quantity=payload.quantity,
        created_at=models.utcnow(),
    )
    merged_quantity = models.CartItem.quantity + stmt.excluded.quantity
    stmt = stmt.on_conflict_do_update(
        index_elements=["cart_id", "menu_item_id", "variant_key"],
        set_={"quantity": merged_quantity},
        where=(
            merged_quantity <= menu_item.max_order_quantity
            if menu_item.max_order_quantity is not None
            else None
        ),
    ).returning(models.CartItem.id, models.CartItem.quantity)

    row = (await session.execute(stmt)).first()
    if row is None:
        # Rollback expires menu_item
        message = f"Maximum order quantity for {menu_item.title} is {menu_item.max_order_quantity}"
        await session.rollback()
        raise ValidationError(message)
    await session.commit()

    logger.info(f"Cart {cart.id}: {menu_item.title} quantity now {row.quantity}")
    return await get_cart_with_summary(session, user_id, tenant_id)


async def _get_own_item(session: AsyncSession, user_id: str, item_id: str) -> models.CartItem:
    item = await session.scalar(
        select(models.CartItem)
        .join(models.Cart, models.Cart.id == models.CartItem.cart_id)
        .where(models.CartItem.id == item_id, models.Cart.user_id == user_id)
    )
    if item is None:
        raise NotFoundError(f"Cart item with ID {item_id} not found")
    return item


async def update_item_quantity(
    session: AsyncSession,
    user_id: str,
    item_id: str,
    payload: schemas.CartItemUpdate,
) -> dict:
    item = await _get_own_item(session, user_id, item_id)
    await _validate_line(session, item.menu_item_id, item.variant_id, payload.quantity)
    item.quantity = payload.quantity
    await session.commit()
    return await get_cart_with_summary(session, user_id)


async def remove_item(session: AsyncSession, user_id: str, item_id: str) -> dict:
    item = await _get_own_item(session, user_id, item_id)
    await session.delete(item)
    await session.commit()
    return await get_cart_with_summary(session, user_id)


async def clear_cart(session: AsyncSession, user_id: str) -> dict:
    cart = await get_or_create_cart(session, user_id)
    await session.execute(delete(models.CartItem).where(models.CartItem.cart_id == cart.id))
    await session.commit()
    logger.info(f"Cart {cart.id} cleared")
    return await get_cart_with_summary(session, user_id)
