"""
Catalog Store

Restaurants, staff membership, categories, menu items and variants.
The order workflow reads from here through ``find_restaurant_by_id``,
``find_menu_item_by_id`` and ``find_variant_by_id``.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, StateConflictError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# LOOKUPS
# =============================================================================

async def find_restaurant_by_id(session: AsyncSession, restaurant_id: str) -> Optional[models.Restaurant]:
    return await session.get(models.Restaurant, restaurant_id)


async def find_menu_item_by_id(session: AsyncSession, menu_item_id: str) -> Optional[models.MenuItem]:
    return await session.get(models.MenuItem, menu_item_id)


async def find_variant_by_id(session: AsyncSession, variant_id: str) -> Optional[models.MenuItemVariant]:
    return await session.get(models.MenuItemVariant, variant_id)


async def find_user_by_id(session: AsyncSession, user_id: str) -> Optional[models.User]:
    return await session.get(models.User, user_id)


async def find_restaurants_by_user_id(session: AsyncSession, user_id: str) -> Sequence[models.Restaurant]:
    """Restaurants the user owns or is a staff member of."""
    staff_ids = select(models.RestaurantStaff.restaurant_id).where(
        models.RestaurantStaff.user_id == user_id
    )
    stmt = (
        select(models.Restaurant)
        .where(or_(models.Restaurant.owner_id == user_id, models.Restaurant.id.in_(staff_ids)))
        .order_by(models.Restaurant.created_at)
    )
    return (await session.scalars(stmt)).all()


async def get_restaurant(session: AsyncSession, restaurant_id: str) -> models.Restaurant:
    restaurant = await find_restaurant_by_id(session, restaurant_id)
    if restaurant is None:
        raise NotFoundError(f"Restaurant with ID {restaurant_id} not found")
    return restaurant


async def get_menu_item(session: AsyncSession, menu_item_id: str) -> models.MenuItem:
    item = await find_menu_item_by_id(session, menu_item_id)
    if item is None:
        raise NotFoundError(f"Menu item with ID {menu_item_id} not found")
    return item


# =============================================================================
# RESTAURANTS
# =============================================================================

async def create_restaurant(
    session: AsyncSession,
    payload: schemas.RestaurantCreate,
    owner_id: str,
    tenant_id: Optional[str] = None,
) -> models.Restaurant:
    restaurant = models.Restaurant(
        name=payload.name,
        currency=payload.currency,
        owner_id=owner_id,
        tenant_id=tenant_id,
    )
    session.add(restaurant)
    await session.commit()
    logger.info(f"Restaurant created: {restaurant.id} ({restaurant.name})")
    return restaurant


async def update_restaurant(
    session: AsyncSession,
    restaurant_id: str,
    payload: schemas.RestaurantUpdate,
) -> models.Restaurant:
    restaurant = await get_restaurant(session, restaurant_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(restaurant, field, value.upper() if field == "currency" else value)
    await session.commit()
    return restaurant


async def list_restaurants(
    session: AsyncSession,
    *,
    active_only: bool = True,
    page: int = 1,
    limit: int = 20,
) -> tuple[Sequence[models.Restaurant], int]:
    stmt = select(models.Restaurant)
    if active_only:
        stmt = stmt.where(models.Restaurant.is_active.is_(True))
    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    rows = await session.scalars(
        stmt.order_by(models.Restaurant.name).offset((page - 1) * limit).limit(limit)
    )
    return rows.all(), total or 0


async def add_staff_member(session: AsyncSession, restaurant_id: str, user_id: str) -> models.RestaurantStaff:
    await get_restaurant(session, restaurant_id)
    user = await find_user_by_id(session, user_id)
    if user is None:
        raise NotFoundError(f"User with ID {user_id} not found")
    if user.role != models.UserRole.RESTAURANT_STAFF:
        raise ValidationError("Only RESTAURANT_STAFF users can be added as staff")

    existing = await session.scalar(
        select(models.RestaurantStaff).where(
            models.RestaurantStaff.restaurant_id == restaurant_id,
            models.RestaurantStaff.user_id == user_id,
        )
    )
    if existing is not None:
        raise StateConflictError("User is already a staff member of this restaurant")

    membership = models.RestaurantStaff(restaurant_id=restaurant_id, user_id=user_id)
    session.add(membership)
    await session.commit()
    return membership


# =============================================================================
# CATEGORIES
# =============================================================================

async def create_category(
    session: AsyncSession,
    restaurant_id: str,
    payload: schemas.CategoryCreate,
) -> models.Category:
    await get_restaurant(session, restaurant_id)
    category = models.Category(restaurant_id=restaurant_id, name=payload.name)
    session.add(category)
    await session.commit()
    return category


async def list_categories(session: AsyncSession, restaurant_id: str) -> Sequence[models.Category]:
    stmt = (
        select(models.Category)
        .where(models.Category.restaurant_id == restaurant_id)
        .order_by(models.Category.name)
    )
    return (await session.scalars(stmt)).all()


# =============================================================================
# MENU ITEMS & VARIANTS
# =============================================================================

async def _check_category(session: AsyncSession, restaurant_id: str, category_id: Optional[str]) -> None:
    if category_id is None:
        return
    category = await session.get(models.Category, category_id)
    if category is None or category.restaurant_id != restaurant_id:
        raise ValidationError(f"Category with ID {category_id} not found for this restaurant")


async def create_menu_item(
    session: AsyncSession,
    restaurant_id: str,
    payload: schemas.MenuItemCreate,
) -> models.MenuItem:
    await get_restaurant(session, restaurant_id)
    await _check_category(session, restaurant_id, payload.category_id)

    item = models.MenuItem(restaurant_id=restaurant_id, **payload.model_dump())
    session.add(item)
    await session.commit()
    logger.info(f"Menu item created: {item.id} ({item.title}) for restaurant {restaurant_id}")
    # Reload so eager relationships (variants, restaurant) are populated
    return await session.get(models.MenuItem, item.id, populate_existing=True)


async def update_menu_item(
    session: AsyncSession,
    menu_item_id: str,
    payload: schemas.MenuItemUpdate,
) -> models.MenuItem:
    item = await get_menu_item(session, menu_item_id)
    changes = payload.model_dump(exclude_unset=True)
    if "category_id" in changes:
        await _check_category(session, item.restaurant_id, changes["category_id"])

    min_qty = changes.get("min_order_quantity", item.min_order_quantity)
    max_qty = changes.get("max_order_quantity", item.max_order_quantity)
    if max_qty is not None and max_qty < min_qty:
        raise ValidationError("max_order_quantity must be >= min_order_quantity")

    for field, value in changes.items():
        setattr(item, field, value)
    await session.commit()
    return item


async def list_menu_items(
    session: AsyncSession,
    restaurant_id: str,
    *,
    category_id: Optional[str] = None,
    active_only: bool = True,
) -> Sequence[models.MenuItem]:
    stmt = select(models.MenuItem).where(models.MenuItem.restaurant_id == restaurant_id)
    if category_id:
        stmt = stmt.where(models.MenuItem.category_id == category_id)
    if active_only:
        stmt = stmt.where(models.MenuItem.is_active.is_(True))
    return (await session.scalars(stmt.order_by(models.MenuItem.title))).all()


async def create_variant(
    session: AsyncSession,
    menu_item_id: str,
    payload: schemas.VariantCreate,
) -> models.MenuItemVariant:
    item = await get_menu_item(session, menu_item_id)
    if item.final_price + payload.price_delta < 0:
        raise ValidationError("Variant price cannot be negative")

    variant = models.MenuItemVariant(
        menu_item_id=menu_item_id,
        name=payload.name,
        price_delta=payload.price_delta,
    )
    session.add(variant)
    await session.commit()
    return variant
