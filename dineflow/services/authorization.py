"""
Order Domain Authorization

Role-based access rules:
- CUSTOMER: own orders only
- RESTAURANT_OWNER / RESTAURANT_STAFF: orders of restaurants they own or staff
- ADMIN / SUPER_ADMIN: everything

Filter functions never raise for an unknown role; they narrow the query to
the ``NO_ACCESS`` sentinel, which matches no row.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models
from dineflow.services import catalog

logger = logging.getLogger(__name__)

NO_ACCESS = "no-access"

STAFF_ROLES = (models.UserRole.RESTAURANT_OWNER, models.UserRole.RESTAURANT_STAFF)
ADMIN_ROLES = (models.UserRole.ADMIN, models.UserRole.SUPER_ADMIN)


async def _restaurant_ids(session: AsyncSession, user: models.User) -> list[str]:
    return [r.id for r in await catalog.find_restaurants_by_user_id(session, user.id)]


# =============================================================================
# QUERY FILTERS
# =============================================================================

async def apply_order_filters(session: AsyncSession, user: models.User, filters: dict) -> dict:
    authorized = dict(filters)

    if user.role == models.UserRole.CUSTOMER:
        authorized["user_id"] = user.id
        authorized.pop("restaurant_id", None)
    elif user.role in STAFF_ROLES:
        restaurant_ids = await _restaurant_ids(session, user)
        if not restaurant_ids:
            authorized["restaurant_id"] = NO_ACCESS
        elif filters.get("restaurant_id"):
            if filters["restaurant_id"] not in restaurant_ids:
                authorized["restaurant_id"] = NO_ACCESS
        else:
            authorized["restaurant_ids"] = restaurant_ids
    elif user.role in ADMIN_ROLES:
        pass
    else:
        authorized["user_id"] = NO_ACCESS

    logger.debug(f"Applied order filters for user {user.id} ({user.role}): {authorized}")
    return authorized


async def apply_cancellation_filters(session: AsyncSession, user: models.User, filters: dict) -> dict:
    authorized = dict(filters)

    if user.role == models.UserRole.CUSTOMER:
        authorized["requested_by"] = user.id
    elif user.role in STAFF_ROLES:
        authorized["restaurant_ids"] = await _restaurant_ids(session, user) or [NO_ACCESS]
    elif user.role in ADMIN_ROLES:
        pass
    else:
        authorized["requested_by"] = NO_ACCESS
    return authorized


async def apply_delivery_filters(session: AsyncSession, user: models.User, filters: dict) -> dict:
    authorized = dict(filters)

    if user.role in STAFF_ROLES:
        authorized["restaurant_ids"] = await _restaurant_ids(session, user) or [NO_ACCESS]
    elif user.role in ADMIN_ROLES:
        pass
    else:
        # Customers read delivery info through their order, not the listing
        authorized["driver_id"] = NO_ACCESS
    return authorized


# =============================================================================
# PER-ENTITY CHECKS
# =============================================================================

async def _owns_restaurant_of(session: AsyncSession, user: models.User, restaurant_id: str) -> bool:
    return restaurant_id in await _restaurant_ids(session, user)


async def can_access_order(session: AsyncSession, user: models.User, order: models.Order) -> bool:
    if user.role == models.UserRole.CUSTOMER:
        return order.user_id == user.id
    if user.role in STAFF_ROLES:
        return await _owns_restaurant_of(session, user, order.restaurant_id)
    return user.role in ADMIN_ROLES


async def can_update_order(session: AsyncSession, user: models.User, order: models.Order) -> bool:
    return await can_access_order(session, user, order)


async def can_cancel_order(session: AsyncSession, user: models.User, order: models.Order) -> bool:
    return await can_access_order(session, user, order)


async def can_access_cancellation(
    session: AsyncSession,
    user: models.User,
    cancellation: models.OrderCancellation,
) -> bool:
    if user.role == models.UserRole.CUSTOMER:
        return cancellation.order.user_id == user.id or cancellation.requested_by == user.id
    if user.role in STAFF_ROLES:
        return await _owns_restaurant_of(session, user, cancellation.order.restaurant_id)
    return user.role in ADMIN_ROLES


async def can_decide_cancellation(
    session: AsyncSession,
    user: models.User,
    cancellation: models.OrderCancellation,
) -> bool:
    """Only the restaurant side or an admin approves or rejects."""
    if user.role in STAFF_ROLES:
        return await _owns_restaurant_of(session, user, cancellation.order.restaurant_id)
    return user.role in ADMIN_ROLES


async def can_access_delivery(
    session: AsyncSession,
    user: models.User,
    delivery: models.Delivery,
    order: models.Order,
) -> bool:
    if user.role == models.UserRole.CUSTOMER:
        return order.user_id == user.id
    if user.role in STAFF_ROLES:
        return await _owns_restaurant_of(session, user, order.restaurant_id)
    return user.role in ADMIN_ROLES


async def can_update_delivery(
    session: AsyncSession,
    user: models.User,
    delivery: models.Delivery,
    order: models.Order,
) -> bool:
    if user.role in STAFF_ROLES:
        return await _owns_restaurant_of(session, user, order.restaurant_id)
    return user.role in ADMIN_ROLES


async def can_manage_restaurant(session: AsyncSession, user: models.User, restaurant_id: str) -> bool:
    """Catalog and inventory writes: the restaurant's owner/staff or an admin."""
    if user.role in STAFF_ROLES:
        return await _owns_restaurant_of(session, user, restaurant_id)
    return user.role in ADMIN_ROLES
