"""
Restaurant catalog endpoints: restaurants, staff, categories, menu items, variants.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, status

from dineflow import models, schemas
from dineflow.api.dependencies import CurrentUser, DbSession, require_restaurant_manager
from dineflow.core.exceptions import PermissionDeniedError
from dineflow.services import authorization, catalog

router = APIRouter(prefix="/api/restaurants", tags=["Restaurants"])


@router.post("", response_model=schemas.RestaurantResponse, status_code=status.HTTP_201_CREATED)
async def create_restaurant(payload: schemas.RestaurantCreate, db: DbSession, user: CurrentUser):
    if user.role not in (models.UserRole.RESTAURANT_OWNER, *authorization.ADMIN_ROLES):
        raise PermissionDeniedError("Only restaurant owners can create restaurants")
    return await catalog.create_restaurant(db, payload, user.id, user.tenant_id)


@router.get("", response_model=List[schemas.RestaurantResponse])
async def list_restaurants(
    db: DbSession,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    include_inactive: bool = Query(False),
):
    rows, _ = await catalog.list_restaurants(db, active_only=not include_inactive, page=page, limit=limit)
    return rows


@router.get("/mine", response_model=List[schemas.RestaurantResponse])
async def list_my_restaurants(db: DbSession, user: CurrentUser):
    return await catalog.find_restaurants_by_user_id(db, user.id)


@router.get("/{restaurant_id}", response_model=schemas.RestaurantResponse)
async def get_restaurant(restaurant_id: str, db: DbSession):
    return await catalog.get_restaurant(db, restaurant_id)


@router.patch("/{restaurant_id}", response_model=schemas.RestaurantResponse)
async def update_restaurant(
    restaurant_id: str,
    payload: schemas.RestaurantUpdate,
    db: DbSession,
    user: CurrentUser,
):
    await require_restaurant_manager(db, user, restaurant_id)
    return await catalog.update_restaurant(db, restaurant_id, payload)


@router.post("/{restaurant_id}/staff", status_code=status.HTTP_201_CREATED)
async def add_staff_member(
    restaurant_id: str,
    payload: schemas.StaffCreate,
    db: DbSession,
    user: CurrentUser,
):
    restaurant = await catalog.get_restaurant(db, restaurant_id)
    if restaurant.owner_id != user.id and user.role not in authorization.ADMIN_ROLES:
        raise PermissionDeniedError("Only the owner can add staff")
    membership = await catalog.add_staff_member(db, restaurant_id, payload.user_id)
    return {"success": True, "restaurant_id": restaurant_id, "user_id": membership.user_id}


# =============================================================================
# CATEGORIES
# =============================================================================

@router.post(
    "/{restaurant_id}/categories",
    response_model=schemas.CategoryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_category(
    restaurant_id: str,
    payload: schemas.CategoryCreate,
    db: DbSession,
    user: CurrentUser,
):
    await require_restaurant_manager(db, user, restaurant_id)
    return await catalog.create_category(db, restaurant_id, payload)


@router.get("/{restaurant_id}/categories", response_model=List[schemas.CategoryResponse])
async def list_categories(restaurant_id: str, db: DbSession):
    return await catalog.list_categories(db, restaurant_id)


# =============================================================================
# MENU ITEMS
# =============================================================================

@router.post(
    "/{restaurant_id}/menu-items",
    response_model=schemas.MenuItemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_menu_item(
    restaurant_id: str,
    payload: schemas.MenuItemCreate,
    db: DbSession,
    user: CurrentUser,
):
    await require_restaurant_manager(db, user, restaurant_id)
    return await catalog.create_menu_item(db, restaurant_id, payload)


@router.get("/{restaurant_id}/menu-items", response_model=List[schemas.MenuItemResponse])
async def list_menu_items(
    restaurant_id: str,
    db: DbSession,
    category_id: Optional[str] = Query(None),
):
    return await catalog.list_menu_items(db, restaurant_id, category_id=category_id)


@router.patch("/menu-items/{menu_item_id}", response_model=schemas.MenuItemResponse)
async def update_menu_item(
    menu_item_id: str,
    payload: schemas.MenuItemUpdate,
    db: DbSession,
    user: CurrentUser,
):
    item = await catalog.get_menu_item(db, menu_item_id)
    await require_restaurant_manager(db, user, item.restaurant_id)
    return await catalog.update_menu_item(db, menu_item_id, payload)


@router.post(
    "/menu-items/{menu_item_id}/variants",
    response_model=schemas.VariantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_variant(
    menu_item_id: str,
    payload: schemas.VariantCreate,
    db: DbSession,
    user: CurrentUser,
):
    item = await catalog.get_menu_item(db, menu_item_id)
    await require_restaurant_manager(db, user, item.restaurant_id)
    return await catalog.create_variant(db, menu_item_id, payload)
