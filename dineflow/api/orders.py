"""
Order endpoints: orders, audit trail, cancellations and deliveries.
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Query, Request, status

from dineflow import models, schemas
from dineflow.api.dependencies import CurrentUser, DbSession, schedule_outbox_dispatch
from dineflow.core.exceptions import PermissionDeniedError
from dineflow.services import audit, authorization, cancellations, deliveries, orders

router = APIRouter(prefix="/api/orders", tags=["Orders"])
cancellations_router = APIRouter(prefix="/api/cancellations", tags=["Cancellations"])
deliveries_router = APIRouter(prefix="/api/deliveries", tags=["Deliveries"])


# =============================================================================
# ORDERS
# =============================================================================

@router.post("", response_model=schemas.OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: schemas.OrderCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbSession,
    user: CurrentUser,
):
    order = await orders.create_order(db, payload, user.id, user.tenant_id)
    schedule_outbox_dispatch(request, background_tasks)
    return order


@router.get("", response_model=schemas.OrderListResponse)
async def list_orders(
    db: DbSession,
    user: CurrentUser,
    restaurant_id: Optional[str] = Query(None),
    status_filter: Optional[models.OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[models.PaymentStatus] = Query(None),
    order_type: Optional[models.OrderType] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    filters = {
        "restaurant_id": restaurant_id,
        "status": status_filter,
        "payment_status": payment_status,
        "order_type": order_type,
    }
    filters = await authorization.apply_order_filters(db, user, filters)
    rows, total = await orders.list_orders(db, filters, page=page, limit=limit)
    return {"total": total, "page": page, "limit": limit, "orders": rows}


async def _readable_order(db, user: models.User, order_id: str) -> models.Order:
    order = await orders.get_order(db, order_id)
    if not await authorization.can_access_order(db, user, order):
        raise PermissionDeniedError("You do not have access to this order")
    return order


@router.get("/{order_id}", response_model=schemas.OrderResponse)
async def get_order(order_id: str, db: DbSession, user: CurrentUser):
    return await _readable_order(db, user, order_id)


@router.patch("/{order_id}", response_model=schemas.OrderResponse)
async def update_order(
    order_id: str,
    payload: schemas.OrderUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbSession,
    user: CurrentUser,
):
    order = await orders.get_order(db, order_id)
    if not await authorization.can_update_order(db, user, order):
        raise PermissionDeniedError("You do not have permission to update this order")
    updated = await orders.update_order(db, order_id, payload, user.id)
    schedule_outbox_dispatch(request, background_tasks)
    return updated


@router.get("/{order_id}/audit", response_model=List[schemas.AuditResponse])
async def get_order_audit(order_id: str, db: DbSession, user: CurrentUser):
    await _readable_order(db, user, order_id)
    return await audit.list_audits(db, order_id)


@router.post(
    "/{order_id}/cancellations",
    response_model=schemas.CancellationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_cancellation(
    order_id: str,
    payload: schemas.CancellationCreate,
    db: DbSession,
    user: CurrentUser,
):
    order = await orders.get_order(db, order_id)
    if not await authorization.can_cancel_order(db, user, order):
        raise PermissionDeniedError("You do not have permission to cancel this order")
    return await cancellations.create_cancellation(db, order_id, payload.reason, user.id)


# =============================================================================
# CANCELLATIONS
# =============================================================================

@cancellations_router.get("", response_model=List[schemas.CancellationResponse])
async def list_cancellations(
    db: DbSession,
    user: CurrentUser,
    status_filter: Optional[models.CancellationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    filters = await authorization.apply_cancellation_filters(db, user, {"status": status_filter})
    rows, _ = await cancellations.list_cancellations(db, filters, page=page, limit=limit)
    return rows


@cancellations_router.get("/{cancellation_id}", response_model=schemas.CancellationResponse)
async def get_cancellation(cancellation_id: str, db: DbSession, user: CurrentUser):
    cancellation = await cancellations.get_cancellation(db, cancellation_id)
    if not await authorization.can_access_cancellation(db, user, cancellation):
        raise PermissionDeniedError("You do not have access to this cancellation")
    return cancellation


@cancellations_router.patch("/{cancellation_id}", response_model=schemas.CancellationResponse)
async def decide_cancellation(
    cancellation_id: str,
    payload: schemas.CancellationUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbSession,
    user: CurrentUser,
):
    cancellation = await cancellations.get_cancellation(db, cancellation_id)
    if not await authorization.can_decide_cancellation(db, user, cancellation):
        raise PermissionDeniedError("You do not have permission to decide this cancellation")
    decided = await cancellations.update_cancellation(db, cancellation_id, payload.status, user.id)
    schedule_outbox_dispatch(request, background_tasks)
    return decided


# =============================================================================
# DELIVERIES
# =============================================================================

@deliveries_router.post("", response_model=schemas.DeliveryResponse, status_code=status.HTTP_201_CREATED)
async def create_delivery(payload: schemas.DeliveryCreate, db: DbSession, user: CurrentUser):
    order = await orders.get_order(db, payload.order_id)
    if not await authorization.can_update_order(db, user, order) or user.role == models.UserRole.CUSTOMER:
        raise PermissionDeniedError("You do not have permission to create deliveries for this order")
    return await deliveries.create_delivery(db, payload)


@deliveries_router.get("", response_model=List[schemas.DeliveryResponse])
async def list_deliveries(
    db: DbSession,
    user: CurrentUser,
    status_filter: Optional[models.DeliveryStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    filters = await authorization.apply_delivery_filters(db, user, {"status": status_filter})
    rows, _ = await deliveries.list_deliveries(db, filters, page=page, limit=limit)
    return rows


@deliveries_router.get("/{delivery_id}", response_model=schemas.DeliveryResponse)
async def get_delivery(delivery_id: str, db: DbSession, user: CurrentUser):
    delivery = await deliveries.get_delivery(db, delivery_id)
    order = await orders.get_order(db, delivery.order_id)
    if not await authorization.can_access_delivery(db, user, delivery, order):
        raise PermissionDeniedError("You do not have access to this delivery")
    return delivery


@deliveries_router.patch("/{delivery_id}", response_model=schemas.DeliveryResponse)
async def update_delivery(
    delivery_id: str,
    payload: schemas.DeliveryUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbSession,
    user: CurrentUser,
):
    delivery = await deliveries.get_delivery(db, delivery_id)
    order = await orders.get_order(db, delivery.order_id)
    if not await authorization.can_update_delivery(db, user, delivery, order):
        raise PermissionDeniedError("You do not have permission to update this delivery")
    updated = await deliveries.update_delivery(db, delivery_id, payload, user.id)
    schedule_outbox_dispatch(request, background_tasks)
    return updated
