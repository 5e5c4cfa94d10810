"""
Notification inbox and order feedback endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, status

from dineflow import models, schemas
from dineflow.api.dependencies import CurrentUser, DbSession, require_restaurant_manager
from dineflow.core.exceptions import PermissionDeniedError
from dineflow.services import authorization, feedback, notification_center, orders

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])
feedback_router = APIRouter(prefix="/api/feedback", tags=["Feedback"])


def _require_admin(user: models.User) -> None:
    if user.role not in authorization.ADMIN_ROLES:
        raise PermissionDeniedError("Only administrators can send notifications")


@router.get("", response_model=schemas.NotificationListResponse)
async def list_notifications(
    db: DbSession,
    user: CurrentUser,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    notification_type: Optional[models.NotificationType] = Query(None, alias="type"),
):
    return await notification_center.list_notifications(
        db, user.id, page=page, limit=limit, unread_only=unread_only, notification_type=notification_type
    )


@router.post("", response_model=schemas.NotificationResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(payload: schemas.NotificationCreate, db: DbSession, user: CurrentUser):
    _require_admin(user)
    return await notification_center.create_notification(db, payload, user.tenant_id)


@router.post("/bulk", status_code=status.HTTP_201_CREATED)
async def create_bulk_notifications(payload: schemas.BulkNotificationCreate, db: DbSession, user: CurrentUser):
    _require_admin(user)
    count = await notification_center.create_bulk_notifications(db, payload, user.tenant_id)
    return {"success": True, "count": count}


@router.post("/read-all")
async def mark_all_as_read(db: DbSession, user: CurrentUser):
    updated = await notification_center.mark_all_as_read(db, user.id)
    return {"success": True, "updated": updated}


@router.post("/{notification_id}/read", response_model=schemas.NotificationResponse)
async def mark_as_read(notification_id: str, db: DbSession, user: CurrentUser):
    return await notification_center.mark_as_read(db, notification_id, user.id)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(notification_id: str, db: DbSession, user: CurrentUser):
    await notification_center.delete_notification(db, notification_id, user.id)


# =============================================================================
# FEEDBACK
# =============================================================================

@feedback_router.post("", response_model=schemas.FeedbackResponse, status_code=status.HTTP_201_CREATED)
async def create_feedback(payload: schemas.FeedbackCreate, db: DbSession, user: CurrentUser):
    return await feedback.create_feedback(db, payload, user.id)


@feedback_router.get("/order/{order_id}", response_model=List[schemas.FeedbackResponse])
async def list_order_feedback(
    order_id: str,
    db: DbSession,
    user: CurrentUser,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    order = await orders.get_order(db, order_id)
    if not await authorization.can_access_order(db, user, order):
        raise PermissionDeniedError("You do not have access to this order")
    return await feedback.list_feedback_for_order(db, order_id, page=page, limit=limit)


@feedback_router.get("/stats", response_model=schemas.FeedbackStats)
async def feedback_stats(db: DbSession, user: CurrentUser, restaurant_id: str = Query(...)):
    await require_restaurant_manager(db, user, restaurant_id)
    return await feedback.get_feedback_stats(db, restaurant_id)
