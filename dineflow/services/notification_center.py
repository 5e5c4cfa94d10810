"""
Notification Center

Stores user-facing notifications and pushes EMAIL / SMS ones through the
configured provider (SendGrid / Twilio, or the mock in development).
IN_APP and PUSH notifications are stored only.
"""

import html
import logging
from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, ValidationError
from dineflow.services import catalog
from dineflow.services.notifications import get_notification_provider

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


async def _deliver(session: AsyncSession, notification: models.Notification) -> None:
    """Send over the external channel; failures are logged, never raised."""
    if notification.channel not in (models.NotificationChannel.EMAIL, models.NotificationChannel.SMS):
        return

    user = await catalog.find_user_by_id(session, notification.user_id)
    provider = get_notification_provider()

    if notification.channel == models.NotificationChannel.EMAIL:
        if user is None or not user.email:
            logger.warning(f"Notification {notification.id}: no email address for user {notification.user_id}")
            return
        result = await provider.send_email(
            to_email=user.email,
            subject=notification.title,
            body_html=f"<h1>{html.escape(notification.title)}</h1><p>{html.escape(notification.message)}</p>",
            body_text=notification.message,
        )
    else:
        if user is None or not user.phone:
            logger.warning(f"Notification {notification.id}: no phone number for user {notification.user_id}")
            return
        result = await provider.send_sms(user.phone, f"{notification.title}: {notification.message}")

    if not result.success:
        logger.warning(
            f"Notification {notification.id} delivery via {result.provider} failed: {result.error_message}"
        )


async def record_notification(
    session: AsyncSession,
    payload: schemas.NotificationCreate,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    """Stage a notification and deliver its channel; the caller commits."""
    notification = models.Notification(
        user_id=payload.user_id,
        tenant_id=tenant_id,
        type=payload.type,
        channel=payload.channel,
        title=payload.title,
        message=payload.message,
        metadata_=payload.metadata,
        is_read=False,
        created_at=models.utcnow(),
    )
    session.add(notification)
    await session.flush()
    await _deliver(session, notification)
    return notification


async def create_notification(
    session: AsyncSession,
    payload: schemas.NotificationCreate,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    notification = await record_notification(session, payload, tenant_id)
    await session.commit()
    logger.info(f"Notification created: {notification.id} for user {notification.user_id}")
    return notification


async def create_bulk_notifications(
    session: AsyncSession,
    payload: schemas.BulkNotificationCreate,
    tenant_id: Optional[str] = None,
) -> int:
    fields = payload.model_dump(exclude={"user_ids"})
    for user_id in dict.fromkeys(payload.user_ids):
        await record_notification(session, schemas.NotificationCreate(user_id=user_id, **fields), tenant_id)
    await session.commit()
    return len(set(payload.user_ids))


async def list_notifications(
    session: AsyncSession,
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
    notification_type: Optional[models.NotificationType] = None,
) -> dict:
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError("Invalid pagination parameters")

    stmt = select(models.Notification).where(models.Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(models.Notification.is_read.is_(False))
    if notification_type:
        stmt = stmt.where(models.Notification.type == notification_type)

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    unread_count = await session.scalar(
        select(func.count(models.Notification.id)).where(
            models.Notification.user_id == user_id,
            models.Notification.is_read.is_(False),
        )
    )
    rows = await session.scalars(
        stmt.order_by(models.Notification.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return {
        "notifications": rows.all(),
        "total": total or 0,
        "unread_count": unread_count or 0,
        "page": page,
        "limit": limit,
    }


async def _get_own(session: AsyncSession, notification_id: str, user_id: str) -> models.Notification:
    notification = await session.get(models.Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("Notification not found")
    return notification


async def mark_as_read(session: AsyncSession, notification_id: str, user_id: str) -> models.Notification:
    notification = await _get_own(session, notification_id, user_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = models.utcnow()
        await session.commit()
    return notification


async def mark_all_as_read(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        update(models.Notification)
        .where(models.Notification.user_id == user_id, models.Notification.is_read.is_(False))
        .values(is_read=True, read_at=models.utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount


async def delete_notification(session: AsyncSession, notification_id: str, user_id: str) -> None:
    await _get_own(session, notification_id, user_id)
    await session.execute(delete(models.Notification).where(models.Notification.id == notification_id))
    await session.commit()


async def notifications_for(session: AsyncSession, user_id: str) -> Sequence[models.Notification]:
    """All notifications of a user, oldest first."""
    stmt = (
        select(models.Notification)
        .where(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at)
    )
    return (await session.scalars(stmt)).all()
