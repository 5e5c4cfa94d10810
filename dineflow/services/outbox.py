"""
Transactional Outbox

Business operations stage domain events with ``enqueue_event`` inside their
own transaction; ``dispatch_pending_events`` later hands each event to its
handler (notification fan-out, refunds). A failing handler rolls back only
its own work and the event is retried with exponential backoff until
``OUTBOX_MAX_ATTEMPTS`` is reached, then marked FAILED.

In development and tests events are dispatched right after the request;
in production the Celery task ``dispatch_outbox_events`` drains the table.
"""

import logging
from datetime import timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models
from dineflow.core.config import get_settings

logger = logging.getLogger(__name__)


# Event types
ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
PAYMENT_COMPLETED = "payment.completed"
PAYMENT_REFUND_REQUESTED = "payment.refund_requested"


def enqueue_event(
    session: AsyncSession,
    *,
    event_type: str,
    aggregate_id: Optional[str],
    payload: dict,
) -> models.OutboxEvent:
    """Stage an event in the caller's transaction."""
    now = models.utcnow()
    event = models.OutboxEvent(
        event_type=event_type,
        aggregate_id=aggregate_id,
        payload=payload,
        status=models.OutboxStatus.PENDING,
        attempts=0,
        available_at=now,
        created_at=now,
    )
    session.add(event)
    return event


async def list_outbox_events(
    session: AsyncSession,
    *,
    status: Optional[models.OutboxStatus] = models.OutboxStatus.PENDING,
    aggregate_id: Optional[str] = None,
    limit: int = 100,
) -> Sequence[models.OutboxEvent]:
    stmt = select(models.OutboxEvent).order_by(models.OutboxEvent.created_at.asc()).limit(limit)
    if status:
        stmt = stmt.where(models.OutboxEvent.status == status)
    if aggregate_id:
        stmt = stmt.where(models.OutboxEvent.aggregate_id == aggregate_id)
    return (await session.scalars(stmt)).all()


async def _claim_next(session: AsyncSession) -> Optional[models.OutboxEvent]:
    """Lock the oldest due event; concurrent workers skip locked rows."""
    stmt = (
        select(models.OutboxEvent)
        .where(
            models.OutboxEvent.status == models.OutboxStatus.PENDING,
            models.OutboxEvent.available_at <= models.utcnow(),
        )
        .order_by(models.OutboxEvent.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    return await session.scalar(stmt)


async def _record_failure(
    session: AsyncSession,
    event_id: str,
    error: Exception,
    max_attempts: int,
    retry_delay_seconds: int,
) -> models.OutboxStatus:
    event = await session.get(models.OutboxEvent, event_id)
    event.attempts += 1
    event.last_error = f"{type(error).__name__}: {error}"[:1000]

    if event.attempts >= max_attempts:
        event.status = models.OutboxStatus.FAILED
        logger.error(
            f"Outbox event {event.id} ({event.event_type}) failed permanently "
            f"after {event.attempts} attempts: {event.last_error}"
        )
    else:
        delay = retry_delay_seconds * (2 ** (event.attempts - 1))
        event.available_at = models.utcnow() + timedelta(seconds=delay)
        logger.warning(
            f"Outbox event {event.id} ({event.event_type}) attempt {event.attempts} failed, "
            f"retrying in {delay}s: {event.last_error}"
        )
    await session.commit()
    return event.status


async def dispatch_pending_events(
    session: AsyncSession,
    *,
    batch_size: Optional[int] = None,
    max_attempts: Optional[int] = None,
    retry_delay_seconds: Optional[int] = None,
) -> dict:
    """
    Deliver due events one at a time, each in its own transaction.

    Returns:
        dict: counts of published, retried and failed events
    """
    from dineflow.services.event_handlers import EVENT_HANDLERS

    settings = get_settings()
    batch_size = batch_size or settings.outbox_batch_size
    max_attempts = max_attempts or settings.outbox_max_attempts
    if retry_delay_seconds is None:
        retry_delay_seconds = settings.outbox_retry_delay_seconds

    stats = {"published": 0, "retried": 0, "failed": 0}

    for _ in range(batch_size):
        event = await _claim_next(session)
        if event is None:
            break

        event_id = event.id
        handler = EVENT_HANDLERS.get(event.event_type)
        try:
            if handler is None:
                raise LookupError(f"No handler registered for {event.event_type}")
            await handler(session, event.payload)
            event.status = models.OutboxStatus.PUBLISHED
            event.attempts += 1
            event.published_at = models.utcnow()
            await session.commit()
            stats["published"] += 1
            logger.debug(f"Outbox event {event_id} ({event.event_type}) published")
        except Exception as e:
            await session.rollback()
            status = await _record_failure(session, event_id, e, max_attempts, retry_delay_seconds)
            stats["failed" if status == models.OutboxStatus.FAILED else "retried"] += 1

    if any(stats.values()):
        logger.info(
            f"Outbox pass: {stats['published']} published, "
            f"{stats['retried']} retried, {stats['failed']} failed"
        )
    return stats
