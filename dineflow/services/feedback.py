"""
Order Feedback

One rating (1 to 5) per order and customer, with per-order listing and
restaurant-level statistics.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.exceptions import PermissionDeniedError, StateConflictError, ValidationError
from dineflow.services.orders import get_order

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
MAX_PAGE_SIZE = 100


async def create_feedback(
    session: AsyncSession,
    payload: schemas.FeedbackCreate,
    user_id: str,
) -> models.Feedback:
    """
    Raises:
        ValidationError: Rating outside 1..5
        PermissionDeniedError: Order belongs to another customer
        StateConflictError: Feedback already submitted for this order
    """
    if not MIN_RATING <= payload.rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")

    order = await get_order(session, payload.order_id)
    if order.user_id != user_id:
        raise PermissionDeniedError("Feedback can only be left by the customer who placed the order")

    existing = await session.scalar(
        select(models.Feedback.id).where(
            models.Feedback.order_id == order.id,
            models.Feedback.user_id == user_id,
        )
    )
    if existing:
        raise StateConflictError("Feedback already submitted for this order")

    feedback = models.Feedback(
        order_id=order.id,
        user_id=user_id,
        restaurant_id=order.restaurant_id,
        tenant_id=order.tenant_id,
        rating=payload.rating,
        comment=payload.comment,
    )
    session.add(feedback)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise StateConflictError("Feedback already submitted for this order")

    logger.info(f"Feedback {feedback.id}: order {order.id} rated {payload.rating}")
    return feedback


async def list_feedback_for_order(
    session: AsyncSession,
    order_id: str,
    *,
    page: int = 1,
    limit: int = 20,
) -> Sequence[models.Feedback]:
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError("Invalid pagination parameters")

    stmt = (
        select(models.Feedback)
        .where(models.Feedback.order_id == order_id)
        .order_by(models.Feedback.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return (await session.scalars(stmt)).all()


async def get_feedback_stats(session: AsyncSession, restaurant_id: Optional[str] = None) -> dict:
    stmt = select(models.Feedback.rating, func.count(models.Feedback.id)).group_by(models.Feedback.rating)
    if restaurant_id:
        stmt = stmt.where(models.Feedback.restaurant_id == restaurant_id)

    distribution = {rating: 0 for rating in range(MIN_RATING, MAX_RATING + 1)}
    for rating, count in (await session.execute(stmt)).all():
        distribution[rating] = count

    total = sum(distribution.values())
    weighted = sum(rating * count for rating, count in distribution.items())
    return {
        "total_count": total,
        "average_rating": round(weighted / total, 2) if total else 0.0,
        "rating_distribution": distribution,
    }
