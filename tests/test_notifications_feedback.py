from __future__ import annotations

import pytest

from dineflow import models, schemas
from dineflow.core.exceptions import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError
from dineflow.services import feedback, notification_center


def _notification(user_id: str, channel=models.NotificationChannel.IN_APP) -> schemas.NotificationCreate:
    return schemas.NotificationCreate(
        user_id=user_id,
        type=models.NotificationType.PROMOTION,
        channel=channel,
        title="Two for one",
        message="Every pizza comes with a friend tonight.",
    )


async def test_email_notification_goes_through_provider(session, seed, provider) -> None:
    await notification_center.create_notification(
        session, _notification(seed.customer.id, models.NotificationChannel.EMAIL)
    )

    assert provider.sent == [{
        "channel": "EMAIL",
        "to": "jane@customer.test",
        "subject": "Two for one",
        "body": "Every pizza comes with a friend tonight.",
    }]


async def test_in_app_notification_is_only_stored(session, seed, provider) -> None:
    notification = await notification_center.create_notification(session, _notification(seed.customer.id))

    assert provider.sent == []
    assert notification.is_read is False


async def test_inbox_counts_and_read_state(session, seed) -> None:
    first = await notification_center.create_notification(session, _notification(seed.customer.id))
    await notification_center.create_notification(session, _notification(seed.customer.id))
    await notification_center.create_notification(session, _notification(seed.other_customer.id))

    inbox = await notification_center.list_notifications(session, seed.customer.id)
    assert inbox["total"] == 2
    assert inbox["unread_count"] == 2

    await notification_center.mark_as_read(session, first.id, seed.customer.id)
    inbox = await notification_center.list_notifications(session, seed.customer.id, unread_only=True)
    assert inbox["total"] == 1
    assert inbox["unread_count"] == 1

    assert await notification_center.mark_all_as_read(session, seed.customer.id) == 1


async def test_notifications_are_private(session, seed) -> None:
    notification = await notification_center.create_notification(session, _notification(seed.customer.id))

    with pytest.raises(NotFoundError):
        await notification_center.mark_as_read(session, notification.id, seed.other_customer.id)
    with pytest.raises(NotFoundError):
        await notification_center.delete_notification(session, notification.id, seed.other_customer.id)


async def test_bulk_notifications_skip_duplicates(session, seed) -> None:
    count = await notification_center.create_bulk_notifications(
        session,
        schemas.BulkNotificationCreate(
            user_ids=[seed.customer.id, seed.other_customer.id, seed.customer.id],
            type=models.NotificationType.SYSTEM_ALERT,
            title="Maintenance",
            message="Ordering pauses at 2am.",
        ),
    )

    assert count == 2
    assert len(await notification_center.notifications_for(session, seed.customer.id)) == 1


async def test_feedback_rating_bounds(session, seed, place_order) -> None:
    order = await place_order()

    with pytest.raises(ValidationError, match="between 1 and 5"):
        await feedback.create_feedback(session, schemas.FeedbackCreate(order_id=order.id, rating=6), seed.customer.id)


async def test_feedback_only_from_ordering_customer(session, seed, place_order) -> None:
    order = await place_order()

    with pytest.raises(PermissionDeniedError):
        await feedback.create_feedback(
            session, schemas.FeedbackCreate(order_id=order.id, rating=4), seed.other_customer.id
        )


async def test_feedback_once_per_order_and_stats(session, seed, place_order) -> None:
    first = await place_order()
    second = await place_order()

    await feedback.create_feedback(
        session, schemas.FeedbackCreate(order_id=first.id, rating=5, comment="Great crust"), seed.customer.id
    )
    await feedback.create_feedback(session, schemas.FeedbackCreate(order_id=second.id, rating=2), seed.customer.id)
    with pytest.raises(StateConflictError):
        await feedback.create_feedback(session, schemas.FeedbackCreate(order_id=first.id, rating=1), seed.customer.id)

    stats = await feedback.get_feedback_stats(session, seed.restaurant.id)
    assert stats["total_count"] == 2
    assert stats["average_rating"] == 3.5
    assert stats["rating_distribution"] == {1: 0, 2: 1, 3: 0, 4: 0, 5: 1}

    rows = await feedback.list_feedback_for_order(session, first.id)
    assert [row.comment for row in rows] == ["Great crust"]
