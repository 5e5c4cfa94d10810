from __future__ import annotations

from dineflow import models
from dineflow.services import event_handlers, notification_center, outbox


async def test_order_created_event_notifies_customer_and_owner(session, seed, place_order) -> None:
    order = await place_order()

    stats = await outbox.dispatch_pending_events(session)

    assert stats == {"published": 1, "retried": 0, "failed": 0}
    events = await outbox.list_outbox_events(session, status=models.OutboxStatus.PUBLISHED, aggregate_id=order.id)
    assert events[0].attempts == 1
    assert events[0].published_at is not None

    customer_titles = [n.title for n in await notification_center.notifications_for(session, seed.customer.id)]
    owner_titles = [n.title for n in await notification_center.notifications_for(session, seed.owner.id)]
    assert customer_titles == ["Order Status Update"]
    assert owner_titles == ["New Order Received"]


async def test_failing_handler_is_retried_later(session, seed, monkeypatch) -> None:
    async def broken(session, payload):
        raise RuntimeError("provider down")

    monkeypatch.setitem(event_handlers.EVENT_HANDLERS, outbox.ORDER_CREATED, broken)
    outbox.enqueue_event(session, event_type=outbox.ORDER_CREATED, aggregate_id=None, payload={})
    await session.commit()

    stats = await outbox.dispatch_pending_events(session, retry_delay_seconds=60)

    assert stats == {"published": 0, "retried": 1, "failed": 0}
    pending = await outbox.list_outbox_events(session)
    assert pending[0].attempts == 1
    assert pending[0].last_error == "RuntimeError: provider down"
    # Not due yet
    assert await outbox.dispatch_pending_events(session, retry_delay_seconds=60) == {
        "published": 0, "retried": 0, "failed": 0,
    }


async def test_event_fails_after_max_attempts(session, seed, monkeypatch) -> None:
    async def broken(session, payload):
        raise RuntimeError("still down")

    monkeypatch.setitem(event_handlers.EVENT_HANDLERS, outbox.ORDER_CREATED, broken)
    outbox.enqueue_event(session, event_type=outbox.ORDER_CREATED, aggregate_id=None, payload={})
    await session.commit()

    stats = await outbox.dispatch_pending_events(session, max_attempts=3, retry_delay_seconds=0)

    assert stats == {"published": 0, "retried": 2, "failed": 1}
    failed = await outbox.list_outbox_events(session, status=models.OutboxStatus.FAILED)
    assert failed[0].attempts == 3


async def test_unknown_event_type_does_not_block_others(session, seed, place_order) -> None:
    outbox.enqueue_event(session, event_type="order.unknown", aggregate_id=None, payload={})
    await session.commit()
    await place_order()

    stats = await outbox.dispatch_pending_events(session, retry_delay_seconds=60)

    assert stats["published"] == 1
    assert stats["retried"] == 1
