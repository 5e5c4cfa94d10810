from __future__ import annotations

import pytest

from dineflow import models, schemas
from dineflow.core.exceptions import StateConflictError, ValidationError
from dineflow.services import audit, cancellations, inventory, orders, outbox, payments
from dineflow.services.payment import RefundResult


async def _pay(session, order: models.Order) -> models.Payment:
    payment, _ = await payments.create_payment_intent(session, schemas.PaymentIntentCreate(order_id=order.id))
    await payments.handle_gateway_event(
        session,
        {"id": f"evt_{payment.id}", "type": "payment_intent.succeeded", "data": {"object": {"id": payment.transaction_id}}},
    )
    return payment


async def test_request_requires_reason(session, seed, place_order) -> None:
    order = await place_order()

    with pytest.raises(ValidationError, match="reason is required"):
        await cancellations.create_cancellation(session, order.id, "   ", seed.customer.id)


async def test_delivered_order_cannot_be_cancelled(session, seed, place_order) -> None:
    order = await place_order()
    await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.DELIVERED), seed.owner.id
    )

    with pytest.raises(StateConflictError, match="DELIVERED"):
        await cancellations.create_cancellation(session, order.id, "Changed my mind", seed.customer.id)


async def test_approval_cancels_order_and_credits_stock(session, seed, place_order) -> None:
    order = await place_order()
    request = await cancellations.create_cancellation(session, order.id, " Changed my mind ", seed.customer.id)
    assert request.status == models.CancellationStatus.REQUESTED
    assert request.reason == "Changed my mind"

    decided = await cancellations.update_cancellation(
        session, request.id, models.CancellationStatus.APPROVED, approved_by=seed.owner.id
    )

    assert decided.status == models.CancellationStatus.APPROVED
    assert decided.approved_by == seed.owner.id

    order = await orders.get_order(session, order.id)
    assert order.status == models.OrderStatus.CANCELLED
    assert order.cancel_reason == "Changed my mind"
    assert order.delivery.status == models.DeliveryStatus.FAILED

    pizza_stock = await inventory.get_inventory_by_menu_item(session, seed.pizza.id)
    assert pizza_stock.quantity == 50
    assert pizza_stock.last_adjustment_reason == "ORDER_CANCELLED"

    entries = await audit.list_audits(session, order.id)
    assert entries[-1].operation == "CANCELLED"
    assert entries[-1].changed_by == seed.owner.id
    assert entries[-1].changes["status"] == {"from": "PENDING", "to": "CANCELLED"}
    assert entries[-1].changes["cancellationId"] == request.id

    events = await outbox.list_outbox_events(session, aggregate_id=order.id)
    assert outbox.PAYMENT_REFUND_REQUESTED not in [event.event_type for event in events]


async def test_rejection_leaves_order_alone(session, seed, place_order) -> None:
    order = await place_order()
    request = await cancellations.create_cancellation(session, order.id, "Too slow", seed.customer.id)

    await cancellations.update_cancellation(
        session, request.id, models.CancellationStatus.REJECTED, approved_by=seed.owner.id
    )

    order = await orders.get_order(session, order.id)
    assert order.status == models.OrderStatus.PENDING
    with pytest.raises(StateConflictError):
        await cancellations.update_cancellation(
            session, request.id, models.CancellationStatus.APPROVED, approved_by=seed.owner.id
        )


async def test_approval_of_paid_order_refunds_payment(session, seed, gateway, place_order) -> None:
    order = await place_order()
    payment = await _pay(session, order)
    request = await cancellations.create_cancellation(session, order.id, "Wrong address", seed.customer.id)

    await cancellations.update_cancellation(
        session, request.id, models.CancellationStatus.APPROVED, approved_by=seed.owner.id
    )

    events = await outbox.list_outbox_events(session, aggregate_id=order.id)
    refund_events = [event for event in events if event.event_type == outbox.PAYMENT_REFUND_REQUESTED]
    assert len(refund_events) == 1
    assert refund_events[0].payload == {"order_id": order.id, "reason": "requested_by_customer"}

    stats = await outbox.dispatch_pending_events(session)
    assert stats["failed"] == 0
    assert stats["retried"] == 0

    assert gateway.refunds == [payment.transaction_id]
    payment = await payments.get_payment(session, payment.id)
    assert payment.status == models.PaymentStatus.REFUNDED
    order = await orders.get_order(session, order.id)
    assert order.status == models.OrderStatus.CANCELLED
    assert order.payment_status == models.PaymentStatus.REFUNDED
    entries = await audit.list_audits(session, order.id)
    assert entries[-1].operation == "PAYMENT_REFUNDED"


async def test_refund_retry_does_not_refund_twice(session, seed, gateway, place_order, monkeypatch) -> None:
    order = await place_order()
    first, _ = await payments.create_payment_intent(session, schemas.PaymentIntentCreate(order_id=order.id))
    second, _ = await payments.create_payment_intent(session, schemas.PaymentIntentCreate(order_id=order.id))
    for payment in (first, second):
        await payments.handle_gateway_event(
            session,
            {"id": f"evt_{payment.id}", "type": "payment_intent.succeeded", "data": {"object": {"id": payment.transaction_id}}},
        )
    order_id, owner_id = order.id, seed.owner.id
    first_id, second_id = first.id, second.id
    transactions = sorted([first.transaction_id, second.transaction_id])

    declined_once = {second.transaction_id}
    refund_payment = gateway.refund_payment

    async def flaky_refund(transaction_id, *args, **kwargs):
        if transaction_id in declined_once:
            declined_once.discard(transaction_id)
            return RefundResult(success=False, status="failed", error_message="processing_error")
        return await refund_payment(transaction_id, *args, **kwargs)

    monkeypatch.setattr(gateway, "refund_payment", flaky_refund)

    request = await cancellations.create_cancellation(session, order_id, "Wrong address", seed.customer.id)
    await cancellations.update_cancellation(
        session, request.id, models.CancellationStatus.APPROVED, approved_by=owner_id
    )
    stats = await outbox.dispatch_pending_events(session, retry_delay_seconds=0)

    assert stats["retried"] == 1
    assert stats["failed"] == 0
    assert sorted(gateway.refunds) == transactions
    for payment_id in (first_id, second_id):
        payment = await payments.get_payment(session, payment_id)
        assert payment.status == models.PaymentStatus.REFUNDED
    entries = await audit.list_audits(session, order_id)
    assert [entry.operation for entry in entries].count("PAYMENT_REFUNDED") == 2


async def test_gateway_replays_refund_with_same_key(gateway) -> None:
    first = await gateway.refund_payment("pi_mock_1", 32.5, idempotency_key="refund-p1")
    again = await gateway.refund_payment("pi_mock_1", 32.5, idempotency_key="refund-p1")

    assert again.refund_id == first.refund_id
    assert gateway.refunds == ["pi_mock_1"]


async def test_list_cancellations_by_restaurant(session, seed, place_order) -> None:
    order = await place_order()
    await cancellations.create_cancellation(session, order.id, "Duplicate order", seed.customer.id)

    rows, total = await cancellations.list_cancellations(session, {"restaurant_ids": [seed.restaurant.id]})
    assert total == 1
    assert rows[0].order_id == order.id

    rows, total = await cancellations.list_cancellations(session, {"requested_by": seed.other_customer.id})
    assert total == 0
