from __future__ import annotations

import pytest

from dineflow import models, schemas
from dineflow.core.exceptions import StateConflictError, ValidationError
from dineflow.services import audit, orders, outbox, payments


def _gateway_event(event_id: str, event_type: str, transaction_id: str) -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": {"id": transaction_id}}}


async def test_amount_must_match_order_total(session, place_order) -> None:
    order = await place_order()

    with pytest.raises(ValidationError, match="does not match order total"):
        await payments.create_payment(session, schemas.PaymentCreate(order_id=order.id, amount=30.00))


async def test_create_payment_within_tolerance(session, place_order) -> None:
    order = await place_order()

    payment = await payments.create_payment(
        session, schemas.PaymentCreate(order_id=order.id, amount=32.505, method="cash")
    )

    assert payment.status == models.PaymentStatus.AUTHORIZED
    assert payment.method == "cash"
    order = await orders.get_order(session, order.id)
    assert order.payment_status == models.PaymentStatus.AUTHORIZED


async def test_paid_moves_order_to_preparing(session, seed, place_order) -> None:
    order = await place_order()
    payment = await payments.create_payment(session, schemas.PaymentCreate(order_id=order.id, amount=32.5))

    payment = await payments.update_payment(
        session, payment.id, schemas.PaymentUpdate(status=models.PaymentStatus.PAID), seed.staff.id
    )

    assert payment.status == models.PaymentStatus.PAID
    order = await orders.get_order(session, order.id)
    assert order.status == models.OrderStatus.PREPARING
    assert order.payment_status == models.PaymentStatus.PAID
    assert order.delivery.status == models.DeliveryStatus.PENDING

    entries = await audit.list_audits(session, order.id)
    assert entries[-1].operation == "PAYMENT_COMPLETED"
    assert entries[-1].changes["paymentId"] == payment.id
    assert entries[-1].changes["amount"] == 32.5

    events = await outbox.list_outbox_events(session, aggregate_id=order.id)
    assert [event.event_type for event in events] == [outbox.ORDER_CREATED, outbox.PAYMENT_COMPLETED]
    assert events[-1].payload["old_status"] == "PENDING"
    assert events[-1].payload["new_status"] == "PREPARING"


async def test_paid_moves_shipped_order_back_to_preparing(session, seed, place_order) -> None:
    order = await place_order()
    payment = await payments.create_payment(session, schemas.PaymentCreate(order_id=order.id, amount=32.5))
    await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.SHIPPED), seed.owner.id
    )

    await payments.update_payment(session, payment.id, schemas.PaymentUpdate(status=models.PaymentStatus.PAID))

    order = await orders.get_order(session, order.id)
    assert order.status == models.OrderStatus.PREPARING
    assert order.payment_status == models.PaymentStatus.PAID

    events = await outbox.list_outbox_events(session, aggregate_id=order.id)
    assert events[-1].event_type == outbox.PAYMENT_COMPLETED
    assert events[-1].payload["old_status"] == "SHIPPED"
    assert events[-1].payload["new_status"] == "PREPARING"


async def test_paid_leaves_delivered_order_alone(session, seed, place_order) -> None:
    order = await place_order()
    payment = await payments.create_payment(session, schemas.PaymentCreate(order_id=order.id, amount=32.5))
    await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.DELIVERED), seed.owner.id
    )

    await payments.update_payment(session, payment.id, schemas.PaymentUpdate(status=models.PaymentStatus.PAID))

    order = await orders.get_order(session, order.id)
    assert order.status == models.OrderStatus.DELIVERED
    assert order.payment_status == models.PaymentStatus.PAID

    entries = await audit.list_audits(session, order.id)
    assert entries[-1].operation == "PAYMENT_COMPLETED"
    # No status change, so no status notification
    events = await outbox.list_outbox_events(session, aggregate_id=order.id)
    assert outbox.PAYMENT_COMPLETED not in [event.event_type for event in events]


async def test_paid_order_cannot_be_paid_again(session, place_order) -> None:
    order = await place_order()
    payment = await payments.create_payment(session, schemas.PaymentCreate(order_id=order.id, amount=32.5))
    await payments.update_payment(session, payment.id, schemas.PaymentUpdate(status=models.PaymentStatus.PAID))

    with pytest.raises(StateConflictError, match="already paid"):
        await payments.create_payment(session, schemas.PaymentCreate(order_id=order.id, amount=32.5))


async def test_failed_payment_cannot_succeed_later(session, place_order) -> None:
    order = await place_order()
    payment = await payments.create_payment(session, schemas.PaymentCreate(order_id=order.id, amount=32.5))
    await payments.update_payment(session, payment.id, schemas.PaymentUpdate(status=models.PaymentStatus.FAILED))

    with pytest.raises(StateConflictError):
        await payments.update_payment(session, payment.id, schemas.PaymentUpdate(status=models.PaymentStatus.PAID))

    order = await orders.get_order(session, order.id)
    assert order.payment_status == models.PaymentStatus.FAILED
    assert order.status == models.OrderStatus.PENDING


async def test_payment_intent_and_webhook_success(session, place_order) -> None:
    order = await place_order()
    payment, result = await payments.create_payment_intent(session, schemas.PaymentIntentCreate(order_id=order.id))

    assert result["client_secret"].startswith(payment.transaction_id)
    assert payment.amount == order.total

    ack = await payments.handle_gateway_event(
        session, _gateway_event("evt_1", "payment_intent.succeeded", payment.transaction_id)
    )

    assert ack == {"received": True, "duplicate": False, "handled": True}
    payment = await payments.get_payment(session, payment.id)
    assert payment.status == models.PaymentStatus.PAID
    order = await orders.get_order(session, order.id)
    assert order.status == models.OrderStatus.PREPARING


async def test_webhook_redelivery_is_ignored(session, place_order) -> None:
    order = await place_order()
    payment, _ = await payments.create_payment_intent(session, schemas.PaymentIntentCreate(order_id=order.id))
    event = _gateway_event("evt_dup", "payment_intent.succeeded", payment.transaction_id)

    await payments.handle_gateway_event(session, event)
    ack = await payments.handle_gateway_event(session, event)

    assert ack["duplicate"] is True
    assert ack["handled"] is False
    entries = await audit.list_audits(session, order.id)
    assert [entry.operation for entry in entries].count("PAYMENT_COMPLETED") == 1


async def test_late_failure_after_success_is_acknowledged(session, place_order) -> None:
    order = await place_order()
    payment, _ = await payments.create_payment_intent(session, schemas.PaymentIntentCreate(order_id=order.id))

    await payments.handle_gateway_event(
        session, _gateway_event("evt_ok", "payment_intent.succeeded", payment.transaction_id)
    )
    ack = await payments.handle_gateway_event(
        session, _gateway_event("evt_late", "payment_intent.payment_failed", payment.transaction_id)
    )

    assert ack == {"received": True, "duplicate": False, "handled": False}
    payment = await payments.get_payment(session, payment.id)
    assert payment.status == models.PaymentStatus.PAID


async def test_unknown_event_types_are_acknowledged(session, seed) -> None:
    ack = await payments.handle_gateway_event(
        session, _gateway_event("evt_other", "customer.created", "cus_123")
    )

    assert ack == {"received": True, "duplicate": False, "handled": False}


async def test_checkout_session_uses_default_urls(session, seed, place_order) -> None:
    order = await place_order()

    payment, result = await payments.create_checkout_session(
        session, schemas.CheckoutSessionCreate(order_id=order.id)
    )

    assert payment.method == "checkout"
    assert result["checkout_url"].startswith("https://checkout.stripe.com/")
    assert result["metadata"]["order_id"] == order.id


async def test_cancelled_order_cannot_be_paid(session, seed, place_order) -> None:
    order = await place_order()
    await orders.update_order(
        session, order.id, schemas.OrderUpdate(status=models.OrderStatus.CANCELLED), seed.owner.id
    )

    with pytest.raises(StateConflictError):
        await payments.create_payment_intent(session, schemas.PaymentIntentCreate(order_id=order.id))
