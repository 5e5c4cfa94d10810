"""
Payments and Gateway Reconciliation

Payments are opened against an order either manually (cash, card terminal)
or through the configured gateway (payment intent or hosted checkout).
Status changes arrive from two directions, a staff update or a gateway
webhook, and both go through ``apply_payment_status`` so the payment state
machine orders them.

Version: 4.0.0
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.core.config import get_settings
from dineflow.core.exceptions import (
    NotFoundError,
    PaymentGatewayError,
    StateConflictError,
    ValidationError,
)
from dineflow.services import catalog
from dineflow.services.audit import SYSTEM_ACTOR, append_audit
from dineflow.services.orders import change_order_status, get_order
from dineflow.services.outbox import PAYMENT_COMPLETED, enqueue_event
from dineflow.services.payment import get_payment_gateway
from dineflow.state_machine import ORDER_MACHINE, PAYMENT_MACHINE

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01

# Gateway event type -> payment status
GATEWAY_EVENTS = {
    "payment_intent.succeeded": models.PaymentStatus.PAID,
    "payment_intent.payment_failed": models.PaymentStatus.FAILED,
    "checkout.session.completed": models.PaymentStatus.PAID,
}


# =============================================================================
# LOOKUPS
# =============================================================================

async def get_payment(session: AsyncSession, payment_id: str) -> models.Payment:
    payment = await session.get(models.Payment, payment_id, populate_existing=True)
    if payment is None:
        raise NotFoundError(f"Payment with ID {payment_id} not found")
    return payment


async def list_payments_for_order(session: AsyncSession, order_id: str) -> Sequence[models.Payment]:
    stmt = (
        select(models.Payment)
        .where(models.Payment.order_id == order_id)
        .order_by(models.Payment.created_at)
    )
    return (await session.scalars(stmt)).all()


async def find_payment_by_transaction_id(
    session: AsyncSession,
    transaction_id: str,
) -> Optional[models.Payment]:
    stmt = select(models.Payment).where(models.Payment.transaction_id == transaction_id)
    return await session.scalar(stmt)


# =============================================================================
# OPENING PAYMENTS
# =============================================================================

def _ensure_payable(order: models.Order) -> None:
    if order.status in (models.OrderStatus.CANCELLED, models.OrderStatus.REFUNDED):
        raise StateConflictError(f"Order {order.id} is {order.status.value} and cannot be paid")
    if order.payment_status == models.PaymentStatus.PAID:
        raise StateConflictError(f"Order {order.id} is already paid")


async def create_payment(session: AsyncSession, payload: schemas.PaymentCreate) -> models.Payment:
    """
    Record a payment for the full order total.

    Raises:
        NotFoundError: Unknown order
        ValidationError: Amount differs from the order total by more than a cent
    """
    order = await get_order(session, payload.order_id)
    _ensure_payable(order)

    if abs(payload.amount - order.total) > AMOUNT_TOLERANCE:
        raise ValidationError(
            f"Payment amount {payload.amount:.2f} does not match order total {order.total:.2f}"
        )

    payment = models.Payment(
        order_id=order.id,
        amount=round(payload.amount, 2),
        currency=get_settings().stripe_currency,
        method=payload.method,
        status=models.PaymentStatus.AUTHORIZED,
    )
    session.add(payment)
    order.payment_status = models.PaymentStatus.AUTHORIZED
    await session.commit()

    logger.info(f"Payment created: {payment.id} for order {order.id} - ${payment.amount:.2f} ({payment.method})")
    return await get_payment(session, payment.id)


async def create_payment_intent(
    session: AsyncSession,
    payload: schemas.PaymentIntentCreate,
) -> tuple[models.Payment, dict]:
    """Open a gateway payment intent; returns the payment and the gateway result."""
    order = await get_order(session, payload.order_id)
    _ensure_payable(order)

    currency = get_settings().stripe_currency
    gateway = get_payment_gateway()
    result = await gateway.create_payment_intent(
        order.total,
        currency,
        metadata={"order_id": order.id, "correlation_id": order.correlation_id},
    )
    if not result.success:
        logger.warning(f"Payment intent for order {order.id} failed: {result.error_message}")
        raise PaymentGatewayError(result.error_message or "Payment gateway error")

    payment = models.Payment(
        order_id=order.id,
        amount=order.total,
        currency=currency,
        method="card",
        status=models.PaymentStatus.PENDING,
        transaction_id=result.transaction_id,
        gateway_response=result.to_dict(),
    )
    session.add(payment)
    await session.commit()

    logger.info(f"Payment intent {result.transaction_id} opened for order {order.id} via {gateway.provider_name}")
    return await get_payment(session, payment.id), result.to_dict()


async def create_checkout_session(
    session: AsyncSession,
    payload: schemas.CheckoutSessionCreate,
) -> tuple[models.Payment, dict]:
    """Open a hosted checkout page; returns the payment and the gateway result."""
    order = await get_order(session, payload.order_id)
    _ensure_payable(order)

    settings = get_settings()
    base_url = settings.app_base_url.rstrip("/")
    customer = await catalog.find_user_by_id(session, order.user_id)

    gateway = get_payment_gateway()
    result = await gateway.create_checkout_session(
        amount=order.total,
        order_id=order.id,
        success_url=payload.success_url or f"{base_url}/orders/{order.id}?payment=success",
        cancel_url=payload.cancel_url or f"{base_url}/orders/{order.id}?payment=cancelled",
        currency=settings.stripe_currency,
        customer_email=customer.email if customer else None,
        description=f"Order #{order.id[-8:]}",
    )
    if not result.success:
        logger.warning(f"Checkout session for order {order.id} failed: {result.error_message}")
        raise PaymentGatewayError(result.error_message or "Payment gateway error")

    payment = models.Payment(
        order_id=order.id,
        amount=order.total,
        currency=settings.stripe_currency,
        method="checkout",
        status=models.PaymentStatus.PENDING,
        transaction_id=result.transaction_id,
        gateway_response=result.to_dict(),
    )
    session.add(payment)
    await session.commit()

    logger.info(f"Checkout session {result.transaction_id} opened for order {order.id}")
    return await get_payment(session, payment.id), result.to_dict()


# =============================================================================
# STATUS CHANGES
# =============================================================================

async def apply_payment_status(
    session: AsyncSession,
    payment: models.Payment,
    new_status: models.PaymentStatus,
    changed_by: Optional[str],
) -> bool:
    """
    Move a payment to ``new_status`` and reflect it on the order.

    Returns False when the payment was already in that status. The caller
    commits.

    Raises:
        StateConflictError: Transition not allowed by the payment state machine
    """
    if payment.status == new_status:
        return False
    PAYMENT_MACHINE.ensure(payment.status, new_status)

    payment.status = new_status
    order = await get_order(session, payment.order_id)

    if new_status != models.PaymentStatus.PAID:
        order.payment_status = new_status
        return True

    order.payment_status = models.PaymentStatus.PAID
    old_status = order.status
    if ORDER_MACHINE.is_terminal(old_status):
        logger.warning(
            f"Order {order.id} paid while {old_status.value}; order status left unchanged"
        )
    else:
        change_order_status(session, order, models.OrderStatus.PREPARING, notify=False)

    append_audit(
        session,
        order.id,
        "PAYMENT_COMPLETED",
        changed_by,
        {"paymentId": payment.id, "amount": payment.amount, "transactionId": payment.transaction_id},
    )
    if order.status != old_status:
        enqueue_event(
            session,
            event_type=PAYMENT_COMPLETED,
            aggregate_id=order.id,
            payload={
                "order_id": order.id,
                "payment_id": payment.id,
                "user_id": order.user_id,
                "tenant_id": order.tenant_id,
                "old_status": old_status.value,
                "new_status": order.status.value,
            },
        )
    return True


async def update_payment(
    session: AsyncSession,
    payment_id: str,
    payload: schemas.PaymentUpdate,
    changed_by: Optional[str] = None,
) -> models.Payment:
    payment = await get_payment(session, payment_id)

    if payload.transaction_id is not None:
        payment.transaction_id = payload.transaction_id
    if payload.gateway_response is not None:
        payment.gateway_response = payload.gateway_response
    if payload.status is not None:
        changed = await apply_payment_status(session, payment, payload.status, changed_by)
        if changed:
            logger.info(f"Payment {payment_id} -> {payload.status.value} by {changed_by or SYSTEM_ACTOR}")

    await session.commit()
    return await get_payment(session, payment_id)


# =============================================================================
# WEBHOOKS
# =============================================================================

def _transaction_id_for(event: dict) -> Optional[str]:
    data = event.get("data") or {}
    obj = data.get("object") or {}
    return obj.get("id")


async def _mark_processed(session: AsyncSession, event_id: str, event_type: str) -> bool:
    """Record the event id; False when it was seen before."""
    if await session.get(models.ProcessedWebhookEvent, event_id) is not None:
        return False
    session.add(models.ProcessedWebhookEvent(id=event_id, event_type=event_type, received_at=models.utcnow()))
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        return False
    return True


async def handle_gateway_event(session: AsyncSession, event: dict) -> dict:
    """
    Reconcile a verified gateway event.

    Returns:
        dict: ``{"received", "duplicate", "handled"}`` acknowledgement
    """
    event_id = event.get("id")
    event_type = event.get("type", "")
    ack = {"received": True, "duplicate": False, "handled": False}

    if event_id and not await _mark_processed(session, event_id, event_type):
        logger.info(f"Webhook {event_id} ({event_type}) already processed, skipping")
        ack["duplicate"] = True
        return ack

    target = GATEWAY_EVENTS.get(event_type)
    transaction_id = _transaction_id_for(event)
    if target is None or not transaction_id:
        logger.debug(f"Webhook {event_id}: ignoring {event_type}")
        await session.commit()
        return ack

    payment = await find_payment_by_transaction_id(session, transaction_id)
    if payment is None:
        logger.warning(f"Webhook {event_id}: no payment for transaction {transaction_id}")
        await session.commit()
        return ack

    try:
        changed = await apply_payment_status(session, payment, target, SYSTEM_ACTOR)
    except StateConflictError as e:
        # Out-of-order events, e.g. a failure reported after success
        logger.warning(f"Webhook {event_id} for payment {payment.id} rejected: {e.message}")
        await session.commit()
        return ack

    await session.commit()
    ack["handled"] = changed
    logger.info(f"Webhook {event_id}: payment {payment.id} -> {target.value}")
    return ack


# =============================================================================
# REFUNDS
# =============================================================================

async def handle_refund_requested(session: AsyncSession, payload: dict) -> None:
    """
    Outbox handler: refund every PAID payment of a cancelled order.

    Each refunded payment is committed on its own; a retry after a later
    failure only sees the payments still PAID. Gateway calls carry a
    per-payment idempotency key.
    """
    order_id = payload["order_id"]
    gateway = get_payment_gateway()

    for payment in await list_payments_for_order(session, order_id):
        if payment.status != models.PaymentStatus.PAID:
            continue

        if payment.transaction_id:
            result = await gateway.refund_payment(
                payment.transaction_id,
                payment.amount,
                reason=payload.get("reason"),
                idempotency_key=f"refund-{payment.id}",
            )
            if not result.success:
                raise PaymentGatewayError(
                    f"Refund for payment {payment.id} failed: {result.error_message}"
                )
        else:
            logger.info(f"Payment {payment.id} has no gateway reference, marking refunded")

        payment.status = models.PaymentStatus.REFUNDED
        order = await get_order(session, order_id)
        order.payment_status = models.PaymentStatus.REFUNDED
        append_audit(
            session,
            order_id,
            "PAYMENT_REFUNDED",
            SYSTEM_ACTOR,
            {"paymentId": payment.id, "amount": payment.amount},
        )
        await session.commit()
        logger.info(f"Payment {payment.id} refunded for order {order_id}")
