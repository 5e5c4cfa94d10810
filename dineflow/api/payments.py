"""
Payment endpoints and the gateway webhook.
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Header, Request, status

from dineflow import models, schemas
from dineflow.api.dependencies import CurrentUser, DbSession, schedule_outbox_dispatch
from dineflow.core.exceptions import PermissionDeniedError, ValidationError
from dineflow.services import authorization, orders, payments
from dineflow.services.payment import get_payment_gateway

router = APIRouter(prefix="/api/payments", tags=["Payments"])


async def _payable_order(db, user: models.User, order_id: str) -> models.Order:
    order = await orders.get_order(db, order_id)
    if not await authorization.can_access_order(db, user, order):
        raise PermissionDeniedError("You do not have access to this order")
    return order


@router.post("", response_model=schemas.PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(payload: schemas.PaymentCreate, db: DbSession, user: CurrentUser):
    await _payable_order(db, user, payload.order_id)
    return await payments.create_payment(db, payload)


@router.post("/intent", response_model=schemas.PaymentSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_intent(payload: schemas.PaymentIntentCreate, db: DbSession, user: CurrentUser):
    await _payable_order(db, user, payload.order_id)
    payment, result = await payments.create_payment_intent(db, payload)
    return {"payment": payment, "client_secret": result.get("client_secret")}


@router.post("/checkout", response_model=schemas.PaymentSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout_session(payload: schemas.CheckoutSessionCreate, db: DbSession, user: CurrentUser):
    await _payable_order(db, user, payload.order_id)
    payment, result = await payments.create_checkout_session(db, payload)
    return {"payment": payment, "checkout_url": result.get("checkout_url")}


@router.get("/order/{order_id}", response_model=List[schemas.PaymentResponse])
async def list_order_payments(order_id: str, db: DbSession, user: CurrentUser):
    await _payable_order(db, user, order_id)
    return await payments.list_payments_for_order(db, order_id)


@router.patch("/{payment_id}", response_model=schemas.PaymentResponse)
async def update_payment(
    payment_id: str,
    payload: schemas.PaymentUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbSession,
    user: CurrentUser,
):
    payment = await payments.get_payment(db, payment_id)
    order = await orders.get_order(db, payment.order_id)
    if user.role == models.UserRole.CUSTOMER or not await authorization.can_update_order(db, user, order):
        raise PermissionDeniedError("You do not have permission to update this payment")
    updated = await payments.update_payment(db, payment_id, payload, user.id)
    schedule_outbox_dispatch(request, background_tasks)
    return updated


@router.post("/webhook", response_model=schemas.WebhookAck)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbSession,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    """Gateway callback; authenticated by signature, not by caller identity."""
    body = await request.body()
    event = await get_payment_gateway().verify_webhook(body, stripe_signature)
    if event is None:
        raise ValidationError("Invalid webhook payload or signature")

    ack = await payments.handle_gateway_event(db, event)
    if ack["handled"]:
        schedule_outbox_dispatch(request, background_tasks)
    return ack
