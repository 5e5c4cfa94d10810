"""
Order Notification Fan-out

Turns order lifecycle events into user-facing notifications. The
``handle_*`` coroutines are outbox handlers: they run in the dispatcher's
transaction and raise on failure so the event is retried.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models, schemas
from dineflow.services.notification_center import record_notification

logger = logging.getLogger(__name__)


def short_id(order_id: str) -> str:
    """Last 8 characters, as shown to customers."""
    return order_id[-8:]


# =============================================================================
# CUSTOMER NOTIFICATIONS
# =============================================================================

async def notify_status_update(
    session: AsyncSession,
    user_id: str,
    order_id: str,
    old_status: str,
    new_status: str,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    return await record_notification(
        session,
        schemas.NotificationCreate(
            user_id=user_id,
            type=models.NotificationType.ORDER_STATUS,
            channel=models.NotificationChannel.IN_APP,
            title="Order Status Update",
            message=(
                f"Your order #{short_id(order_id)} status has been updated "
                f"from {old_status.lower()} to {new_status.lower()}."
            ),
            metadata={
                "orderId": order_id,
                "oldStatus": old_status,
                "newStatus": new_status,
                "timestamp": models.utcnow().isoformat(),
            },
        ),
        tenant_id,
    )


async def notify_order_confirmed(
    session: AsyncSession,
    user_id: str,
    order_id: str,
    estimated_delivery_time: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    delivery_text = ""
    if estimated_delivery_time:
        eta = datetime.fromisoformat(estimated_delivery_time)
        delivery_text = f" Estimated delivery: {eta.strftime('%Y-%m-%d %H:%M')}."

    return await record_notification(
        session,
        schemas.NotificationCreate(
            user_id=user_id,
            type=models.NotificationType.ORDER_STATUS,
            channel=models.NotificationChannel.IN_APP,
            title="Order Confirmed",
            message=f"Your order #{short_id(order_id)} has been confirmed and is being prepared.{delivery_text}",
            metadata={
                "orderId": order_id,
                "status": "confirmed",
                "estimatedDeliveryTime": estimated_delivery_time,
            },
        ),
        tenant_id,
    )


async def notify_order_ready(
    session: AsyncSession,
    user_id: str,
    order_id: str,
    order_type: str,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    pickup = order_type != models.OrderType.DELIVERY.value
    if pickup:
        title = "Order Ready for Pickup"
        message = f"Your order #{short_id(order_id)} is ready for pickup!"
    else:
        title = "Order Out for Delivery"
        message = f"Your order #{short_id(order_id)} is out for delivery!"

    return await record_notification(
        session,
        schemas.NotificationCreate(
            user_id=user_id,
            type=models.NotificationType.ORDER_STATUS,
            channel=models.NotificationChannel.PUSH,
            title=title,
            message=message,
            metadata={
                "orderId": order_id,
                "orderType": order_type,
                "status": "ready_for_pickup" if pickup else "out_for_delivery",
            },
        ),
        tenant_id,
    )


async def notify_order_delivered(
    session: AsyncSession,
    user_id: str,
    order_id: str,
    delivery_time: str,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    return await record_notification(
        session,
        schemas.NotificationCreate(
            user_id=user_id,
            type=models.NotificationType.ORDER_STATUS,
            channel=models.NotificationChannel.IN_APP,
            title="Order Delivered",
            message=(
                f"Your order #{short_id(order_id)} has been successfully delivered. "
                f"We hope you enjoy your meal!"
            ),
            metadata={"orderId": order_id, "status": "delivered", "deliveryTime": delivery_time},
        ),
        tenant_id,
    )


async def request_feedback(
    session: AsyncSession,
    order_id: str,
    user_id: str,
    restaurant_id: str,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    return await record_notification(
        session,
        schemas.NotificationCreate(
            user_id=user_id,
            type=models.NotificationType.ORDER_STATUS,
            channel=models.NotificationChannel.IN_APP,
            title="How was your order?",
            message="We'd love to hear about your experience! Please rate your order and leave feedback.",
            metadata={
                "orderId": order_id,
                "restaurantId": restaurant_id,
                "type": "feedback_request",
                "action": "rate_order",
            },
        ),
        tenant_id,
    )


# =============================================================================
# RESTAURANT NOTIFICATIONS
# =============================================================================

async def notify_new_order(
    session: AsyncSession,
    owner_id: str,
    order_id: str,
    order_total: float,
    customer_name: str,
    tenant_id: Optional[str] = None,
) -> models.Notification:
    return await record_notification(
        session,
        schemas.NotificationCreate(
            user_id=owner_id,
            type=models.NotificationType.ORDER_STATUS,
            channel=models.NotificationChannel.IN_APP,
            title="New Order Received",
            message=f"New order #{short_id(order_id)} from {customer_name} for ${order_total:.2f}.",
            metadata={
                "orderId": order_id,
                "orderTotal": order_total,
                "customerName": customer_name,
                "type": "new_order",
            },
        ),
        tenant_id,
    )


# =============================================================================
# OUTBOX HANDLERS
# =============================================================================

async def handle_order_created(session: AsyncSession, payload: dict) -> None:
    tenant_id = payload.get("tenant_id")
    await notify_status_update(
        session,
        payload["user_id"],
        payload["order_id"],
        models.OrderStatus.PENDING.value,
        models.OrderStatus.PENDING.value,
        tenant_id,
    )
    if payload.get("owner_id"):
        await notify_new_order(
            session,
            payload["owner_id"],
            payload["order_id"],
            payload["total"],
            payload.get("customer_name") or "Customer",
            tenant_id,
        )


async def handle_order_status_changed(session: AsyncSession, payload: dict) -> None:
    user_id = payload["user_id"]
    order_id = payload["order_id"]
    tenant_id = payload.get("tenant_id")
    new_status = payload["new_status"]

    await notify_status_update(session, user_id, order_id, payload["old_status"], new_status, tenant_id)

    if new_status == models.OrderStatus.PREPARING.value:
        await notify_order_confirmed(
            session, user_id, order_id, payload.get("estimated_delivery_time"), tenant_id
        )
    elif new_status == models.OrderStatus.SHIPPED.value:
        await notify_order_ready(session, user_id, order_id, payload["order_type"], tenant_id)
    elif new_status == models.OrderStatus.DELIVERED.value:
        await notify_order_delivered(
            session, user_id, order_id, payload.get("changed_at") or models.utcnow().isoformat(), tenant_id
        )
        await request_feedback(session, order_id, user_id, payload["restaurant_id"], tenant_id)


async def handle_payment_completed(session: AsyncSession, payload: dict) -> None:
    await notify_status_update(
        session,
        payload["user_id"],
        payload["order_id"],
        payload["old_status"],
        payload["new_status"],
        payload.get("tenant_id"),
    )
