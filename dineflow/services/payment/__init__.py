"""
Payment Gateway Factory

Provides a single entry point for obtaining a payment gateway instance.
The rest of the application stays agnostic about which implementation
is being used.

Usage:
    from dineflow.services.payment import get_payment_gateway

    gateway = get_payment_gateway()
    result = await gateway.create_payment_intent(32.50, metadata={"order_id": order_id})

Environment Switching:
    - ENV_MODE=development → MockPaymentGateway (no API calls)
    - ENV_MODE=staging → StripePaymentGateway (test keys)
    - ENV_MODE=production → StripePaymentGateway (live keys)

Version: 4.0.0
"""

import logging
from functools import lru_cache

from dineflow.core.config import get_settings
from dineflow.services.payment.base import (
    BasePaymentGateway,
    PaymentResult,
    RefundResult,
)
from dineflow.services.payment.mock import MockPaymentGateway
from dineflow.services.payment.stripe import StripePaymentGateway

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_gateway() -> BasePaymentGateway:
    """
    Get the configured payment gateway instance (cached per process).

    Raises:
        ValueError: If production mode but Stripe key not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Gateway: Using MockPaymentGateway (development mode)")
        return MockPaymentGateway()

    logger.info(
        f"Payment Gateway: Using StripePaymentGateway "
        f"({settings.env_mode.value} mode)"
    )
    return StripePaymentGateway()


def reset_payment_gateway() -> None:
    """
    Clear the cached gateway instance.
    The next call to get_payment_gateway() creates a new one.
    """
    get_payment_gateway.cache_clear()
    logger.debug("Payment gateway cache cleared")


__all__ = [
    "get_payment_gateway",
    "reset_payment_gateway",
    "BasePaymentGateway",
    "PaymentResult",
    "RefundResult",
    "MockPaymentGateway",
    "StripePaymentGateway",
]
