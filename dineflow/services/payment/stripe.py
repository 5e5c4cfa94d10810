"""
Stripe Payment Gateway Implementation

Production implementation using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
    - STRIPE_WEBHOOK_SECRET for webhook verification

Security Notes:
    - Never log full card numbers or CVCs
    - Always verify webhook signatures
    - Use idempotency keys for retries

Version: 4.0.0
"""

import json
import logging
from datetime import datetime
from typing import Optional

import stripe

from dineflow.core.config import get_settings
from dineflow.services.payment.base import (
    BasePaymentGateway,
    PaymentResult,
    RefundResult,
)

logger = logging.getLogger(__name__)


class StripePaymentGateway(BasePaymentGateway):
    """
    Production Stripe gateway.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
        Webhooks are rejected unless STRIPE_WEBHOOK_SECRET is configured.
    """

    def __init__(self):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = "2023-10-16"  # Pin API version for stability

        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.stripe_currency

        logger.info(
            f"StripePaymentGateway initialized "
            f"(api_version={stripe.api_version})"
        )

    @property
    def provider_name(self) -> str:
        return "stripe"

    def _convert_to_cents(self, amount: float) -> int:
        """Stripe expects amounts in the smallest currency unit."""
        return int(round(amount * 100))

    def _convert_from_cents(self, cents: int) -> float:
        return cents / 100.0

    def _elapsed_ms(self, start_time: datetime) -> float:
        return (datetime.now() - start_time).total_seconds() * 1000

    def _failure(self, error: stripe.StripeError, start_time: datetime) -> PaymentResult:
        """Map a Stripe exception onto a failed PaymentResult."""
        elapsed_ms = self._elapsed_ms(start_time)

        if isinstance(error, stripe.CardError):
            logger.warning(f"Stripe: Card declined - {error.code}: {error.user_message}")
            return PaymentResult(
                success=False,
                error_message=error.user_message,
                error_code=error.code,
                response_time_ms=elapsed_ms,
            )
        if isinstance(error, stripe.AuthenticationError):
            logger.critical(f"Stripe: Authentication failed - {error}")
            return PaymentResult(
                success=False,
                error_message="Payment service configuration error",
                error_code="authentication_error",
            )
        if isinstance(error, stripe.APIConnectionError):
            logger.error(f"Stripe: Connection error - {error}")
            return PaymentResult(
                success=False,
                error_message="Payment service temporarily unavailable",
                error_code="connection_error",
                response_time_ms=elapsed_ms,
            )
        if isinstance(error, stripe.InvalidRequestError):
            logger.error(f"Stripe: Invalid request - {error}")
            return PaymentResult(
                success=False,
                error_message=str(error),
                error_code="invalid_request",
                response_time_ms=elapsed_ms,
            )

        logger.error(f"Stripe: Error - {error}")
        return PaymentResult(
            success=False,
            error_message="Payment processing error",
            error_code="stripe_error",
            response_time_ms=elapsed_ms,
        )

    async def create_payment_intent(
        self,
        amount: float,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Create a PaymentIntent for client-side confirmation.

        Returns a client_secret that the frontend uses with Stripe.js
        to complete the payment.
        """
        start_time = datetime.now()

        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        try:
            intent = stripe.PaymentIntent.create(
                amount=self._convert_to_cents(amount),
                currency=currency or self._currency,
                metadata=metadata or {},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            return self._failure(e, start_time)

        logger.info(f"Stripe: PaymentIntent created - {intent.id} - status={intent.status}")

        return PaymentResult(
            success=True,
            transaction_id=intent.id,
            amount=self._convert_from_cents(intent.amount),
            currency=intent.currency,
            client_secret=intent.client_secret,
            response_time_ms=self._elapsed_ms(start_time),
            metadata={"status": intent.status},
        )

    async def create_checkout_session(
        self,
        amount: float,
        order_id: str,
        success_url: str,
        cancel_url: str,
        currency: str = "usd",
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentResult:
        """Create a hosted Stripe Checkout Session for one order."""
        start_time = datetime.now()

        try:
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": currency or self._currency,
                        "product_data": {
                            "name": f"Order #{order_id[-8:]}",
                            "description": (description or "Restaurant order")[:500],
                        },
                        "unit_amount": self._convert_to_cents(amount),
                    },
                    "quantity": 1,
                }],
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"order_id": order_id},
                payment_intent_data={"metadata": {"order_id": order_id}},
                customer_email=customer_email,
            )
        except stripe.StripeError as e:
            return self._failure(e, start_time)

        logger.info(f"Stripe: Checkout session created for order {order_id}: {session.id}")

        return PaymentResult(
            success=True,
            transaction_id=session.id,
            amount=amount,
            currency=currency or self._currency,
            checkout_url=session.url,
            response_time_ms=self._elapsed_ms(start_time),
            metadata={"status": session.status},
        )

    async def refund_payment(
        self,
        transaction_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund a payment through Stripe.

        Checkout session ids are resolved to their payment intent first.
        """
        try:
            payment_intent = transaction_id
            if transaction_id.startswith("cs_"):
                session = stripe.checkout.Session.retrieve(transaction_id)
                payment_intent = session.payment_intent

            refund_params = {"payment_intent": payment_intent}
            if amount is not None:
                refund_params["amount"] = self._convert_to_cents(amount)
            if reason:
                refund_params["reason"] = reason

            if idempotency_key:
                refund_params["idempotency_key"] = idempotency_key

            refund = stripe.Refund.create(**refund_params)

        except stripe.StripeError as e:
            logger.error(f"Stripe: Refund failed - {e}")
            return RefundResult(
                success=False,
                status="failed",
                error_message=str(e),
            )

        logger.info(f"Stripe: Refund processed - {refund.id} - status={refund.status}")

        return RefundResult(
            success=True,
            refund_id=refund.id,
            amount=self._convert_from_cents(refund.amount),
            status=refund.status,
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a Stripe webhook event.

        Returns:
            Parsed event if the signature is valid, None otherwise
        """
        if not self._webhook_secret:
            logger.error("Stripe: Webhook secret not configured, rejecting event")
            return None
        if not signature:
            logger.warning("Stripe: Webhook without Stripe-Signature header")
            return None

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            return None
        except ValueError as e:
            logger.warning(f"Stripe: Webhook payload invalid - {e}")
            return None

        logger.debug(f"Stripe: Webhook verified - {event['type']}")
        # Plain dict for the reconciliation layer
        return json.loads(payload)

    async def health_check(self) -> bool:
        """Make a lightweight API call to verify credentials and connectivity."""
        try:
            stripe.Account.retrieve()
            return True
        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
