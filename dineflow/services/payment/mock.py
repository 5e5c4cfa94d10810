"""
Mock Payment Gateway Implementation

Simulates Stripe-like payment intents, checkout sessions and refunds without
making real API calls. Used in development mode (ENV_MODE=development) to:
    - Exercise the complete order and payment flow locally
    - Develop without internet connectivity
    - Replay webhooks by posting plain JSON to /api/payments/webhook

Behavior:
    - Simulates response times (configurable, zero in tests)
    - Generates Stripe-like IDs (pi_xxx, cs_xxx, re_xxx)
    - Accepts unsigned webhook payloads

Version: 4.0.0
"""

import asyncio
import json
import random
import uuid
import logging
from typing import Optional

from dineflow.services.payment.base import (
    BasePaymentGateway,
    PaymentResult,
    RefundResult,
)

logger = logging.getLogger(__name__)


class MockPaymentGateway(BasePaymentGateway):
    """
    Mock implementation of the payment gateway.

    Attributes:
        refund_failure_rate: Probability of a simulated refund failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> gateway = MockPaymentGateway(min_latency=0, max_latency=0)
        >>> result = await gateway.create_payment_intent(32.50)
        >>> result.transaction_id.startswith("pi_mock_")
        True
    """

    def __init__(
        self,
        refund_failure_rate: float = 0.0,
        min_latency: float = 0.05,
        max_latency: float = 0.2,
    ):
        self.refund_failure_rate = refund_failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.refunds: list[str] = []
        self._refunds_by_key: dict[str, RefundResult] = {}

        logger.info(
            f"MockPaymentGateway initialized "
            f"(refund_failure_rate={refund_failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    def _generate_id(self, prefix: str) -> str:
        """Generate a Stripe-like identifier."""
        return f"{prefix}_mock_{uuid.uuid4().hex[:24]}"

    async def _simulate_latency(self) -> float:
        """
        Simulate network latency.

        Returns:
            float: Actual latency in milliseconds
        """
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)
        return latency * 1000

    async def create_payment_intent(
        self,
        amount: float,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Simulate creating a payment intent.

        The fake client_secret won't work with Stripe.js.
        """
        latency_ms = await self._simulate_latency()

        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
                response_time_ms=latency_ms,
            )

        intent_id = self._generate_id("pi")
        logger.debug(f"Mock: Created payment intent {intent_id} for ${amount:.2f}")

        return PaymentResult(
            success=True,
            transaction_id=intent_id,
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret_mock",
            response_time_ms=latency_ms,
            metadata={"status": "requires_payment_method", "mock": True, **(metadata or {})},
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
        """Simulate creating a hosted checkout session."""
        latency_ms = await self._simulate_latency()

        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
                response_time_ms=latency_ms,
            )

        session_id = self._generate_id("cs")
        checkout_url = f"https://checkout.stripe.com/mock/{session_id}"
        logger.info(f"Mock checkout session for order {order_id}: {checkout_url}")

        return PaymentResult(
            success=True,
            transaction_id=session_id,
            amount=amount,
            currency=currency,
            checkout_url=checkout_url,
            response_time_ms=latency_ms,
            metadata={"order_id": order_id, "mock": True},
        )

    async def refund_payment(
        self,
        transaction_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """Simulate refunding a payment."""
        await self._simulate_latency()

        if idempotency_key in self._refunds_by_key:
            logger.debug(f"Mock: Replaying refund for key {idempotency_key}")
            return self._refunds_by_key[idempotency_key]

        if random.random() < self.refund_failure_rate:
            logger.debug(f"Mock: Refund declined for {transaction_id}")
            return RefundResult(
                success=False,
                status="failed",
                error_message="Simulated refund failure",
            )

        refund_id = self._generate_id("re")
        self.refunds.append(transaction_id)
        logger.info(f"Mock: Refund processed - {refund_id} for {transaction_id}")

        result = RefundResult(
            success=True,
            refund_id=refund_id,
            amount=amount,
            status="succeeded",
        )
        if idempotency_key:
            self._refunds_by_key[idempotency_key] = result
        return result

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """Parse the payload without cryptographic verification."""
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Mock: Invalid webhook payload")
            return None
        if not isinstance(event, dict) or "type" not in event:
            logger.warning("Mock: Webhook payload has no event type")
            return None
        return event

    async def health_check(self) -> bool:
        """The mock gateway is always available."""
        return True
