"""
Payment Gateway Abstract Base Class

Defines the interface contract for payment gateway implementations.
Both MockPaymentGateway and StripePaymentGateway implement these methods,
so payment reconciliation behaves the same whichever one is active.

Design Pattern: Strategy Pattern
    - Runtime switching between gateways via ENV_MODE
    - Tests substitute a fake gateway without touching service code

Version: 4.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PaymentResult:
    """
    Standardized result from a gateway call that opens a payment.

    Attributes:
        success: Whether the gateway accepted the request
        transaction_id: Gateway reference (pi_xxx for intents, cs_xxx for checkout sessions)
        amount: Amount in major currency units
        currency: Currency code (e.g., "usd")
        client_secret: Secret handed to the frontend for intent confirmation
        checkout_url: Hosted page URL for checkout sessions
        error_message: Error description if the call failed
        error_code: Machine-readable error code
        response_time_ms: Time taken by the gateway
        metadata: Raw gateway fields worth keeping on the Payment row
    """
    success: bool
    transaction_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "usd"
    client_secret: Optional[str] = None
    checkout_url: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "transaction_id": self.transaction_id,
            "amount": self.amount,
            "currency": self.currency,
            "client_secret": self.client_secret,
            "checkout_url": self.checkout_url,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
            "metadata": self.metadata,
        }


@dataclass
class RefundResult:
    """
    Standardized result from refund processing.

    Attributes:
        success: Whether the refund was accepted
        refund_id: Gateway identifier for the refund
        amount: Amount refunded
        status: Refund status (pending, succeeded, failed)
        error_message: Error description if the refund failed
    """
    success: bool
    refund_id: Optional[str] = None
    amount: Optional[float] = None
    status: str = "pending"
    error_message: Optional[str] = None


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateways.

    Example:
        >>> gateway = get_payment_gateway()  # Mock or Stripe
        >>> result = await gateway.create_payment_intent(
        ...     amount=32.50,
        ...     metadata={"order_id": order.id},
        ... )
        >>> if result.success:
        ...     print(result.transaction_id)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the gateway name (e.g., "mock", "stripe")."""
        pass

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: float,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Create a payment intent for client-side confirmation.

        Args:
            amount: Amount in major units (dollars)
            currency: Currency code
            metadata: Key-value data attached to the intent (order_id at least)

        Returns:
            PaymentResult: Contains transaction_id and client_secret
        """
        pass

    @abstractmethod
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
        """
        Create a hosted checkout session for an order.

        Returns:
            PaymentResult: Contains transaction_id and checkout_url
        """
        pass

    @abstractmethod
    async def refund_payment(
        self,
        transaction_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund a previous payment.

        Args:
            transaction_id: The payment intent to refund
            amount: Amount to refund (None = full refund)
            reason: Reason code (duplicate, fraudulent, requested_by_customer)
            idempotency_key: Retries with the same key return the first refund
        """
        pass

    @abstractmethod
    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a webhook from the gateway.

        Returns:
            dict: Parsed event ({"id", "type", "data": {"object": ...}}), None if invalid
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the gateway."""
        pass
