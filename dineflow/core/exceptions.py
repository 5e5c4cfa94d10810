"""
Domain Exceptions

Every failure the ordering workflow reports to its caller is one of these.
The message is human-readable and is returned to the client as-is; the
status code is used by the FastAPI exception handler in ``dineflow.main``.
"""

from typing import Optional


class DineFlowError(Exception):
    """Base class for failures surfaced to the caller."""

    status_code: int = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(DineFlowError):
    """Invalid input: bad ids, quantity bounds, unavailable items, blank reasons."""
    status_code = 400


class NotFoundError(DineFlowError):
    """A referenced restaurant, order, item, payment or cancellation is missing."""
    status_code = 404


class StateConflictError(DineFlowError):
    """The entity's current state does not allow the requested change."""
    status_code = 409


class PermissionDeniedError(DineFlowError):
    """The caller's role does not grant access to the resource."""
    status_code = 403


class PaymentGatewayError(DineFlowError):
    """The payment gateway declined or failed the request."""
    status_code = 502
