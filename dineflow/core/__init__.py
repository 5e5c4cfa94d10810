"""
Core module initialization.
Exports configuration, logging utilities and domain exceptions.
"""

from dineflow.core.config import get_settings, Settings, EnvironmentMode
from dineflow.core.exceptions import (
    DineFlowError,
    ValidationError,
    NotFoundError,
    StateConflictError,
    PermissionDeniedError,
    PaymentGatewayError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "DineFlowError",
    "ValidationError",
    "NotFoundError",
    "StateConflictError",
    "PermissionDeniedError",
    "PaymentGatewayError",
]
