"""
Notification Provider Factory

Returns the Mock or Real notification provider based on ENV_MODE.

Version: 4.0.0
"""

import logging
from functools import lru_cache

from dineflow.core.config import get_settings
from dineflow.services.notifications.base import (
    BaseNotificationProvider,
    NotificationResult,
)
from dineflow.services.notifications.mock import MockNotificationProvider
from dineflow.services.notifications.real import RealNotificationProvider

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_provider() -> BaseNotificationProvider:
    """Get the configured notification provider."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Notification Provider: Using MockNotificationProvider (development mode)")
        return MockNotificationProvider()

    logger.info(f"Notification Provider: Using RealNotificationProvider ({settings.env_mode.value} mode)")
    return RealNotificationProvider()


def reset_notification_provider() -> None:
    """Clear the cached provider instance."""
    get_notification_provider.cache_clear()


__all__ = [
    "get_notification_provider",
    "reset_notification_provider",
    "BaseNotificationProvider",
    "NotificationResult",
    "MockNotificationProvider",
    "RealNotificationProvider",
]
