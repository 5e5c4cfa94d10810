"""
Shared route dependencies: database session, caller identity and outbox kick.
"""

import logging
from typing import Annotated, Optional

from fastapi import BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models
from dineflow.core.config import get_settings
from dineflow.core.exceptions import DineFlowError, PermissionDeniedError
from dineflow.database import Database, get_db
from dineflow.services import authorization, catalog
from dineflow.services.outbox import dispatch_pending_events

logger = logging.getLogger(__name__)

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    db: DbSession,
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> models.User:
    """Resolve the caller set by the upstream auth gateway."""
    if not x_user_id:
        raise DineFlowError("Missing X-User-Id header", status_code=401)
    user = await catalog.find_user_by_id(db, x_user_id)
    if user is None:
        raise DineFlowError("Unknown user", status_code=401)
    return user


CurrentUser = Annotated[models.User, Depends(get_current_user)]


async def require_restaurant_manager(db: AsyncSession, user: models.User, restaurant_id: str) -> None:
    if not await authorization.can_manage_restaurant(db, user, restaurant_id):
        raise PermissionDeniedError("You do not have permission to manage this restaurant")


# =============================================================================
# OUTBOX
# =============================================================================

async def _drain_outbox(database: Database) -> None:
    async with database.session() as session:
        await dispatch_pending_events(session)


def schedule_outbox_dispatch(request: Request, background_tasks: BackgroundTasks) -> None:
    """
    Deliver events staged by the current request.

    Development dispatches in-process once the response is sent; other
    environments hand off to the Celery worker.
    """
    if get_settings().is_development:
        background_tasks.add_task(_drain_outbox, request.app.state.database)
        return

    from dineflow.tasks import dispatch_outbox_events

    try:
        dispatch_outbox_events.delay()
    except Exception as e:
        # The periodic sweep still picks the events up
        logger.warning(f"Could not enqueue outbox dispatch: {e}")
