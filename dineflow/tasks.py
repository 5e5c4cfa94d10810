"""
Celery Tasks
Background tasks that drain the transactional outbox.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from dineflow.celery_worker import celery_app
from dineflow.core.config import get_settings
from dineflow.database import create_database
from dineflow.services.outbox import dispatch_pending_events

logger = logging.getLogger(__name__)


async def _dispatch_batch() -> dict:
    """Open a private Database for this run; the worker has no app.state."""
    database = create_database(get_settings())
    try:
        async with database.session() as session:
            return await dispatch_pending_events(session)
    finally:
        await database.close()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def dispatch_outbox_events(self) -> dict:
    """
    Deliver one batch of pending outbox events.

    Returns:
        dict: Published/retried/failed counts plus task metadata
    """
    task_id = self.request.id
    start_time = time.time()

    stats = asyncio.run(_dispatch_batch())

    elapsed = round(time.time() - start_time, 3)
    stats['task_id'] = task_id
    stats['processing_time_seconds'] = elapsed
    logger.info(f"Task {task_id}: outbox batch done in {elapsed}s - {stats}")
    return stats


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
