"""
Audit Trail

Append-only log of who changed what on an order. Entries are written in
the same transaction as the change they describe.
"""

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow import models

SYSTEM_ACTOR = "SYSTEM"


def append_audit(
    session: AsyncSession,
    order_id: str,
    operation: str,
    changed_by: Optional[str],
    changes: Optional[dict] = None,
) -> models.OrderAudit:
    """Stage an audit row; the caller commits."""
    entry = models.OrderAudit(
        order_id=order_id,
        operation=operation,
        changed_by=changed_by or SYSTEM_ACTOR,
        changes=changes,
        timestamp=models.utcnow(),
    )
    session.add(entry)
    return entry


async def list_audits(session: AsyncSession, order_id: str) -> Sequence[models.OrderAudit]:
    stmt = (
        select(models.OrderAudit)
        .where(models.OrderAudit.order_id == order_id)
        .order_by(models.OrderAudit.timestamp)
    )
    return (await session.scalars(stmt)).all()
