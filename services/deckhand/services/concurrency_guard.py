"""Per-environment check against overlapping deployments.

This is an advisory read-then-act check, not a lock. Two workers that run it
at the same moment can both see no conflict; the deploy transition that
follows is a compare-and-set on the deployment's own row only. Records that
stay in flight past the window stop blocking the environment.
"""

import uuid
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deckhand.db.models import Deployment, utc_now
from deckhand.logging_config import get_logger
from deckhand.state_machine import IN_FLIGHT_STATES

logger = get_logger(__name__)

DEFAULT_WINDOW = timedelta(hours=1)


async def running_deployments(
    db: AsyncSession,
    environment_id: uuid.UUID,
    exclude_id: uuid.UUID | None = None,
    window: timedelta = DEFAULT_WINDOW,
) -> list[Deployment]:
    """In-flight deployments on an environment created within ``window``."""
    query = select(Deployment).where(
        Deployment.environment_id == environment_id,
        Deployment.state.in_(sorted(IN_FLIGHT_STATES)),
        Deployment.created_at > utc_now() - window,
    )
    if exclude_id is not None:
        query = query.where(Deployment.id != exclude_id)

    result = await db.execute(query.order_by(Deployment.created_at.asc()))
    return list(result.scalars().all())


async def has_conflict(
    db: AsyncSession,
    environment_id: uuid.UUID,
    exclude_job_id: uuid.UUID | None = None,
    within_window: timedelta = DEFAULT_WINDOW,
) -> bool:
    running = await running_deployments(db, environment_id, exclude_job_id, within_window)
    if running:
        logger.info(
            "Environment busy",
            environment_id=str(environment_id),
            running=[str(d.id) for d in running],
        )
    return bool(running)
