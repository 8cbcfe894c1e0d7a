"""Deployment lifecycle: create, queue, abort."""

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from deckhand.backends.protocol import DeploymentBackend
from deckhand.db.models import Deployment, Environment
from deckhand.errors import ValidationError
from deckhand.logging_config import get_logger
from deckhand.queue.job_queue import JobQueue
from deckhand.state_machine import (
    DEPLOYMENT_MACHINE,
    TR_ABORT,
    TR_QUEUE,
    DeploymentState,
)

logger = get_logger(__name__)

DEPLOY_QUEUE = "deploy"
DEPLOY_JOB = "DeployJob"


async def create_deployment(
    db: AsyncSession,
    environment: Environment,
    sha: str,
    ref_name: str = "",
    deployer: str = "",
    options: dict[str, Any] | None = None,
) -> Deployment:
    """Create a deployment in state New. Nothing runs until it is started."""
    deployment = Deployment(
        environment_id=environment.id,
        sha=sha,
        ref_name=ref_name,
        deployer=deployer,
        options=dict(options or {}),
        state=DeploymentState.NEW,
    )
    db.add(deployment)
    await db.flush()
    # joined-loaded on later reads; fill it in for this instance
    set_committed_value(deployment, "environment", environment)

    logger.info(
        "Deployment created",
        deployment_id=str(deployment.id),
        environment=environment.full_name(),
        sha=sha,
    )
    return deployment


async def plan_deployment(
    db: AsyncSession,
    backend: DeploymentBackend,
    environment: Environment,
    options: dict[str, Any],
    deployer: str = "",
) -> Deployment:
    """Let the backend plan a deployment, then record it in state New."""
    strategy = backend.plan_deploy(environment, options)
    return await create_deployment(
        db,
        environment,
        strategy.sha,
        ref_name=strategy.ref_name,
        deployer=deployer,
        options=strategy.options,
    )


async def get_deployment(db: AsyncSession, deployment_id: uuid.UUID) -> Deployment | None:
    """Get a deployment by ID."""
    result = await db.execute(select(Deployment).where(Deployment.id == deployment_id))
    return result.unique().scalar_one_or_none()


async def current_build(
    db: AsyncSession,
    environment_id: uuid.UUID,
    exclude_id: uuid.UUID | None = None,
) -> Deployment | None:
    """The most recent completed deployment with code, i.e. what is live now."""
    query = select(Deployment).where(
        Deployment.environment_id == environment_id,
        Deployment.state == DeploymentState.COMPLETED,
        Deployment.sha != "",
    )
    if exclude_id is not None:
        query = query.where(Deployment.id != exclude_id)

    result = await db.execute(
        query.order_by(Deployment.last_updated_at.desc(), Deployment.created_at.desc()).limit(1)
    )
    return result.unique().scalar_one_or_none()


async def start_deployment(
    db: AsyncSession,
    queue: JobQueue,
    deployment: Deployment,
    backup_mode: str | None = None,
    predeploy_backup: bool = False,
) -> str:
    """Queue a deployment for a worker and return the queue token.

    The Queued state is committed before the job is enqueued so a worker can
    never pick the job up ahead of it. Commits the session.
    """
    if deployment.queue_token:
        raise ValidationError(
            f"Deployment {deployment.id} was already queued; create a new deployment to retry"
        )

    await DEPLOYMENT_MACHINE.apply(db, deployment, TR_QUEUE)
    await db.commit()

    args: dict[str, Any] = {
        **deployment.options,
        "deployment_id": str(deployment.id),
        "sha": deployment.sha,
        "ref_name": deployment.ref_name,
        "backup_mode": backup_mode or "",
        "predeploy_backup": predeploy_backup,
    }
    token = await queue.enqueue(DEPLOY_QUEUE, DEPLOY_JOB, args)

    deployment.queue_token = token
    await db.commit()

    logger.info("Deployment queued", deployment_id=str(deployment.id), token=token)
    return token


async def abort_deployment(db: AsyncSession, deployment: Deployment) -> Deployment:
    """Ask a queued or running deployment to stop.

    Cooperative: the backend call is not interrupted. The job moves the
    deployment on to Aborted (or Failed) once the backend returns.
    """
    await DEPLOYMENT_MACHINE.apply(db, deployment, TR_ABORT)
    logger.info("Deployment abort requested", deployment_id=str(deployment.id))
    return deployment
