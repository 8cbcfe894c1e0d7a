"""Projects and environments, and the job logs they own."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from deckhand.db.models import DataTransfer, Deployment, Environment, Letmein, Project
from deckhand.logging_config import get_logger
from deckhand.logs.deploy_log import LogStore
from deckhand.logs.names import deployment_log_name, letmein_log_name, transfer_log_name

logger = get_logger(__name__)


async def create_project(db: AsyncSession, name: str) -> Project:
    project = Project(name=name)
    db.add(project)
    await db.flush()
    logger.info("Project created", project=name)
    return project


async def create_environment(
    db: AsyncSession,
    project: Project,
    name: str,
    backend_identifier: str = "",
    usage: str = "unspecified",
    url: str = "",
) -> Environment:
    environment = Environment(
        project_id=project.id,
        name=name,
        backend_identifier=backend_identifier,
        usage=usage,
        url=url,
    )
    db.add(environment)
    await db.flush()
    set_committed_value(environment, "project", project)
    logger.info("Environment created", environment=environment.full_name())
    return environment


async def get_environment(db: AsyncSession, environment_id: uuid.UUID) -> Environment | None:
    """Get an environment (with its project) by ID."""
    result = await db.execute(select(Environment).where(Environment.id == environment_id))
    return result.unique().scalar_one_or_none()


async def purge_environment_logs(
    db: AsyncSession, log_store: LogStore, environment: Environment
) -> int:
    """Delete the log of every job record on an environment. Returns the count deleted."""
    log_names: list[str] = []
    for model, name_for in (
        (Deployment, deployment_log_name),
        (DataTransfer, transfer_log_name),
        (Letmein, letmein_log_name),
    ):
        result = await db.execute(select(model).where(model.environment_id == environment.id))
        log_names.extend(name_for(environment, record) for record in result.unique().scalars())

    deleted = 0
    for name in log_names:
        log = log_store.open(name)
        if log.exists():
            await log.delete()
            deleted += 1

    logger.info("Environment logs purged", environment=environment.full_name(), deleted=deleted)
    return deleted


async def delete_environment(db: AsyncSession, log_store: LogStore, environment: Environment) -> None:
    """Delete an environment. Its job records cascade; their logs go first."""
    await purge_environment_logs(db, log_store, environment)
    await db.delete(environment)
    await db.flush()
    logger.info("Environment deleted", environment_id=str(environment.id))
