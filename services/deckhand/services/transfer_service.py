"""Data transfers: backups (pull) and restores (push) of environment data."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from deckhand.db.models import DataArchive, DataTransfer, Environment, utc_now
from deckhand.errors import ValidationError
from deckhand.logging_config import get_logger
from deckhand.queue.job_queue import JobQueue

logger = get_logger(__name__)

SNAPSHOT_QUEUE = "snapshot"
TRANSFER_JOB = "DataTransferJob"

DIRECTIONS = ("pull", "push")
MODES = ("all", "db", "assets")


class TransferStatus:
    """Values of DataTransfer.status."""

    NOT_STARTED = "n/a"
    QUEUED = "Queued"
    STARTED = "Started"
    FINISHED = "Finished"
    FAILED = "Failed"


FINISHED_TRANSFER_STATUSES = frozenset({TransferStatus.FINISHED, TransferStatus.FAILED})


def validate_transfer(
    direction: str,
    mode: str,
    data_archive: DataArchive | None = None,
    backup_before_push: bool = False,
) -> None:
    if direction not in DIRECTIONS:
        raise ValidationError(f"Invalid transfer direction '{direction}'")
    if mode not in MODES:
        raise ValidationError(f"Invalid transfer mode '{mode}'")
    if data_archive is not None and direction != "push":
        raise ValidationError("Only a restore (push) can use an existing archive")
    if backup_before_push and direction != "push":
        raise ValidationError("backup_before_push only applies to a restore (push)")


async def create_transfer(
    db: AsyncSession,
    environment: Environment,
    direction: str,
    mode: str,
    author: str = "",
    data_archive: DataArchive | None = None,
    backup_before_push: bool = False,
    backup_of_deployment_id: uuid.UUID | None = None,
    queue_token: str | None = None,
) -> DataTransfer:
    """Validate and persist a transfer record.

    ``backup_of_deployment_id`` and ``queue_token`` are set for pre-deploy
    backups, which run inside the deployment's job and share its token.
    """
    validate_transfer(direction, mode, data_archive, backup_before_push)

    transfer = DataTransfer(
        environment_id=environment.id,
        direction=direction,
        mode=mode,
        status=TransferStatus.NOT_STARTED,
        author=author,
        data_archive_id=data_archive.id if data_archive is not None else None,
        backup_before_push=backup_before_push,
        backup_of_deployment_id=backup_of_deployment_id,
        queue_token=queue_token,
    )
    db.add(transfer)
    await db.flush()
    set_committed_value(transfer, "environment", environment)

    logger.info(
        "Data transfer created",
        transfer_id=str(transfer.id),
        environment=environment.full_name(),
        direction=direction,
        mode=mode,
    )
    return transfer


async def get_transfer(db: AsyncSession, transfer_id: uuid.UUID) -> DataTransfer | None:
    """Get a transfer by ID."""
    result = await db.execute(select(DataTransfer).where(DataTransfer.id == transfer_id))
    return result.unique().scalar_one_or_none()


async def mark_transfer(db: AsyncSession, transfer: DataTransfer, status: str) -> DataTransfer:
    """Set a transfer's status. Finished and Failed are final."""
    if transfer.status in FINISHED_TRANSFER_STATUSES:
        raise ValidationError(
            f"Transfer {transfer.id} already finished with status '{transfer.status}'"
        )
    old_status = transfer.status
    transfer.status = status
    transfer.last_updated_at = utc_now()
    await db.flush()

    logger.info(
        "Data transfer status changed",
        transfer_id=str(transfer.id),
        from_status=old_status,
        to_status=status,
    )
    return transfer


async def start_transfer(db: AsyncSession, queue: JobQueue, transfer: DataTransfer) -> str:
    """Queue a standalone transfer and return the queue token. Commits the session."""
    if transfer.queue_token:
        raise ValidationError(f"Transfer {transfer.id} was already queued")

    await mark_transfer(db, transfer, TransferStatus.QUEUED)
    await db.commit()

    token = await queue.enqueue(
        SNAPSHOT_QUEUE, TRANSFER_JOB, {"transfer_id": str(transfer.id)}
    )
    transfer.queue_token = token
    await db.commit()

    logger.info("Data transfer queued", transfer_id=str(transfer.id), token=token)
    return token
