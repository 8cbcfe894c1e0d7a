"""Backup and restore jobs.

run_transfer() is the transfer body. DataTransferJob runs it for snapshots
queued on their own; DeployJob runs it in-process for pre-deploy backups so
the backup output lands in the deployment's log.
"""

import uuid

from deckhand.backends.protocol import DeploymentBackend
from deckhand.db.models import DataTransfer
from deckhand.db.session import session_scope
from deckhand.errors import NotFoundError
from deckhand.jobs.base import Job, JobContext, backend_call
from deckhand.logging_config import get_logger
from deckhand.logs.deploy_log import DeployLog
from deckhand.logs.names import transfer_log_name
from deckhand.services.transfer_service import (
    FINISHED_TRANSFER_STATUSES,
    TransferStatus,
    create_transfer,
    get_transfer,
    mark_transfer,
)

logger = get_logger(__name__)


async def set_transfer_status(ctx: JobContext, transfer_id: uuid.UUID, status: str) -> DataTransfer:
    async with session_scope(ctx.session_factory) as db:
        transfer = await get_transfer(db, transfer_id)
        if transfer is None:
            raise NotFoundError("DataTransfer", transfer_id)
        return await mark_transfer(db, transfer, status)


async def fail_transfer_if_unfinished(ctx: JobContext, transfer_id: uuid.UUID) -> None:
    async with session_scope(ctx.session_factory) as db:
        transfer = await get_transfer(db, transfer_id)
        if transfer is not None and transfer.status not in FINISHED_TRANSFER_STATUSES:
            await mark_transfer(db, transfer, TransferStatus.FAILED)


async def run_transfer(
    ctx: JobContext,
    transfer: DataTransfer,
    log: DeployLog,
    backend: DeploymentBackend,
) -> DataTransfer:
    """Run one transfer through the backend, leaving it Finished or Failed."""
    transfer = await set_transfer_status(ctx, transfer.id, TransferStatus.STARTED)
    try:
        async with backend_call("data_transfer"):
            await backend.data_transfer(transfer, log)
    except Exception:
        await set_transfer_status(ctx, transfer.id, TransferStatus.FAILED)
        raise
    return await set_transfer_status(ctx, transfer.id, TransferStatus.FINISHED)


class DataTransferJob(Job):
    """Standalone backup (pull) or restore (push)."""

    transfer: DataTransfer | None = None

    async def set_up(self) -> None:
        transfer_id = uuid.UUID(self.args["transfer_id"])
        async with session_scope(self.ctx.session_factory) as db:
            transfer = await get_transfer(db, transfer_id)
        if transfer is None:
            raise NotFoundError("DataTransfer", transfer_id)

        self.transfer = transfer
        self.log = self.ctx.log_store.open(transfer_log_name(transfer.environment, transfer))
        self.backend = self.ctx.backends.for_environment(transfer.environment)

    async def perform(self) -> None:
        transfer = self.transfer
        assert transfer is not None and self.log is not None

        if transfer.direction == "push" and transfer.backup_before_push:
            await self.log.write("Backing up existing data before restore")
            async with session_scope(self.ctx.session_factory) as db:
                backup = await create_transfer(
                    db,
                    transfer.environment,
                    "pull",
                    transfer.mode,
                    author=transfer.author,
                    queue_token=self.token,
                )
                parent = await get_transfer(db, transfer.id)
                assert parent is not None
                parent.backup_transfer_id = backup.id
            await run_transfer(self.ctx, backup, self.log, self.backend)

        verb = "Backup" if transfer.direction == "pull" else "Restore"
        await self.log.write(f"{verb} of {transfer.mode} on {transfer.environment.full_name()} starting")
        await run_transfer(self.ctx, transfer, self.log, self.backend)
        await self.log.write(f"{verb} finished")

    async def on_failure(self, exc: Exception) -> None:
        await self.write_log(f"Data transfer failed: {exc}")
        if self.transfer is not None:
            await fail_transfer_if_unfinished(self.ctx, self.transfer.id)
