"""Tests for standalone backup and restore jobs."""

import pytest

from deckhand.db.models import DataArchive
from deckhand.db.session import session_scope
from deckhand.errors import BackendExecutionError
from deckhand.logs.names import transfer_log_name
from deckhand.queue.job_queue import JobStatus
from deckhand.services.transfer_service import (
    TransferStatus,
    create_transfer,
    get_transfer,
    start_transfer,
)


async def _create_and_start(ctx, environment, direction="pull", mode="all", **kwargs):
    async with session_scope(ctx.session_factory) as db:
        transfer = await create_transfer(db, environment, direction, mode, author="ops", **kwargs)
        token = await start_transfer(db, ctx.queue, transfer)
    return transfer, token


async def _reload(ctx, transfer_id):
    async with session_scope(ctx.session_factory) as db:
        return await get_transfer(db, transfer_id)


class TestDataTransferJob:
    async def test_backup_finishes(self, ctx, backend, environment, run_next_job):
        transfer, token = await _create_and_start(ctx, environment)
        assert (await _reload(ctx, transfer.id)).status == TransferStatus.QUEUED

        assert await run_next_job(["snapshot"]) == JobStatus.COMPLETE

        assert (await _reload(ctx, transfer.id)).status == TransferStatus.FINISHED
        assert await ctx.queue.status_of(token) == JobStatus.COMPLETE
        assert backend.transfer_calls == [("pull", "all")]
        log = await ctx.log_store.read(transfer_log_name(environment, transfer))
        assert "fake pull of all" in log
        assert "Backup finished" in log

    async def test_failure_marks_transfer_failed(self, ctx, backend, environment, run_next_job):
        backend.transfer_error = RuntimeError("no space left")
        transfer, token = await _create_and_start(ctx, environment, mode="db")

        with pytest.raises(BackendExecutionError, match="no space left"):
            await run_next_job(["snapshot"])

        assert (await _reload(ctx, transfer.id)).status == TransferStatus.FAILED
        assert await ctx.queue.status_of(token) == JobStatus.FAILED
        log = await ctx.log_store.read(transfer_log_name(environment, transfer))
        assert "Data transfer failed" in log

    async def test_restore_with_backup_first(self, ctx, backend, environment, run_next_job):
        async with session_scope(ctx.session_factory) as db:
            archive = DataArchive(environment_id=environment.id, mode="db", filename="snap.tar.gz")
            db.add(archive)
        transfer, token = await _create_and_start(
            ctx, environment, direction="push", mode="db", data_archive=archive, backup_before_push=True
        )

        assert await run_next_job(["snapshot"]) == JobStatus.COMPLETE

        restored = await _reload(ctx, transfer.id)
        assert restored.status == TransferStatus.FINISHED
        assert restored.data_archive_id == archive.id
        assert restored.backup_transfer_id is not None
        backup = await _reload(ctx, restored.backup_transfer_id)
        assert (backup.direction, backup.mode, backup.status) == ("pull", "db", TransferStatus.FINISHED)
        assert backup.queue_token == token
        assert backend.transfer_calls == [("pull", "db"), ("push", "db")]

    async def test_failed_backup_stops_restore(self, ctx, backend, environment, run_next_job):
        backend.transfer_error = RuntimeError("backup broke")
        transfer, _ = await _create_and_start(
            ctx, environment, direction="push", mode="all", backup_before_push=True
        )

        with pytest.raises(BackendExecutionError):
            await run_next_job(["snapshot"])

        assert backend.transfer_calls == [("pull", "all")]
        restored = await _reload(ctx, transfer.id)
        assert restored.status == TransferStatus.FAILED
        assert (await _reload(ctx, restored.backup_transfer_id)).status == TransferStatus.FAILED
