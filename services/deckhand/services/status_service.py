"""Job status reporting and reconciliation.

A job has two independently updated signals: the record's own state, and the
queue's status for its token. The record state is authoritative. A queue
status that contradicts it (for example Failed while the deployment is still
Deploying) is reported as inconsistent, and the periodic sweep fails such
deployments once they are older than the concurrency window. A Running
status whose worker has stopped refreshing it for a whole window counts as
abandoned: that is what a killed worker leaves behind.
"""

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deckhand.db.models import DataTransfer, Deployment, utc_now
from deckhand.errors import InvalidTransitionError, LogIOError
from deckhand.logging_config import get_logger
from deckhand.logs.deploy_log import LogStore
from deckhand.logs.names import deployment_log_name, transfer_log_name
from deckhand.queue.job_queue import JobQueue, JobStatus, StatusRecord
from deckhand.services.concurrency_guard import DEFAULT_WINDOW
from deckhand.services.transfer_service import FINISHED_TRANSFER_STATUSES, TransferStatus
from deckhand.state_machine import DEPLOYMENT_MACHINE, IN_FLIGHT_STATES, TR_FAIL, DeploymentState

logger = get_logger(__name__)

# Queue statuses meaning nothing is executing the job any more
_DEAD_QUEUE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.COMPLETE, JobStatus.INVALID})


def is_abandoned(record: StatusRecord, window: timedelta) -> bool:
    """Running, but not refreshed by any worker for longer than ``window``."""
    if record.status != JobStatus.RUNNING:
        return False
    return record.updated_at < utc_now().timestamp() - window.total_seconds()


@dataclass
class JobStatusReport:
    state: str
    queue_status: JobStatus
    log: str
    consistent: bool


def is_consistent(
    state: str,
    terminal: bool,
    success_state: str,
    queue_status: JobStatus,
    has_token: bool,
) -> bool:
    """Whether a record state and its queue status can both be true."""
    if not terminal:
        if queue_status in (JobStatus.FAILED, JobStatus.COMPLETE):
            return False
        # an expired or lost token for a job that should still be running
        return not (has_token and queue_status == JobStatus.INVALID)
    if state == success_state:
        return queue_status != JobStatus.FAILED
    if state == DeploymentState.FAILED:
        return queue_status != JobStatus.COMPLETE
    return True


async def job_status(
    queue: JobQueue,
    log_store: LogStore,
    deployment: Deployment,
    window: timedelta = DEFAULT_WINDOW,
) -> JobStatusReport:
    """State, queue status and log of a deployment, reconciled."""
    record = await queue.status_record(deployment.queue_token)
    queue_status = record.status
    log = await log_store.read(deployment_log_name(deployment.environment, deployment))
    terminal = DEPLOYMENT_MACHINE.is_terminal(deployment.state)
    consistent = is_consistent(
        deployment.state,
        terminal,
        DeploymentState.COMPLETED,
        queue_status,
        bool(deployment.queue_token),
    ) and (terminal or not is_abandoned(record, window))
    if not consistent:
        logger.warning(
            "Deployment state disagrees with queue status",
            deployment_id=str(deployment.id),
            state=deployment.state,
            queue_status=queue_status.value,
        )
    return JobStatusReport(deployment.state, queue_status, log, consistent)


async def transfer_status(
    queue: JobQueue, log_store: LogStore, transfer: DataTransfer
) -> JobStatusReport:
    """State, queue status and log of a data transfer, reconciled."""
    queue_status = await queue.status_of(transfer.queue_token)
    log = await log_store.read(transfer_log_name(transfer.environment, transfer))
    # pre-deploy backups share the deployment's token and are never queued themselves
    consistent = transfer.backup_of_deployment_id is not None or is_consistent(
        transfer.status,
        transfer.status in FINISHED_TRANSFER_STATUSES,
        TransferStatus.FINISHED,
        queue_status,
        bool(transfer.queue_token),
    )
    return JobStatusReport(transfer.status, queue_status, log, consistent)


async def sweep_orphaned_deployments(
    db: AsyncSession,
    queue: JobQueue,
    log_store: LogStore,
    window: timedelta = DEFAULT_WINDOW,
) -> list[Deployment]:
    """Fail in-flight deployments older than ``window`` that no worker is running.

    A deployment is orphaned when its queue status says the job is over
    (Failed, Complete), is unknown (Invalid), or is Running with no
    heartbeat within ``window``. Returns the deployments failed.
    """
    result = await db.execute(
        select(Deployment).where(
            Deployment.state.in_(sorted(IN_FLIGHT_STATES)),
            Deployment.created_at <= utc_now() - window,
        )
    )
    swept: list[Deployment] = []
    for deployment in result.unique().scalars().all():
        record = await queue.status_record(deployment.queue_token)
        queue_status = record.status
        if queue_status not in _DEAD_QUEUE_STATUSES and not is_abandoned(record, window):
            continue

        try:
            await DEPLOYMENT_MACHINE.apply(db, deployment, TR_FAIL)
        except InvalidTransitionError as e:
            # another worker got there first
            logger.warning("Orphan sweep skipped deployment", deployment_id=str(deployment.id), error=str(e))
            continue

        swept.append(deployment)
        logger.warning(
            "Orphaned deployment failed",
            deployment_id=str(deployment.id),
            token=deployment.queue_token,
            queue_status=queue_status.value,
        )
        try:
            await log_store.write(
                deployment_log_name(deployment.environment, deployment),
                f"Deployment marked as failed: its job is no longer running (queue status {queue_status.value})",
            )
        except LogIOError as e:
            logger.warning("Could not write to deployment log", error=str(e))

    return swept
