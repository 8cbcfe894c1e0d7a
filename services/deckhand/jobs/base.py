"""Job base class and the runner every queued job goes through.

run_job() owns the queue side of a job's life: Running when it starts,
Complete or Failed when it ends. A job's own on_failure() hook always runs
before the queue status becomes Failed, so the record's terminal state is
written first and the two never disagree for long. A cancelled job goes
through the same failure path before the cancellation propagates.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deckhand.backends import BackendRegistry
from deckhand.config import Settings
from deckhand.errors import BackendExecutionError, DeckhandError, JobCancelledError, LogIOError
from deckhand.logging_config import bind_job_context, clear_job_context, get_logger
from deckhand.logs.deploy_log import DeployLog, LogStore
from deckhand.queue.job_queue import JobQueue, JobStatus

logger = get_logger(__name__)


@dataclass
class JobContext:
    """Everything a job needs, passed explicitly to each job."""

    session_factory: async_sessionmaker[AsyncSession]
    queue: JobQueue
    log_store: LogStore
    backends: BackendRegistry
    settings: Settings

    @property
    def concurrency_window(self) -> timedelta:
        return timedelta(minutes=self.settings.deploy.concurrency_window_minutes)


class Job:
    """A unit of queued work.

    Subclasses implement perform(), and usually set_up() and on_failure().
    """

    def __init__(self, ctx: JobContext, args: dict[str, Any], token: str) -> None:
        self.ctx = ctx
        self.args = args
        self.token = token
        self.log: DeployLog | None = None

    async def set_up(self) -> None:
        pass

    async def perform(self) -> None:
        raise NotImplementedError

    async def on_failure(self, exc: Exception) -> None:
        pass

    async def write_log(self, message: str) -> None:
        """Best-effort log write for failure paths."""
        if self.log is None:
            return
        try:
            await self.log.write(message)
        except LogIOError as e:
            logger.warning("Could not write to job log", error=str(e))


@asynccontextmanager
async def backend_call(operation: str) -> AsyncGenerator[None]:
    """Wrap anything a backend raises in BackendExecutionError."""
    try:
        yield
    except DeckhandError:
        raise
    except Exception as e:
        raise BackendExecutionError(operation, str(e) or type(e).__name__) from e


def is_truthy(value: Any) -> bool:
    """Job argument flag; callers sometimes send the string 'false'."""
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(value)


async def _fail_job(job: Job, queue: JobQueue, token: str, exc: Exception) -> None:
    try:
        await job.on_failure(exc)
    except Exception:
        logger.exception("Job failure hook raised")
    await queue.set_status(token, JobStatus.FAILED)


async def run_job(job: Job, queue: JobQueue, token: str) -> JobStatus:
    """Run a job to completion, tracking its queue status.

    Re-raises whatever the job raised, after on_failure() and after the
    queue status is set to Failed. Cancellation is re-raised the same way,
    with on_failure() receiving a JobCancelledError.
    """
    job_name = type(job).__name__
    bind_job_context(job_name, token)
    try:
        await queue.set_status(token, JobStatus.RUNNING)
        logger.info("Job starting")
        try:
            await job.set_up()
            await job.perform()
        except asyncio.CancelledError:
            logger.error("Job cancelled")
            await _fail_job(job, queue, token, JobCancelledError())
            raise
        except Exception as e:
            logger.error("Job failed", error=str(e), error_type=type(e).__name__)
            await _fail_job(job, queue, token, e)
            raise

        await queue.set_status(token, JobStatus.COMPLETE)
        logger.info("Job finished")
        return JobStatus.COMPLETE
    finally:
        clear_job_context()
