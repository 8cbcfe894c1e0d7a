"""Queue worker main loop.

Entrypoint: python -m deckhand.worker

The worker:
1. Connects to the database and Redis
2. Polls the configured queues (highest priority first) every few seconds
3. Runs up to ``max_concurrent`` jobs at once as asyncio tasks
4. Refreshes the queue status of the jobs it runs, and periodically fails
   orphaned in-flight deployments
5. On SIGTERM/SIGINT stops taking jobs and drains the running ones
"""

import asyncio
import signal

from deckhand.backends import build_registry
from deckhand.config import settings
from deckhand.db.models import Deployment
from deckhand.db.session import close_db, get_db_health, get_session_factory, init_db, session_scope
from deckhand.errors import ValidationError
from deckhand.jobs import JobContext, make_job, run_job
from deckhand.jobs.base import Job
from deckhand.logging_config import configure_logging, get_logger
from deckhand.logs.deploy_log import LogStore
from deckhand.queue.job_queue import JobQueue, JobStatus
from deckhand.redis.client import close_redis, get_redis_client, get_redis_health, init_redis
from deckhand.services.status_service import sweep_orphaned_deployments

logger = get_logger(__name__)

DRAIN_TIMEOUT_SECONDS = 120


class Worker:
    """Pulls jobs off the queue and runs them."""

    def __init__(
        self,
        ctx: JobContext,
        queues: list[str] | None = None,
        max_concurrent: int | None = None,
        poll_interval: float | None = None,
        sweep_interval: float | None = None,
    ) -> None:
        worker_cfg = ctx.settings.worker
        self.ctx = ctx
        self.active_tasks: dict[str, asyncio.Task] = {}  # token → task
        self._queues = queues or list(worker_cfg.queues)
        self._max_concurrent = max_concurrent or worker_cfg.max_concurrent
        self._poll_interval = poll_interval if poll_interval is not None else worker_cfg.poll_interval_seconds
        self._sweep_interval = (
            sweep_interval if sweep_interval is not None else worker_cfg.sweep_interval_seconds
        )
        self._shutdown = asyncio.Event()

    def stop(self) -> None:
        self._shutdown.set()

    async def run(self) -> None:
        """Run the loops until stop() is called."""
        logger.info("Worker started", queues=self._queues, max_concurrent=self._max_concurrent)
        await asyncio.gather(
            self._poll_loop(),
            self._sweep_loop(),
            self._shutdown_waiter(),
        )

    async def _wait(self, seconds: float) -> bool:
        """Sleep for ``seconds``; True if shutdown was signalled meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
            return True
        except TimeoutError:
            return False

    async def _shutdown_waiter(self) -> None:
        await self._shutdown.wait()
        logger.info("Shutdown signal received, draining active jobs...")

        if self.active_tasks:
            _, pending = await asyncio.wait(
                self.active_tasks.values(),
                timeout=DRAIN_TIMEOUT_SECONDS,
            )
            for task in pending:
                logger.warning("Cancelling job that did not finish", task=task.get_name())
                task.cancel()
            # cancelled jobs still run their failure hooks
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _poll_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                while len(self.active_tasks) < self._max_concurrent and await self.poll_once():
                    pass
            except Exception as e:
                logger.error("Poll failed", error=str(e))

            self._reap()
            try:
                await self.heartbeat_once()
            except Exception as e:
                logger.error("Heartbeat failed", error=str(e))
            if await self._wait(self._poll_interval):
                return

    async def _sweep_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("Orphan sweep failed", error=str(e))

            if await self._wait(self._sweep_interval):
                return

    def _reap(self) -> None:
        done = [token for token, task in self.active_tasks.items() if task.done()]
        for token in done:
            self.active_tasks.pop(token)

    async def heartbeat_once(self) -> int:
        """Mark every job this worker is running as still alive."""
        refreshed = 0
        for token in list(self.active_tasks):
            if await self.ctx.queue.heartbeat(token):
                refreshed += 1
        return refreshed

    async def poll_once(self) -> bool:
        """Reserve one job and start it. False when every queue is empty."""
        queued = await self.ctx.queue.reserve(self._queues)
        if queued is None:
            return False

        try:
            job = make_job(self.ctx, queued)
        except ValidationError as e:
            logger.error("Discarding job", token=queued.token, error=str(e))
            await self.ctx.queue.set_status(queued.token, JobStatus.FAILED)
            return True

        task = asyncio.create_task(self._execute(job, queued.token), name=f"{queued.job_type}:{queued.token}")
        self.active_tasks[queued.token] = task
        return True

    async def _execute(self, job: Job, token: str) -> None:
        try:
            await run_job(job, self.ctx.queue, token)
        except Exception as e:
            # already recorded as Failed on the queue and in the job log
            logger.info("Job ended with error", token=token, error=str(e))

    async def sweep_once(self) -> list[Deployment]:
        async with session_scope(self.ctx.session_factory) as db:
            return await sweep_orphaned_deployments(
                db,
                self.ctx.queue,
                self.ctx.log_store,
                window=self.ctx.concurrency_window,
            )


def build_context() -> JobContext:
    """Job context from the initialized database, Redis and settings."""
    return JobContext(
        session_factory=get_session_factory(),
        queue=JobQueue(
            get_redis_client(),
            key_prefix=settings.queue.key_prefix,
            status_ttl_seconds=settings.queue.status_ttl_seconds,
        ),
        log_store=LogStore(settings.logs.root_dir),
        backends=build_registry(settings.backends),
        settings=settings,
    )


def _handle_signals(worker: Worker) -> None:
    """Register signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, worker.stop)


async def serve() -> None:
    await init_db()
    await init_redis()
    try:
        logger.info(
            "Infrastructure ready",
            database=await get_db_health(),
            redis=await get_redis_health(),
        )
        worker = Worker(build_context())
        _handle_signals(worker)
        await worker.run()
    finally:
        await close_redis()
        await close_db()


def main() -> None:
    """Main entry point for the worker."""
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
    logger.info("Starting Deckhand worker")

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
