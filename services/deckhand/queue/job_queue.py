"""Redis-backed job queue with per-job status tracking.

Layout (all keys carry the configured prefix, ``deckhand:`` by default):

    queue:<name>          list of JSON payloads, consumed from the left
    queues                set of every queue name ever enqueued to
    job:<token>:status    JSON {"status": ..., "updated_at": ...}

A token is handed out at enqueue time and is the only handle callers keep.
Statuses of finished jobs expire after ``status_ttl_seconds``; an unknown or
expired token reads as Invalid. Workers refresh the ``updated_at`` of jobs
they are running, so a Running status that stops changing means its worker
is gone.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from deckhand.logging_config import get_logger

logger = get_logger(__name__)


class JobStatus(StrEnum):
    """Queue-side status of a job, independent of any record's state."""

    WAITING = "Waiting"
    RUNNING = "Running"
    FAILED = "Failed"
    COMPLETE = "Complete"
    INVALID = "Invalid"


FINISHED_STATUSES = {JobStatus.FAILED, JobStatus.COMPLETE}


@dataclass(frozen=True)
class StatusRecord:
    """A job's queue status and when it was last written (epoch seconds)."""

    status: JobStatus
    updated_at: int = 0


@dataclass(frozen=True)
class QueuedJob:
    """A payload reserved off a queue by a worker."""

    token: str
    queue: str
    job_type: str
    args: dict[str, Any] = field(default_factory=dict)
    queued_at: float = 0.0


class JobQueue:
    """Enqueue jobs, reserve them for workers, and track their status."""

    def __init__(
        self,
        redis: aioredis.Redis,
        key_prefix: str = "deckhand:",
        status_ttl_seconds: int = 86400,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._status_ttl = status_ttl_seconds

    def _queue_key(self, queue_name: str) -> str:
        return f"{self._prefix}queue:{queue_name}"

    def _status_key(self, token: str) -> str:
        return f"{self._prefix}job:{token}:status"

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        args: dict[str, Any],
        track_status: bool = True,
    ) -> str:
        """Push a job onto a queue and return its token."""
        token = uuid.uuid4().hex
        payload = json.dumps(
            {"class": job_type, "args": args, "id": token, "queued_at": time.time()}
        )

        if track_status:
            await self.set_status(token, JobStatus.WAITING)
        await self._redis.sadd(f"{self._prefix}queues", queue_name)
        await self._redis.rpush(self._queue_key(queue_name), payload)

        logger.info("Job enqueued", queue=queue_name, job_type=job_type, token=token)
        return token

    @staticmethod
    def _encode_status(status: JobStatus) -> str:
        return json.dumps({"status": status.value, "updated_at": int(time.time())})

    async def set_status(self, token: str, status: JobStatus) -> None:
        """Record a job's status. Finished statuses expire after the TTL."""
        ttl = self._status_ttl if status in FINISHED_STATUSES else None
        await self._redis.set(self._status_key(token), self._encode_status(status), ex=ttl)

    def _decode_status(self, token: str, raw: str | None) -> StatusRecord:
        if raw is None:
            return StatusRecord(JobStatus.INVALID)
        try:
            data = json.loads(raw)
            return StatusRecord(JobStatus(data["status"]), int(data.get("updated_at", 0)))
        except (ValueError, KeyError, TypeError):
            logger.warning("Unreadable job status", token=token)
            return StatusRecord(JobStatus.INVALID)

    async def status_record(self, token: str | None) -> StatusRecord:
        """Status and last update time for a token; Invalid when unknown."""
        if not token:
            return StatusRecord(JobStatus.INVALID)
        return self._decode_status(token, await self._redis.get(self._status_key(token)))

    async def status_of(self, token: str | None) -> JobStatus:
        """Current status for a token; Invalid when unknown."""
        return (await self.status_record(token)).status

    async def heartbeat(self, token: str) -> bool:
        """Refresh ``updated_at`` of a Running job.

        Any other status is left untouched, including one written by the job
        itself while the heartbeat was in progress. Returns whether the
        status was refreshed.
        """
        key = self._status_key(token)
        async with self._redis.pipeline() as pipe:
            try:
                await pipe.watch(key)
                record = self._decode_status(token, await pipe.get(key))
                if record.status != JobStatus.RUNNING:
                    return False
                pipe.multi()
                pipe.set(key, self._encode_status(JobStatus.RUNNING))
                await pipe.execute()
            except WatchError:
                return False
        return True

    async def reserve(self, queue_names: list[str]) -> QueuedJob | None:
        """Pop the next job, checking queues in priority order."""
        for queue_name in queue_names:
            raw = await self._redis.lpop(self._queue_key(queue_name))
            if raw is None:
                continue
            data = json.loads(raw)
            return QueuedJob(
                token=data["id"],
                queue=queue_name,
                job_type=data["class"],
                args=data.get("args") or {},
                queued_at=data.get("queued_at", 0.0),
            )
        return None

    async def queue_length(self, queue_name: str) -> int:
        return await self._redis.llen(self._queue_key(queue_name))

    async def queues(self) -> set[str]:
        """Every queue name that has ever received a job."""
        return set(await self._redis.smembers(f"{self._prefix}queues"))
