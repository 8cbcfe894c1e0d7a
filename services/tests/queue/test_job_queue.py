"""Tests for the Redis-backed job queue."""

import json
from unittest.mock import AsyncMock

import pytest

from deckhand.queue.job_queue import JobQueue, JobStatus


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = AsyncMock()
    redis.get.return_value = None
    redis.lpop.return_value = None
    return redis


@pytest.fixture
def queue(mock_redis) -> JobQueue:
    return JobQueue(mock_redis, key_prefix="dh:", status_ttl_seconds=600)


class TestEnqueue:
    async def test_pushes_payload_and_returns_token(self, queue, mock_redis):
        token = await queue.enqueue("deploy", "DeployJob", {"deployment_id": "d1"})

        assert len(token) == 32
        mock_redis.sadd.assert_called_once_with("dh:queues", "deploy")
        key, raw = mock_redis.rpush.call_args[0]
        assert key == "dh:queue:deploy"
        payload = json.loads(raw)
        assert payload["class"] == "DeployJob"
        assert payload["args"] == {"deployment_id": "d1"}
        assert payload["id"] == token

    async def test_tracks_status_as_waiting(self, queue, mock_redis):
        token = await queue.enqueue("deploy", "DeployJob", {})

        key, value = mock_redis.set.call_args[0]
        assert key == f"dh:job:{token}:status"
        assert json.loads(value)["status"] == "Waiting"
        assert mock_redis.set.call_args.kwargs["ex"] is None

    async def test_untracked_job_has_no_status(self, queue, mock_redis):
        await queue.enqueue("deploy", "DeployJob", {}, track_status=False)

        mock_redis.set.assert_not_called()

    async def test_tokens_are_unique(self, queue):
        tokens = {await queue.enqueue("deploy", "DeployJob", {}) for _ in range(20)}
        assert len(tokens) == 20


class TestStatus:
    async def test_finished_status_gets_ttl(self, queue, mock_redis):
        await queue.set_status("t1", JobStatus.COMPLETE)

        assert mock_redis.set.call_args.kwargs["ex"] == 600

    async def test_running_status_does_not_expire(self, queue, mock_redis):
        await queue.set_status("t1", JobStatus.RUNNING)

        assert mock_redis.set.call_args.kwargs["ex"] is None

    async def test_reads_stored_status(self, queue, mock_redis):
        mock_redis.get.return_value = json.dumps({"status": "Failed", "updated_at": 1})

        assert await queue.status_of("t1") == JobStatus.FAILED
        mock_redis.get.assert_called_once_with("dh:job:t1:status")

    async def test_status_record_carries_update_time(self, queue, mock_redis):
        mock_redis.get.return_value = json.dumps({"status": "Running", "updated_at": 1700000000})

        record = await queue.status_record("t1")

        assert record.status == JobStatus.RUNNING
        assert record.updated_at == 1700000000

    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token_is_invalid(self, queue, mock_redis, token):
        assert await queue.status_of(token) == JobStatus.INVALID
        mock_redis.get.assert_not_called()

    async def test_unknown_token_is_invalid(self, queue):
        assert await queue.status_of("nope") == JobStatus.INVALID

    async def test_garbage_status_is_invalid(self, queue, mock_redis):
        mock_redis.get.return_value = json.dumps({"status": "Exploded"})

        assert await queue.status_of("t1") == JobStatus.INVALID


class TestReserve:
    async def test_checks_queues_in_priority_order(self, queue, mock_redis):
        payload = json.dumps(
            {"class": "LetmeinJob", "args": {"username": "ops"}, "id": "tok", "queued_at": 1.5}
        )
        mock_redis.lpop.side_effect = [None, payload]

        job = await queue.reserve(["deploy", "letmein"])

        assert [c.args[0] for c in mock_redis.lpop.call_args_list] == [
            "dh:queue:deploy",
            "dh:queue:letmein",
        ]
        assert job.token == "tok"
        assert job.queue == "letmein"
        assert job.job_type == "LetmeinJob"
        assert job.args == {"username": "ops"}
        assert job.queued_at == 1.5

    async def test_empty_queues(self, queue):
        assert await queue.reserve(["deploy", "snapshot"]) is None


class TestAgainstRedis:
    async def test_round_trip(self, job_queue):
        token = await job_queue.enqueue("snapshot", "DataTransferJob", {"transfer_id": "x"})

        assert await job_queue.queue_length("snapshot") == 1
        assert await job_queue.queues() == {"snapshot"}
        assert await job_queue.status_of(token) == JobStatus.WAITING

        job = await job_queue.reserve(["deploy", "snapshot"])
        assert job.token == token
        assert await job_queue.queue_length("snapshot") == 0

        await job_queue.set_status(token, JobStatus.COMPLETE)
        assert await job_queue.status_of(token) == JobStatus.COMPLETE

    async def test_heartbeat_refreshes_running_job(self, job_queue, redis):
        await redis.set("test:job:t1:status", json.dumps({"status": "Running", "updated_at": 0}))

        assert await job_queue.heartbeat("t1")

        record = await job_queue.status_record("t1")
        assert record.status == JobStatus.RUNNING
        assert record.updated_at > 0

    async def test_heartbeat_leaves_finished_job_alone(self, job_queue, redis):
        await job_queue.set_status("t1", JobStatus.COMPLETE)

        assert not await job_queue.heartbeat("t1")

        assert await job_queue.status_of("t1") == JobStatus.COMPLETE
        assert await redis.ttl("test:job:t1:status") > 0

    async def test_heartbeat_never_creates_a_status(self, job_queue, redis):
        assert not await job_queue.heartbeat("gone")

        assert await redis.get("test:job:gone:status") is None
