"""Tests for temporary access requests and the job that grants them."""

import pytest

from deckhand.db.session import session_scope
from deckhand.errors import BackendExecutionError, ValidationError
from deckhand.logs.deploy_log import MASK
from deckhand.logs.names import letmein_log_name
from deckhand.queue.job_queue import JobStatus
from deckhand.services.letmein_service import (
    PASSWORD_LENGTH,
    access_status,
    generate_password,
    get_letmein,
    request_access,
)


async def _request(ctx, environment, **kwargs):
    async with session_scope(ctx.session_factory) as db:
        return await request_access(
            db,
            ctx.queue,
            ctx.log_store,
            environment,
            username="jdoe",
            requester="Jane Doe",
            requester_email="jane@example.com",
            **kwargs,
        )


class TestGeneratePassword:
    def test_length(self):
        assert len(generate_password()) == PASSWORD_LENGTH

    def test_no_characters_that_break_logins(self):
        for _ in range(200):
            password = generate_password()
            assert not set(password) & set("/@\"' .,")

    def test_random(self):
        assert len({generate_password() for _ in range(50)}) == 50


class TestRequestAccess:
    async def test_writes_audit_lines_and_queues(self, ctx, environment):
        letmein, password = await _request(ctx, environment)

        async with session_scope(ctx.session_factory) as db:
            stored = await get_letmein(db, letmein.id)
        assert stored.queue_token
        assert stored.requester == "Jane Doe"
        assert len(password) == PASSWORD_LENGTH

        log = await ctx.log_store.read(letmein_log_name(environment, letmein))
        assert "Temporary access request to Shop:UAT initiated by Jane Doe (jane@example.com)" in log
        assert f"Temporary access request queued as job {stored.queue_token}" in log
        assert await access_status(ctx.queue, stored) == "Queued"

    async def test_username_required(self, ctx, environment):
        async with session_scope(ctx.session_factory) as db:
            with pytest.raises(ValidationError):
                await request_access(db, ctx.queue, ctx.log_store, environment, username="")


class TestLetmeinJob:
    async def test_grants_access(self, ctx, backend, environment, run_next_job):
        letmein, password = await _request(ctx, environment, password="Xy12ab34Cd56ef78")

        assert await run_next_job(["letmein"]) == JobStatus.COMPLETE

        assert backend.letmein_calls == [("jdoe", "Xy12ab34Cd56ef78")]
        assert await access_status(ctx.queue, letmein) == "Complete"
        log = await ctx.log_store.read(letmein_log_name(environment, letmein))
        assert "requested by Jane Doe" in log
        assert "Temporary access granted" in log
        assert password not in log
        assert f"--password {MASK}" in log

    async def test_backend_failure(self, ctx, backend, environment, run_next_job):
        backend.letmein_error = RuntimeError("cms unreachable")
        letmein, _ = await _request(ctx, environment)

        with pytest.raises(BackendExecutionError, match="letmein failed: cms unreachable"):
            await run_next_job(["letmein"])

        assert await access_status(ctx.queue, letmein) == "Failed"
        log = await ctx.log_store.read(letmein_log_name(environment, letmein))
        assert "Temporary access request failed" in log
