"""Tests for environments and their job logs."""

from deckhand.db.session import session_scope
from deckhand.logs.names import deployment_log_name, letmein_log_name, transfer_log_name
from deckhand.services.environment_service import (
    delete_environment,
    get_environment,
    purge_environment_logs,
)
from deckhand.services.letmein_service import request_access
from deckhand.services.transfer_service import create_transfer


class TestEnvironment:
    async def test_full_name(self, environment):
        assert environment.full_name() == "Shop:UAT"
        assert environment.full_name(".") == "Shop.UAT"

    async def test_get_environment_loads_project(self, session_factory, environment):
        async with session_scope(session_factory) as db:
            env = await get_environment(db, environment.id)

        assert env.project.name == "Shop"


class TestPurgeEnvironmentLogs:
    async def test_removes_every_job_log(self, ctx, environment, make_deployment):
        deployment = await make_deployment()
        await ctx.log_store.write(deployment_log_name(environment, deployment), "deploying")
        async with session_scope(ctx.session_factory) as db:
            transfer = await create_transfer(db, environment, "pull", "db")
        await ctx.log_store.write(transfer_log_name(environment, transfer), "backing up")
        async with session_scope(ctx.session_factory) as db:
            letmein, _ = await request_access(db, ctx.queue, ctx.log_store, environment, "jdoe")
        # a record that never logged anything
        await make_deployment()

        async with session_scope(ctx.session_factory) as db:
            env = await get_environment(db, environment.id)
            deleted = await purge_environment_logs(db, ctx.log_store, env)

        assert deleted == 3
        assert not ctx.log_store.exists(deployment_log_name(environment, deployment))
        assert not ctx.log_store.exists(transfer_log_name(environment, transfer))
        assert not ctx.log_store.exists(letmein_log_name(environment, letmein))

    async def test_delete_environment(self, ctx, environment, make_deployment):
        deployment = await make_deployment()
        await ctx.log_store.write(deployment_log_name(environment, deployment), "deploying")

        async with session_scope(ctx.session_factory) as db:
            await delete_environment(db, ctx.log_store, await get_environment(db, environment.id))

        assert not ctx.log_store.exists(deployment_log_name(environment, deployment))
        async with session_scope(ctx.session_factory) as db:
            assert await get_environment(db, environment.id) is None
