"""
Top-level test configuration for Deckhand.
"""

import os

# Ensure test-friendly defaults
os.environ.setdefault("DECKHAND_JSON_LOGS", "false")
os.environ.setdefault("DECKHAND_LOG_LEVEL", "DEBUG")
os.environ.setdefault("DECKHAND_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402
from datetime import datetime  # noqa: E402
from typing import Any  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from deckhand.backends import BackendRegistry  # noqa: E402
from deckhand.backends.protocol import DeployOption, DeploymentStrategy  # noqa: E402
from deckhand.config import Settings  # noqa: E402
from deckhand.db.models import Base, DataTransfer, Deployment, Environment, Project  # noqa: E402
from deckhand.db.session import make_session_factory, session_scope  # noqa: E402
from deckhand.jobs import JobContext, make_job, run_job  # noqa: E402
from deckhand.logs.deploy_log import DeployLog, LogStore  # noqa: E402
from deckhand.queue.job_queue import JobQueue, JobStatus  # noqa: E402
from deckhand.services.deployment_service import create_deployment  # noqa: E402
from deckhand.services.environment_service import create_environment, create_project  # noqa: E402
from deckhand.state_machine import DeploymentState  # noqa: E402


class FakeBackend:
    """Records every call; each operation can be told to raise."""

    def __init__(self) -> None:
        self.deploy_calls: list[dict[str, Any]] = []
        self.transfer_calls: list[tuple[str, str]] = []
        self.letmein_calls: list[tuple[str, str]] = []
        self.deploy_error: Exception | None = None
        self.transfer_error: Exception | None = None
        self.letmein_error: Exception | None = None
        self.on_deploy: Callable[[], Awaitable[None]] | None = None

    def plan_deploy(self, environment: Environment, options: dict[str, Any]) -> DeploymentStrategy:
        return DeploymentStrategy(str(environment.id), options.get("sha", ""), options=dict(options))

    async def deploy(
        self, environment: Environment, log: DeployLog, project: Project, options: dict[str, Any]
    ) -> None:
        self.deploy_calls.append(dict(options))
        await log.write(f"fake deploy of {options.get('sha')} to {project.name}")
        if self.on_deploy is not None:
            await self.on_deploy()
        if self.deploy_error is not None:
            raise self.deploy_error

    async def data_transfer(self, transfer: DataTransfer, log: DeployLog) -> None:
        self.transfer_calls.append((transfer.direction, transfer.mode))
        await log.write(f"fake {transfer.direction} of {transfer.mode}")
        if self.transfer_error is not None:
            raise self.transfer_error

    async def letmein(
        self, environment: Environment, log: DeployLog, username: str, password: str
    ) -> None:
        self.letmein_calls.append((username, password))
        await log.write(f"create-user {username} --password {password}")
        if self.letmein_error is not None:
            raise self.letmein_error

    def get_deploy_options(self, environment: Environment) -> list[DeployOption]:
        return []


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Session factory over a throw-away SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'deckhand.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def redis() -> AsyncGenerator[fakeredis.FakeAsyncRedis]:
    """In-process Redis, isolated per test."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def job_queue(redis) -> JobQueue:
    return JobQueue(redis, key_prefix="test:", status_ttl_seconds=60)


@pytest.fixture
def log_store(tmp_path) -> LogStore:
    return LogStore(tmp_path / "logs")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def ctx(session_factory, job_queue, log_store, backend) -> JobContext:
    registry = BackendRegistry(default="fake")
    registry.register("fake", lambda: backend)
    return JobContext(
        session_factory=session_factory,
        queue=job_queue,
        log_store=log_store,
        backends=registry,
        settings=Settings(),
    )


@pytest_asyncio.fixture
async def environment(session_factory) -> Environment:
    """The Shop project's UAT environment."""
    async with session_scope(session_factory) as db:
        project = await create_project(db, "Shop")
        env = await create_environment(db, project, "UAT", backend_identifier="fake")
    return env


@pytest.fixture
def make_deployment(session_factory, environment):
    """Create a deployment directly in any state, bypassing the workflow."""

    async def _make(
        state: str = DeploymentState.NEW,
        sha: str = "abc123",
        created_at: datetime | None = None,
        env: Environment | None = None,
        **kwargs: Any,
    ) -> Deployment:
        async with session_scope(session_factory) as db:
            deployment = await create_deployment(db, env or environment, sha, **kwargs)
            deployment.state = state
            if created_at is not None:
                deployment.created_at = created_at
        return deployment

    return _make


@pytest.fixture
def run_next_job(ctx):
    """Reserve the next queued job and run it like a worker would."""

    async def _run(queues: list[str] | None = None) -> JobStatus:
        queued = await ctx.queue.reserve(queues or ["deploy", "snapshot", "letmein"])
        assert queued is not None, "nothing queued"
        return await run_job(make_job(ctx, queued), ctx.queue, queued.token)

    return _run
