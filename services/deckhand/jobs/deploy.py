"""The deployment job.

Order of work:
1. Resolve the deployment, its environment, backend and log; apply ``deploy``.
2. Record the pre-deploy backup transfer when one is wanted.
3. Refuse to go on while another deployment is in flight on the environment.
4. Run the backup in-process, into the same log.
5. Call the backend's deploy() and apply ``complete`` (or ``aborted``).

A busy environment is never backed up: the conflict check runs first.
"""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from deckhand.db.models import DataTransfer, Deployment, Environment
from deckhand.db.session import session_scope
from deckhand.errors import ConflictError, NotFoundError
from deckhand.jobs.base import Job, backend_call, is_truthy
from deckhand.jobs.transfer import fail_transfer_if_unfinished, run_transfer
from deckhand.logging_config import get_logger
from deckhand.logs.names import deployment_log_name
from deckhand.services.concurrency_guard import has_conflict, running_deployments
from deckhand.services.deployment_service import current_build, get_deployment
from deckhand.services.transfer_service import create_transfer
from deckhand.state_machine import (
    DEPLOYMENT_MACHINE,
    TR_ABORTED,
    TR_COMPLETE,
    TR_DEPLOY,
    TR_FAIL,
    DeploymentState,
)

logger = get_logger(__name__)


class DeployJob(Job):
    """Runs a deployment through the environment's backend."""

    deployment: Deployment | None = None
    backup_transfer: DataTransfer | None = None
    _aborted_before_start = False

    @property
    def deployment_id(self) -> uuid.UUID:
        return uuid.UUID(self.args["deployment_id"])

    async def _load(self, db: AsyncSession) -> Deployment:
        deployment = await get_deployment(db, self.deployment_id)
        if deployment is None:
            raise NotFoundError("Deployment", self.deployment_id)
        return deployment

    async def set_up(self) -> None:
        async with session_scope(self.ctx.session_factory) as db:
            deployment = await self._load(db)
            self.deployment = deployment
            self.log = self.ctx.log_store.open(
                deployment_log_name(deployment.environment, deployment)
            )

            if deployment.state == DeploymentState.ABORTING:
                await DEPLOYMENT_MACHINE.apply(db, deployment, TR_ABORTED)
                self._aborted_before_start = True
                return

            self.backend = self.ctx.backends.for_environment(deployment.environment)
            await DEPLOYMENT_MACHINE.apply(db, deployment, TR_DEPLOY)

    async def perform(self) -> None:
        deployment = self.deployment
        assert deployment is not None and self.log is not None
        if self._aborted_before_start:
            await self.log.write("Deployment aborted before it started")
            return

        environment = deployment.environment
        await self.log.write(f"Deploying {deployment.sha} to {environment.full_name()}")

        await self._prepare_backup(deployment, environment)
        await self._check_conflicts(deployment, environment)

        if self.backup_transfer is not None:
            await self.log.write("Backing up existing data")
            await run_transfer(self.ctx, self.backup_transfer, self.log, self.backend)

        async with backend_call("deploy"):
            await self.backend.deploy(environment, self.log, environment.project, self.args)

        async with session_scope(self.ctx.session_factory) as db:
            deployment = await self._load(db)
            if deployment.state == DeploymentState.ABORTING:
                await DEPLOYMENT_MACHINE.apply(db, deployment, TR_ABORTED)
                outcome = "Deployment aborted"
            else:
                await DEPLOYMENT_MACHINE.apply(db, deployment, TR_COMPLETE)
                outcome = "Deployment complete"
        self.deployment = deployment
        await self.log.write(outcome)

    async def _prepare_backup(self, deployment: Deployment, environment: Environment) -> None:
        if not is_truthy(self.args.get("predeploy_backup")):
            return
        backup_mode = self.args.get("backup_mode") or self.ctx.settings.deploy.default_backup_mode

        async with session_scope(self.ctx.session_factory) as db:
            # no live code means nothing worth backing up
            if await current_build(db, environment.id, exclude_id=deployment.id) is None:
                await self.log.write("No current build on the environment; skipping backup")
                return
            self.backup_transfer = await create_transfer(
                db,
                environment,
                "pull",
                backup_mode,
                author=deployment.deployer,
                backup_of_deployment_id=deployment.id,
                queue_token=self.token,
            )

    async def _check_conflicts(self, deployment: Deployment, environment: Environment) -> None:
        window = self.ctx.concurrency_window
        async with session_scope(self.ctx.session_factory) as db:
            if not await has_conflict(db, environment.id, deployment.id, window):
                return
            running = await running_deployments(db, environment.id, exclude_id=deployment.id, window=window)

        # finished between the two reads
        if not running:
            return
        other = running[0]
        message = (
            "Error: another deployment is in progress "
            f"(started at {other.created_at:%Y-%m-%d %H:%M:%S} by {other.deployer or 'unknown'})"
        )
        await self.log.write(message)
        raise ConflictError(message, conflicting_id=other.id)

    async def on_failure(self, exc: Exception) -> None:
        await self.write_log(f"Deployment failed: {exc}")

        async with session_scope(self.ctx.session_factory) as db:
            deployment = await get_deployment(db, self.deployment_id)
            if deployment is not None and DEPLOYMENT_MACHINE.can(deployment.state, TR_FAIL):
                await DEPLOYMENT_MACHINE.apply(db, deployment, TR_FAIL)

        if self.backup_transfer is not None:
            await fail_transfer_if_unfinished(self.ctx, self.backup_transfer.id)
