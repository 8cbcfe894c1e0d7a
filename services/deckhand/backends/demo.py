"""
Demo deployment backend.

Touches no servers. Writes simulated progress into the job log, which is
enough to exercise the whole orchestration path in development.
"""

import asyncio
from typing import Any

from deckhand.backends.protocol import DeployOption, DeploymentStrategy, with_option_defaults
from deckhand.db.models import DataTransfer, Environment, Project
from deckhand.logs.deploy_log import DeployLog


class DemoBackend:
    """Backend that pretends to deploy."""

    def __init__(self, step_delay: float = 0.0) -> None:
        self._step_delay = step_delay

    def plan_deploy(self, environment: Environment, options: dict[str, Any]) -> DeploymentStrategy:
        options = with_option_defaults(self.get_deploy_options(environment), options)
        sha = options.get("sha", "")
        return DeploymentStrategy(
            environment_id=str(environment.id),
            sha=sha,
            ref_name=options.get("ref_name", ""),
            changes={"code": {"to": sha}},
            options=dict(options),
        )

    async def deploy(
        self,
        environment: Environment,
        log: DeployLog,
        project: Project,
        options: dict[str, Any],
    ) -> None:
        sha = options.get("sha", "")
        await log.write(f"[demo] Deploying {sha} to {environment.full_name()}")
        for step in ("Checking out code", "Building", "Switching release"):
            await asyncio.sleep(self._step_delay)
            await log.write(f"[demo] {step}")
        await log.write(f"[demo] Deployed {project.name} {sha}")

    async def data_transfer(self, transfer: DataTransfer, log: DeployLog) -> None:
        verb = "Backing up" if transfer.direction == "pull" else "Restoring"
        await log.write(f"[demo] {verb} {transfer.mode} on {transfer.environment.full_name()}")
        await asyncio.sleep(self._step_delay)
        await log.write("[demo] Transfer done")

    async def letmein(
        self,
        environment: Environment,
        log: DeployLog,
        username: str,
        password: str,
    ) -> None:
        await log.write(f"[demo] Creating user {username} --password {password}")
        await asyncio.sleep(self._step_delay)
        await log.write(f"[demo] Access granted on {environment.full_name()}")

    def get_deploy_options(self, environment: Environment) -> list[DeployOption]:
        return [DeployOption(name="full_deploy", title="Full deploy", default=False)]
