"""
Subprocess-driven deployment backend.

Runs an operator-configured command for each operation and streams its
combined stdout/stderr into the job log line by line. Argument templates are
formatted with the job's fields:

    {project}, {environment}, {environment_name}, {sha}, {ref_name},
    {direction}, {mode}, {username}, {password}

plus any key of the deployment's option bag. A non-zero exit status fails
the job.
"""

import asyncio
from typing import Any

from deckhand.backends.protocol import DeployOption, DeploymentStrategy, with_option_defaults
from deckhand.config import CommandBackendConfig
from deckhand.db.models import DataTransfer, Environment, Project
from deckhand.errors import ValidationError
from deckhand.logging_config import get_logger
from deckhand.logs.deploy_log import DeployLog

logger = get_logger(__name__)


class CommandFailedError(RuntimeError):
    """The configured command exited non-zero."""

    def __init__(self, argv: list[str], returncode: int) -> None:
        self.argv = argv
        self.returncode = returncode
        super().__init__(f"'{argv[0]}' exited with status {returncode}")


def render_argv(template: list[str], fields: dict[str, Any]) -> list[str]:
    """Format every template argument with ``fields``."""
    try:
        return [arg.format(**fields) for arg in template]
    except KeyError as e:
        raise ValidationError(f"Command template references unknown field {e}") from e


class CommandBackend:
    """Backend that shells out to a deploy tool."""

    def __init__(self, config: CommandBackendConfig) -> None:
        self._config = config

    def _environment_fields(self, environment: Environment) -> dict[str, Any]:
        return {
            "project": environment.project.name,
            "environment": environment.full_name(),
            "environment_name": environment.name,
        }

    async def _run(self, operation: str, template: list[str], fields: dict[str, Any], log: DeployLog) -> None:
        if not template:
            raise ValidationError(f"No command configured for {operation}")

        argv = render_argv(template, fields)
        await log.write(f"Running: {' '.join(argv)}")

        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=self._config.working_dir or None,
        )
        assert process.stdout is not None
        async for raw in process.stdout:
            await log.write(raw.decode("utf-8", errors="replace"))

        returncode = await process.wait()
        logger.info("Backend command finished", operation=operation, returncode=returncode)
        if returncode != 0:
            raise CommandFailedError(argv, returncode)

    def plan_deploy(self, environment: Environment, options: dict[str, Any]) -> DeploymentStrategy:
        options = with_option_defaults(self.get_deploy_options(environment), options)
        return DeploymentStrategy(
            environment_id=str(environment.id),
            sha=options.get("sha", ""),
            ref_name=options.get("ref_name", ""),
            options=dict(options),
        )

    async def deploy(
        self,
        environment: Environment,
        log: DeployLog,
        project: Project,
        options: dict[str, Any],
    ) -> None:
        fields = {"sha": "", "ref_name": "", **options, **self._environment_fields(environment)}
        await self._run("deploy", self._config.deploy, fields, log)

    async def data_transfer(self, transfer: DataTransfer, log: DeployLog) -> None:
        fields = {
            **self._environment_fields(transfer.environment),
            "direction": transfer.direction,
            "mode": transfer.mode,
        }
        await self._run("data_transfer", self._config.data_transfer, fields, log)

    async def letmein(
        self,
        environment: Environment,
        log: DeployLog,
        username: str,
        password: str,
    ) -> None:
        fields = {
            **self._environment_fields(environment),
            "username": username,
            "password": password,
        }
        await self._run("letmein", self._config.letmein, fields, log)

    def get_deploy_options(self, environment: Environment) -> list[DeployOption]:
        return []
