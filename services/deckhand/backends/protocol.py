"""
Deployment backend protocol and types for Deckhand.

Defines the DeploymentBackend Protocol that every backend must satisfy,
along with the strategy and option types it returns. How a backend reaches
the servers it deploys to is its own business; the orchestrator only relies
on this contract.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from deckhand.db.models import DataTransfer, Environment, Project
from deckhand.logs.deploy_log import DeployLog

# --- Data Types ---


@dataclass(frozen=True)
class DeployOption:
    """A switch offered to operators when they plan a deployment."""

    name: str
    title: str
    default: bool = False


@dataclass
class DeploymentStrategy:
    """What a deployment will do, as planned by the backend.

    ``options`` carries everything the backend needs later, including the
    sha; it is stored on the deployment and handed back to deploy().
    """

    environment_id: str
    sha: str
    ref_name: str = ""
    changes: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)

    def to_job_args(self) -> dict[str, Any]:
        """Option bag merged into the queued job's arguments."""
        return {**self.options, "sha": self.sha, "ref_name": self.ref_name}


def with_option_defaults(offered: list[DeployOption], options: dict[str, Any]) -> dict[str, Any]:
    """``options`` plus the default of every offered switch it leaves unset."""
    return {**{o.name: o.default for o in offered}, **options}


# --- Protocol ---


@runtime_checkable
class DeploymentBackend(Protocol):
    """Protocol defining the deployment backend interface.

    All long-running methods are async and stream their progress into the
    job log as they run. Any exception they raise fails the job.
    """

    def plan_deploy(self, environment: Environment, options: dict[str, Any]) -> DeploymentStrategy:
        """Work out what deploying ``options['sha']`` to ``environment`` would do."""
        ...

    async def deploy(
        self,
        environment: Environment,
        log: DeployLog,
        project: Project,
        options: dict[str, Any],
    ) -> None:
        """Deploy the code revision named in ``options['sha']``."""
        ...

    async def data_transfer(self, transfer: DataTransfer, log: DeployLog) -> None:
        """Run a backup (pull) or restore (push) described by ``transfer``."""
        ...

    async def letmein(
        self,
        environment: Environment,
        log: DeployLog,
        username: str,
        password: str,
    ) -> None:
        """Provision temporary CMS credentials on the environment."""
        ...

    def get_deploy_options(self, environment: Environment) -> list[DeployOption]:
        """Options operators may toggle for deployments to ``environment``."""
        ...
