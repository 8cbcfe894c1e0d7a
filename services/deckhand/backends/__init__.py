"""
Deployment backend registry for Deckhand.

Maps backend identifiers to factories. Each job resolves the backend for its
environment once, at start, through BackendRegistry.for_environment().
"""

from __future__ import annotations

from collections.abc import Callable

from deckhand.backends.protocol import DeploymentBackend
from deckhand.config import BackendsConfig, settings
from deckhand.db.models import Environment
from deckhand.errors import ValidationError
from deckhand.logging_config import get_logger

logger = get_logger(__name__)

BackendFactory = Callable[[], DeploymentBackend]


class BackendRegistry:
    """Backend identifiers → factories, plus the allowed-backends policy."""

    def __init__(self, allowed: list[str] | None = None, default: str = "demo") -> None:
        self._factories: dict[str, BackendFactory] = {}
        self._allowed = list(allowed or [])
        self._default = default

    def register(self, identifier: str, factory: BackendFactory) -> None:
        self._factories[identifier] = factory

    @property
    def identifiers(self) -> list[str]:
        return sorted(self._factories)

    def resolve_identifier(self, requested: str) -> str:
        """Pick the backend an environment actually uses.

        Nothing allowed: the default. One allowed: that one. Several: the
        requested identifier if it is allowed, otherwise the first allowed.
        """
        match len(self._allowed):
            case 0:
                return self._default
            case 1:
                return self._allowed[0]
            case _:
                return requested if requested in self._allowed else self._allowed[0]

    def get(self, identifier: str) -> DeploymentBackend:
        factory = self._factories.get(identifier)
        if factory is None:
            raise ValidationError(f"Unknown deployment backend: {identifier}")
        return factory()

    def for_environment(self, environment: Environment) -> DeploymentBackend:
        identifier = self.resolve_identifier(environment.backend_identifier)
        logger.debug(
            "Backend resolved",
            environment=environment.full_name(),
            requested=environment.backend_identifier,
            backend=identifier,
        )
        return self.get(identifier)


def build_registry(cfg: BackendsConfig | None = None) -> BackendRegistry:
    """Registry with every built-in backend, configured from settings."""
    from deckhand.backends.command import CommandBackend
    from deckhand.backends.demo import DemoBackend

    cfg = cfg or settings.backends
    registry = BackendRegistry(allowed=cfg.allowed, default=cfg.default)
    registry.register("demo", DemoBackend)
    registry.register("command", lambda: CommandBackend(cfg.command))
    return registry
