"""Guarded finite state machines for long-running job records.

A machine is a set of named transitions, each allowed from a set of source
states into one target state. apply() is the only code path that writes a
record's state: it checks the edge, then persists the new state together with
the record's last-updated timestamp as a single compare-and-set UPDATE, so a
transition computed from a stale read can never overwrite a concurrent one.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from deckhand.db.models import utc_now
from deckhand.errors import InvalidTransitionError
from deckhand.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Transition:
    name: str
    sources: frozenset[str]
    target: str


class StateMachine:
    """Transition table plus the persistence step for one kind of record."""

    def __init__(
        self,
        name: str,
        transitions: Iterable[Transition],
        terminal_states: Iterable[str],
        state_attr: str = "state",
        updated_attr: str = "last_updated_at",
    ) -> None:
        self.name = name
        self.terminal_states = frozenset(terminal_states)
        self._transitions = {t.name: t for t in transitions}
        self._state_attr = state_attr
        self._updated_attr = updated_attr

        for t in self._transitions.values():
            if t.sources & self.terminal_states:
                raise ValueError(f"Transition '{t.name}' leaves a terminal state")

    @property
    def transitions(self) -> dict[str, Transition]:
        return dict(self._transitions)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    def can(self, state: str, transition: str) -> bool:
        """Whether ``state`` has an edge named ``transition``."""
        t = self._transitions.get(transition)
        return t is not None and state in t.sources

    def target_of(self, transition: str) -> str:
        return self._transitions[transition].target

    async def apply(self, db: AsyncSession, record: Any, transition: str) -> Any:
        """Move ``record`` along ``transition`` and persist the result.

        Raises InvalidTransitionError, leaving the record untouched, when the
        current state has no such edge or another writer changed the state
        since the record was read.
        """
        current = getattr(record, self._state_attr)
        if not self.can(current, transition):
            raise InvalidTransitionError(record.id, current, transition)

        model = type(record)
        state_column = getattr(model, self._state_attr)
        target = self.target_of(transition)
        now = utc_now()

        result = await db.execute(
            update(model)
            .where(model.id == record.id, state_column == current)
            .values({self._state_attr: target, self._updated_attr: now})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = await db.scalar(select(state_column).where(model.id == record.id))
            raise InvalidTransitionError(record.id, actual or "<deleted>", transition)

        set_committed_value(record, self._state_attr, target)
        set_committed_value(record, self._updated_attr, now)

        logger.info(
            "State transition applied",
            machine=self.name,
            record_id=str(record.id),
            transition=transition,
            from_state=current,
            to_state=target,
        )
        return record


# --- Deployments ---


class DeploymentState:
    """Deployment state names as persisted in the state column."""

    NEW = "New"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    QUEUED = "Queued"
    DEPLOYING = "Deploying"
    ABORTING = "Aborting"
    COMPLETED = "Completed"
    FAILED = "Failed"
    ABORTED = "Aborted"


TR_SUBMIT = "submit"
TR_APPROVE = "approve"
TR_QUEUE = "queue"
TR_DEPLOY = "deploy"
TR_COMPLETE = "complete"
TR_FAIL = "fail"
TR_ABORT = "abort"
TR_ABORTED = "aborted"

IN_FLIGHT_STATES = frozenset(
    {DeploymentState.QUEUED, DeploymentState.DEPLOYING, DeploymentState.ABORTING}
)

DEPLOYMENT_MACHINE = StateMachine(
    "deployment",
    [
        Transition(TR_SUBMIT, frozenset({DeploymentState.NEW}), DeploymentState.SUBMITTED),
        Transition(TR_APPROVE, frozenset({DeploymentState.SUBMITTED}), DeploymentState.APPROVED),
        Transition(
            TR_QUEUE,
            frozenset({DeploymentState.NEW, DeploymentState.APPROVED}),
            DeploymentState.QUEUED,
        ),
        Transition(TR_DEPLOY, frozenset({DeploymentState.QUEUED}), DeploymentState.DEPLOYING),
        Transition(TR_COMPLETE, frozenset({DeploymentState.DEPLOYING}), DeploymentState.COMPLETED),
        Transition(TR_FAIL, IN_FLIGHT_STATES, DeploymentState.FAILED),
        Transition(
            TR_ABORT,
            frozenset({DeploymentState.QUEUED, DeploymentState.DEPLOYING}),
            DeploymentState.ABORTING,
        ),
        Transition(TR_ABORTED, frozenset({DeploymentState.ABORTING}), DeploymentState.ABORTED),
    ],
    terminal_states={
        DeploymentState.COMPLETED,
        DeploymentState.FAILED,
        DeploymentState.ABORTED,
    },
)
