"""Exception hierarchy for job orchestration."""


class DeckhandError(Exception):
    """Base exception for Deckhand."""


class NotFoundError(DeckhandError):
    """Raised when a job record or environment does not exist."""

    def __init__(self, kind: str, record_id: object) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class ValidationError(DeckhandError):
    """Raised for requests the orchestrator refuses before creating any work."""


class StateTransitionError(DeckhandError):
    """Base exception for state machine failures."""


class InvalidTransitionError(StateTransitionError):
    """The record's current state has no edge for the requested transition.

    Always a programming error or a lost race between workers. Never retried.
    """

    def __init__(self, record_id: object, state: str, transition: str) -> None:
        self.record_id = record_id
        self.state = state
        self.transition = transition
        super().__init__(
            f"Invalid transition '{transition}' from state '{state}' (record {record_id})"
        )


class ConflictError(DeckhandError):
    """Another in-flight job holds the target environment."""

    def __init__(self, message: str, conflicting_id: object = None) -> None:
        self.conflicting_id = conflicting_id
        super().__init__(message)


class BackendExecutionError(DeckhandError):
    """The deployment backend raised while deploying, transferring or granting access."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class LogIOError(DeckhandError):
    """Writing to a job log failed."""

    def __init__(self, name: str, error: OSError) -> None:
        self.name = name
        super().__init__(f"Could not write job log '{name}': {error}")


class JobCancelledError(DeckhandError):
    """A running job was cancelled, e.g. when a draining worker gave up on it."""

    def __init__(self) -> None:
        super().__init__("Job was cancelled before it finished")
