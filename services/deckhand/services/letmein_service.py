"""Temporary CMS access ("letmein") requests."""

import secrets
import string
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from deckhand.db.models import Environment, Letmein
from deckhand.errors import ValidationError
from deckhand.logging_config import get_logger
from deckhand.logs.deploy_log import LogStore
from deckhand.logs.names import letmein_log_name
from deckhand.queue.job_queue import JobQueue, JobStatus

logger = get_logger(__name__)

LETMEIN_QUEUE = "letmein"
LETMEIN_JOB = "LetmeinJob"

PASSWORD_LENGTH = 16

_TOKEN_ALPHABET = string.ascii_letters + string.digits + "./"
# Characters that break CMS login forms or command lines
_PASSWORD_REPLACEMENTS = str.maketrans({c: "a" for c in "/@\"' .,"})

# Labels shown to the person waiting for their credentials
STATUS_LABELS = {
    JobStatus.WAITING: "Queued",
    JobStatus.RUNNING: "Running",
    JobStatus.FAILED: "Failed",
    JobStatus.COMPLETE: "Complete",
    JobStatus.INVALID: "Invalid",
}


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """One-time password safe to paste into a login form."""
    raw = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))
    return raw.translate(_PASSWORD_REPLACEMENTS)


async def get_letmein(db: AsyncSession, letmein_id: uuid.UUID) -> Letmein | None:
    """Get an access request by ID."""
    result = await db.execute(select(Letmein).where(Letmein.id == letmein_id))
    return result.unique().scalar_one_or_none()


async def request_access(
    db: AsyncSession,
    queue: JobQueue,
    log_store: LogStore,
    environment: Environment,
    username: str,
    requester: str = "",
    requester_email: str = "",
    password: str | None = None,
) -> tuple[Letmein, str]:
    """Record and queue an access request. Returns the record and the password.

    The audit line is written before the job is queued. Commits the session.
    """
    if not username:
        raise ValidationError("A username is required to request CMS access")

    password = password or generate_password()
    letmein = Letmein(environment_id=environment.id, requester=requester)
    db.add(letmein)
    await db.flush()
    set_committed_value(letmein, "environment", environment)
    await db.commit()

    log = log_store.open(letmein_log_name(environment, letmein))
    if requester:
        await log.write(
            f"Temporary access request to {environment.full_name()} "
            f"initiated by {requester} ({requester_email})"
        )

    token = await queue.enqueue(
        LETMEIN_QUEUE,
        LETMEIN_JOB,
        {
            "letmein_id": str(letmein.id),
            "environment_id": str(environment.id),
            "username": username,
            "password": password,
        },
    )
    letmein.queue_token = token
    await db.commit()

    await log.write(f"Temporary access request queued as job {token}")
    logger.info("Access request queued", letmein_id=str(letmein.id), token=token)
    return letmein, password


async def access_status(queue: JobQueue, letmein: Letmein) -> str:
    """Display label for an access request's queue status."""
    return STATUS_LABELS[await queue.status_of(letmein.queue_token)]
