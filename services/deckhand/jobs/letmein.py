"""Temporary CMS access job.

There is no record state to drive: the queue status is the outcome.
"""

import uuid

from deckhand.db.models import Letmein
from deckhand.db.session import session_scope
from deckhand.errors import NotFoundError
from deckhand.jobs.base import Job, backend_call
from deckhand.logs.names import letmein_log_name
from deckhand.services.letmein_service import get_letmein


class LetmeinJob(Job):
    letmein: Letmein | None = None

    async def set_up(self) -> None:
        letmein_id = uuid.UUID(self.args["letmein_id"])
        async with session_scope(self.ctx.session_factory) as db:
            letmein = await get_letmein(db, letmein_id)
        if letmein is None:
            raise NotFoundError("Letmein", letmein_id)

        self.letmein = letmein
        self.log = self.ctx.log_store.open(letmein_log_name(letmein.environment, letmein))
        self.backend = self.ctx.backends.for_environment(letmein.environment)

    async def perform(self) -> None:
        assert self.letmein is not None and self.log is not None
        environment = self.letmein.environment
        username = self.args["username"]

        await self.log.write(
            f"Access for {username} on {environment.full_name()} "
            f"requested by {self.letmein.requester or 'unknown'}"
        )
        async with backend_call("letmein"):
            await self.backend.letmein(environment, self.log, username, self.args["password"])
        await self.log.write("Temporary access granted")

    async def on_failure(self, exc: Exception) -> None:
        await self.write_log(f"Temporary access request failed: {exc}")
