"""Queued job types, keyed by the class name stored in the queue payload."""

from deckhand.errors import ValidationError
from deckhand.jobs.base import Job, JobContext, run_job
from deckhand.jobs.deploy import DeployJob
from deckhand.jobs.letmein import LetmeinJob
from deckhand.jobs.transfer import DataTransferJob
from deckhand.queue.job_queue import QueuedJob

JOB_TYPES: dict[str, type[Job]] = {
    cls.__name__: cls for cls in (DeployJob, DataTransferJob, LetmeinJob)
}


def make_job(ctx: JobContext, queued: QueuedJob) -> Job:
    """Instantiate the job a queue payload names."""
    job_cls = JOB_TYPES.get(queued.job_type)
    if job_cls is None:
        raise ValidationError(f"Unknown job type: {queued.job_type}")
    return job_cls(ctx, queued.args, queued.token)


__all__ = [
    "JOB_TYPES",
    "DataTransferJob",
    "DeployJob",
    "Job",
    "JobContext",
    "LetmeinJob",
    "make_job",
    "run_job",
]
