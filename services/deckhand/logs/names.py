"""
Log name helpers.

Provides consistent log naming for every kind of job record. Names are
derived from the environment's full name (``project.environment``) so all of
an environment's logs sit next to each other; DeployLog sanitizes them into
filenames.
"""

from deckhand.db.models import DataTransfer, Deployment, Environment, Letmein


def deployment_log_name(environment: Environment, deployment: Deployment) -> str:
    """Log name for a deployment: ``<project>.<env>.<id>.log``."""
    return f"{environment.full_name('.')}.{deployment.id}.log"


def transfer_log_name(environment: Environment, transfer: DataTransfer) -> str:
    """Log name for a backup/restore: ``<project>.<env>.datatransfer.<id>.log``."""
    return f"{environment.full_name('.')}.datatransfer.{transfer.id}.log"


def letmein_log_name(environment: Environment, letmein: Letmein) -> str:
    """Log name for a temporary access grant: ``<project>.<env>.letmein.<id>.log``."""
    return f"{environment.full_name('.')}.letmein.{letmein.id}.log"
