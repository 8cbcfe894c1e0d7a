"""
SQLAlchemy database models for Deckhand.

All models use:
- UUIDv7 primary keys (time-sortable)
- snake_case column names
- Plural table names
- Timezone-aware UTC timestamps
- Hard deletes; deleting an environment cascades to its job records

Column types are dialect-neutral so the same models run on PostgreSQL in
production and SQLite in tests.
"""

import time
import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def generate_uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-sortable UUID)."""
    timestamp_ms = int(time.time() * 1000)
    rand_bytes = uuid.uuid4().bytes[6:]

    uuid_bytes = (
        timestamp_ms.to_bytes(6, "big")
        + bytes([0x70 | (rand_bytes[0] & 0x0F)])  # Version 7
        + bytes([0x80 | (rand_bytes[1] & 0x3F)])  # Variant
        + rand_bytes[2:]
    )
    return uuid.UUID(bytes=uuid_bytes)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONType,
        uuid.UUID: sa.Uuid(),
    }


class Project(Base):
    """A deployable code base; owns one environment per deploy target."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid7)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    environments: Mapped[list["Environment"]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )


class Environment(Base):
    """A deploy target (e.g. uat, prod) belonging to a project."""

    __tablename__ = "environments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid7)
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    backend_identifier: Mapped[str] = mapped_column(String(63), nullable=False, default="")
    usage: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unspecified"
    )  # production, uat, test, unspecified
    url: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    project: Mapped["Project"] = relationship(back_populates="environments", lazy="joined")

    __table_args__ = (
        sa.UniqueConstraint("project_id", "name", name="uq_environments"),
    )

    def full_name(self, separator: str = ":") -> str:
        """Project and environment name joined, e.g. ``shop:uat``."""
        return f"{self.project.name}{separator}{self.name}"


class Deployment(Base):
    """Deploying a code revision to an environment.

    State machine: new → submitted → approved → queued → deploying → completed.
    Failed from any in-flight state; queued/deploying → aborting → aborted.
    See deckhand.state_machine for the edges.
    """

    __tablename__ = "deployments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid7)
    environment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("environments.id", ondelete="CASCADE"), nullable=False
    )
    sha: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    ref_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="New")
    queue_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    options: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)
    deployer: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    environment: Mapped["Environment"] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_deployments_environment_id", "environment_id"),
        Index("ix_deployments_state", "state"),
    )


class DataArchive(Base):
    """A snapshot archive (database and/or assets) produced by a backup."""

    __tablename__ = "data_archives"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid7)
    environment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("environments.id", ondelete="SET NULL"), nullable=True
    )
    mode: Mapped[str] = mapped_column(String(10), nullable=False, default="all")
    filename: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class DataTransfer(Base):
    """A backup (pull) or restore (push) of environment data.

    Status is two-valued once finished: Finished or Failed.
    """

    __tablename__ = "data_transfers"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid7)
    environment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("environments.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)  # pull, push
    mode: Mapped[str] = mapped_column(String(10), nullable=False)  # all, db, assets
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="n/a"
    )  # n/a, Queued, Started, Finished, Failed
    queue_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    data_archive_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("data_archives.id", ondelete="SET NULL"), nullable=True
    )
    backup_of_deployment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("deployments.id", ondelete="CASCADE"), nullable=True
    )
    backup_before_push: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    backup_transfer_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("data_transfers.id", ondelete="SET NULL"), nullable=True
    )
    author: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    environment: Mapped["Environment"] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_data_transfers_environment_id", "environment_id"),
    )


class Letmein(Base):
    """A temporary CMS access grant. Has no state of its own; the queue status is it."""

    __tablename__ = "letmeins"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid7)
    environment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("environments.id", ondelete="CASCADE"), nullable=False
    )
    requester: Mapped[str] = mapped_column(Text, nullable=False, default="")
    queue_token: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    environment: Mapped["Environment"] = relationship(lazy="joined")
