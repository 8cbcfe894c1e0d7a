"""Job orchestration tables: projects, environments, deployments, data_archives,
data_transfers, letmeins.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str) -> list[sa.Column]:
    return [
        sa.Column(
            name,
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        )
        for name in names
    ]


def _environment_fk(ondelete: str = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(
        "environment_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("environments.id", ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        *_timestamps("created_at"),
    )

    op.create_table(
        "environments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("backend_identifier", sa.String(63), nullable=False, server_default=""),
        sa.Column("usage", sa.String(20), nullable=False, server_default="unspecified"),
        sa.Column("url", sa.String(500), nullable=False, server_default=""),
        *_timestamps("created_at"),
        sa.UniqueConstraint("project_id", "name", name="uq_environments"),
    )

    op.create_table(
        "deployments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _environment_fk(),
        sa.Column("sha", sa.String(40), nullable=False, server_default=""),
        sa.Column("ref_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("state", sa.String(20), nullable=False, server_default="New"),
        sa.Column("queue_token", sa.String(64), nullable=True),
        sa.Column(
            "options",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("deployer", sa.String(255), nullable=False, server_default=""),
        *_timestamps("created_at", "last_updated_at"),
    )
    op.create_index("ix_deployments_environment_id", "deployments", ["environment_id"])
    op.create_index("ix_deployments_state", "deployments", ["state"])

    op.create_table(
        "data_archives",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _environment_fk(ondelete="SET NULL", nullable=True),
        sa.Column("mode", sa.String(10), nullable=False, server_default="all"),
        sa.Column("filename", sa.String(500), nullable=False, server_default=""),
        *_timestamps("created_at"),
    )

    op.create_table(
        "data_transfers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _environment_fk(),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("mode", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="n/a"),
        sa.Column("queue_token", sa.String(64), nullable=True),
        sa.Column(
            "data_archive_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("data_archives.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "backup_of_deployment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("deployments.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "backup_before_push", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "backup_transfer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("data_transfers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("author", sa.String(255), nullable=False, server_default=""),
        *_timestamps("created_at", "last_updated_at"),
    )
    op.create_index("ix_data_transfers_environment_id", "data_transfers", ["environment_id"])

    op.create_table(
        "letmeins",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _environment_fk(),
        sa.Column("requester", sa.Text(), nullable=False, server_default=""),
        sa.Column("queue_token", sa.String(64), nullable=True),
        *_timestamps("created_at"),
    )


def downgrade() -> None:
    op.drop_table("letmeins")
    op.drop_table("data_transfers")
    op.drop_table("data_archives")
    op.drop_table("deployments")
    op.drop_table("environments")
    op.drop_table("projects")
