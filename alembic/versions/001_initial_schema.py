"""Initial schema with jobs, failed_jobs and tenants tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Active jobs: one row per pending or leased job
    op.create_table(
        "jobs",
        sa.Column("id", sa.BigInteger, autoincrement=True, nullable=False),
        sa.Column("queue", sa.String(255), nullable=False),
        sa.Column("payload", sa.LargeBinary, nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reserved_at", sa.DateTime, nullable=True),
        sa.Column("available_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Reservation scans a lane in (available_at, id) order
    op.create_index("ix_jobs_poll", "jobs", ["queue", "available_at", "id"])

    # Dead-lettered jobs, kept for inspection and manual retry
    op.create_table(
        "failed_jobs",
        sa.Column("id", sa.BigInteger, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.BigInteger, nullable=False),
        sa.Column("queue", sa.String(255), nullable=False),
        sa.Column("payload", sa.LargeBinary, nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("reserved_at", sa.DateTime, nullable=True),
        sa.Column("available_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("failed_at", sa.DateTime, nullable=False),
        sa.Column("last_error", sa.Text, nullable=False, server_default=""),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(
        "ix_failed_jobs_queue_failed_at",
        "failed_jobs",
        ["queue", "failed_at"],
    )

    # Central tenant catalog
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("database_url", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("tenants")
    op.drop_index("ix_failed_jobs_queue_failed_at", table_name="failed_jobs")
    op.drop_table("failed_jobs")
    op.drop_index("ix_jobs_poll", table_name="jobs")
    op.drop_table("jobs")
