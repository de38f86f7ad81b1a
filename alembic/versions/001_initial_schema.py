"""Initial schema with jobs and config tables

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_state AS ENUM ('pending', 'processing', 'completed', 'failed', 'dead');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("command", sa.Text, nullable=False),
        sa.Column(
            "state",
            postgresql.ENUM("pending", "processing", "completed", "failed", "dead", name="job_state", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("next_retry_at", sa.DateTime, nullable=True),
        sa.Column("output", sa.Text, nullable=False, server_default=""),
        sa.Column("error", sa.Text, nullable=False, server_default=""),
        sa.Column("locked_at", sa.DateTime, nullable=True),
        sa.Column("locked_by", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_jobs_state", "jobs", ["state"])
    op.create_index("ix_jobs_next_retry_at", "jobs", ["next_retry_at"])
    op.create_index("ix_jobs_locked_at", "jobs", ["locked_at"])

    # Claim polling: eligibility filter plus claim order
    op.create_index("ix_jobs_claim_poll", "jobs", ["state", "priority", "created_at"])

    op.create_table(
        "config",
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", postgresql.JSONB, nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("config")

    op.drop_index("ix_jobs_claim_poll")
    op.drop_index("ix_jobs_locked_at")
    op.drop_index("ix_jobs_next_retry_at")
    op.drop_index("ix_jobs_state")
    op.drop_table("jobs")

    op.execute("DROP TYPE IF EXISTS job_state")
