"""
SQLAlchemy database models.
Defines the Job and config tables.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cmdqueue.constants import DEFAULT_PRIORITY, TERMINAL_STATES, JobState
from cmdqueue.core.backoff import utcnow


def generate_job_id() -> str:
    """Generate an opaque job identifier."""
    return f"job_{uuid4().hex[:12]}"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a shell command in the queue.

    This is the authoritative source of truth for job state.
    All lifecycle transitions are single-statement updates against this table.

    Key constraints:
    - locked_at and locked_by are always set and cleared together
    - next_retry_at is only set while state is FAILED
    - COMPLETED and DEAD are terminal (DEAD leaves only through a manual retry)
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=generate_job_id,
    )
    command: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(JobState, name="job_state", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobState.PENDING,
        index=True,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_PRIORITY,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
        index=True,
    )

    # Execution results
    output: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )
    error: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    # Lease
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Timestamps (naive UTC, written by the application)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    __table_args__ = (
        # Index for claim polling: eligibility filter plus claim order
        Index("ix_jobs_claim_poll", "state", "priority", "created_at"),
        Index("ix_jobs_locked_at", "locked_at"),
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached a terminal state."""
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        """Serialize the persisted fields for API and dashboard consumers."""
        return {
            "id": self.id,
            "command": self.command,
            "state": self.state.value,
            "attempts": self.attempts,
            "max_retries": self.max_retries,
            "priority": self.priority,
            "next_retry_at": self.next_retry_at,
            "output": self.output,
            "error": self.error,
            "locked_at": self.locked_at,
            "locked_by": self.locked_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, state={self.state}, "
            f"attempts={self.attempts}/{self.max_retries}, priority={self.priority})"
        )


class ConfigEntry(Base):
    """Persistent runtime configuration value, keyed by name."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    value: Mapped[Any] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"ConfigEntry(key={self.key!r}, value={self.value!r})"
