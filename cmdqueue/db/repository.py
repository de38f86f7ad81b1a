"""
Job and config repositories for database operations.
Implements the data access contract the execution engine relies on.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import ColumnElement, and_, delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from cmdqueue.constants import CLAIMABLE_STATES, DEFAULT_LIST_LIMIT, TERMINAL_STATES, JobState
from cmdqueue.core.backoff import utcnow
from cmdqueue.db.models import ConfigEntry, Job

logger = logging.getLogger(__name__)

# Fields a state transition may write besides state and updated_at
TRANSITION_FIELDS = frozenset(
    {
        "output",
        "error",
        "attempts",
        "next_retry_at",
        "locked_at",
        "locked_by",
        "completed_at",
    }
)


def lease_cutoff(now: datetime, lease_timeout_ms: int) -> datetime:
    """Leases taken before this instant have expired."""
    return now - timedelta(milliseconds=lease_timeout_ms)


def claimable(job: Any, now: datetime, cutoff: datetime) -> ColumnElement[bool]:
    """
    SQL filter for jobs a worker may claim.

    A job is claimable when it is pending or failed, holds no live lease and
    is due for retry, or when it is processing under a lease that expired.

    Args:
        job: The Job entity or an alias of it.
        now: Current time.
        cutoff: Lease expiry cutoff, see lease_cutoff().
    """
    lock_free = or_(job.locked_at.is_(None), job.locked_at < cutoff)
    retry_due = or_(job.next_retry_at.is_(None), job.next_retry_at <= now)
    return or_(
        and_(job.state.in_(CLAIMABLE_STATES), lock_free, retry_due),
        and_(job.state == JobState.PROCESSING, job.locked_at < cutoff),
    )


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job claiming with a single conditional UPDATE
    - Owner-checked state transitions
    - Forced lease release
    - Dead-letter maintenance
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        command: str,
        max_retries: int,
        priority: int = 0,
        job_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Job:
        """
        Insert a new pending job.

        Args:
            command: The shell command to run.
            max_retries: Attempts allowed before the job is dead-lettered.
            priority: Higher values are claimed first.
            job_id: Optional caller-supplied identifier.
            created_at: Optional creation time, defaults to now.

        Returns:
            The created Job.
        """
        now = created_at or utcnow()
        job = Job(
            command=command,
            state=JobState.PENDING,
            attempts=0,
            max_retries=max_retries,
            priority=priority,
            created_at=now,
            updated_at=now,
        )
        if job_id is not None:
            job.id = job_id

        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created job",
            extra={"job_id": job.id, "priority": priority, "max_retries": max_retries},
        )
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job identifier.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        state: JobState | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> Sequence[Job]:
        """
        List jobs, newest first, optionally filtered by state.

        Args:
            state: Optional state filter.
            limit: Maximum number of jobs to return.

        Returns:
            The matching jobs.
        """
        stmt = select(Job).order_by(Job.created_at.desc()).limit(limit)
        if state is not None:
            stmt = stmt.where(Job.state == state)

        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job in any state. Returns True if a row was removed."""
        result = await self._session.execute(delete(Job).where(Job.id == job_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted job", extra={"job_id": job_id})
        return deleted

    async def count_by_state(self) -> dict[str, int]:
        """
        Count jobs per state.

        Returns:
            Mapping of every state value to its count, zero included.
        """
        stmt = select(Job.state, func.count()).group_by(Job.state)
        result = await self._session.execute(stmt)

        counts = {state.value: 0 for state in JobState}
        for state, count in result.all():
            counts[JobState(state).value] = count
        return counts

    async def claim_next(
        self,
        worker_id: str,
        lease_timeout_ms: int,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Atomically claim the next eligible job.

        This is the critical path for job distribution. Candidate selection
        and the lease write happen in one UPDATE statement, ordered by
        priority descending then created_at ascending. On PostgreSQL the
        candidate row is locked with FOR UPDATE SKIP LOCKED so concurrent
        claimants move on to other rows; SQLite serializes the statement
        behind its write lock. The eligibility filter is repeated on the
        outer UPDATE so a row changed by a concurrent claimant is never
        claimed twice.

        Args:
            worker_id: The claiming worker.
            lease_timeout_ms: Lease lifetime; older leases are reclaimable.
            now: Claim time, defaults to utcnow().

        Returns:
            The claimed Job (post-update) or None if nothing is eligible.
        """
        now = now or utcnow()
        cutoff = lease_cutoff(now, lease_timeout_ms)

        candidate = aliased(Job, name="candidate")
        next_id = (
            select(candidate.id)
            .where(claimable(candidate, now, cutoff))
            .order_by(candidate.priority.desc(), candidate.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        stmt = (
            update(Job)
            .where(and_(Job.id == next_id, claimable(Job, now, cutoff)))
            .values(
                state=JobState.PROCESSING,
                locked_at=now,
                locked_by=worker_id,
                next_retry_at=None,
                updated_at=now,
            )
            .returning(Job)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Claimed job",
                extra={"job_id": job.id, "worker_id": worker_id, "attempts": job.attempts},
            )

        return job

    async def transition(
        self,
        job_id: str,
        new_state: JobState,
        fields: dict[str, Any] | None = None,
        expected_owner: str | None = None,
    ) -> Job | None:
        """
        Atomically move a job to a new state.

        When expected_owner is given the update only applies while the job
        is still processing under that worker's lease, so a worker whose
        lease was reclaimed cannot overwrite the new holder's state.
        Without an owner, completed and dead jobs are left untouched; a dead
        job only leaves through reset_dead_job().

        Args:
            job_id: The job identifier.
            new_state: Target state.
            fields: Extra columns to write, see TRANSITION_FIELDS.
            expected_owner: Worker that must currently hold the lease.

        Returns:
            The updated Job or None if no row matched.

        Raises:
            ValueError: On unknown fields or a half-set lease pair.
        """
        values = dict(fields or {})
        unknown = set(values) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Cannot write fields in a transition: {sorted(unknown)}")
        if ("locked_at" in values) != ("locked_by" in values):
            raise ValueError("locked_at and locked_by must be written together")
        if ("locked_at" in values) and (
            (values["locked_at"] is None) != (values["locked_by"] is None)
        ):
            raise ValueError("locked_at and locked_by must both be set or both be cleared")

        now = utcnow()
        values["state"] = new_state
        values["updated_at"] = now
        if new_state == JobState.COMPLETED:
            values.setdefault("completed_at", now)

        conditions = [Job.id == job_id]
        if expected_owner is not None:
            conditions.append(Job.state == JobState.PROCESSING)
            conditions.append(Job.locked_by == expected_owner)
        else:
            conditions.append(Job.state.not_in(TERMINAL_STATES))

        stmt = update(Job).where(and_(*conditions)).values(**values).returning(Job)
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Job state changed",
                extra={"job_id": job_id, "state": new_state.value},
            )
        elif expected_owner is not None:
            logger.warning(
                "Worker no longer holds job lease",
                extra={"job_id": job_id, "worker_id": expected_owner},
            )

        return job

    async def release_lease(
        self,
        job_id: str,
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Force-release the lease on a processing job.

        The job returns to PENDING so any worker can claim it again.

        Args:
            job_id: The job identifier.
            worker_id: Only release if this worker holds the lease.

        Returns:
            The updated Job or None if no processing job matched.
        """
        conditions = [Job.id == job_id, Job.state == JobState.PROCESSING]
        if worker_id is not None:
            conditions.append(Job.locked_by == worker_id)

        stmt = (
            update(Job)
            .where(and_(*conditions))
            .values(
                state=JobState.PENDING,
                next_retry_at=None,
                locked_at=None,
                locked_by=None,
                updated_at=utcnow(),
            )
            .returning(Job)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.warning("Released job lease", extra={"job_id": job_id, "worker_id": worker_id})

        return job

    async def reset_dead_job(self, job_id: str) -> Job | None:
        """
        Move a dead job back to PENDING with a fresh retry budget.

        Args:
            job_id: The job identifier.

        Returns:
            The updated Job or None if not found or not dead.
        """
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, Job.state == JobState.DEAD))
            .values(
                state=JobState.PENDING,
                attempts=0,
                next_retry_at=None,
                error="",
                locked_at=None,
                locked_by=None,
                updated_at=utcnow(),
            )
            .returning(Job)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_dead_jobs(self, limit: int = DEFAULT_LIST_LIMIT) -> Sequence[Job]:
        """List dead jobs, most recently updated first."""
        stmt = (
            select(Job)
            .where(Job.state == JobState.DEAD)
            .order_by(Job.updated_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def delete_dead_job(self, job_id: str) -> bool:
        """Delete a job only if it is dead."""
        stmt = delete(Job).where(and_(Job.id == job_id, Job.state == JobState.DEAD))
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def clear_dead_jobs(self) -> int:
        """Delete every dead job. Returns the number removed."""
        result = await self._session.execute(delete(Job).where(Job.state == JobState.DEAD))
        return result.rowcount or 0


class ConfigRepository:
    """Repository for persistent runtime configuration values."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str) -> ConfigEntry | None:
        stmt = select(ConfigEntry).where(ConfigEntry.key == key)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, key: str, value: Any) -> None:
        """
        Insert or overwrite a config value in one statement.

        Args:
            key: Config key.
            value: JSON-serializable value.
        """
        dialect = self._session.bind.dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        now = utcnow()
        stmt = insert(ConfigEntry).values(key=key, value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ConfigEntry.key],
            set_={"value": stmt.excluded.value, "updated_at": now},
        )
        await self._session.execute(stmt)

    async def all(self) -> dict[str, Any]:
        result = await self._session.execute(select(ConfigEntry))
        return {entry.key: entry.value for entry in result.scalars().all()}
