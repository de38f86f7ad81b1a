"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from cmdqueue.config import Settings
from cmdqueue.constants import JobState
from cmdqueue.core.app_config import AppConfig
from cmdqueue.db import ConfigEntry, Job, close_db, connection, create_schema, init_db
from cmdqueue.db.repository import JobRepository

# Set to a PostgreSQL URL to run the suite against a server database
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL: a fresh SQLite file unless overridden."""
    if TEST_DATABASE_URL:
        return TEST_DATABASE_URL
    return f"sqlite+aiosqlite:///{tmp_path / 'cmdqueue.db'}"


@pytest_asyncio.fixture
async def db(database_url: str) -> AsyncGenerator[None]:
    """Initialize the database, create tables and start from empty ones."""
    await init_db(database_url)
    await create_schema()

    async with connection.AsyncSessionLocal() as session:
        await session.execute(delete(Job))
        await session.execute(delete(ConfigEntry))
        await session.commit()

    yield

    await close_db()


@pytest_asyncio.fixture
async def db_session(db) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with connection.AsyncSessionLocal() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with short intervals."""
    return Settings(
        log_level="DEBUG",
        log_format="console",
        default_worker_poll_interval_ms=50,
        default_command_timeout_ms=10_000,
        default_drain_timeout_ms=2_000,
        drain_check_interval_ms=50,
    )


@pytest.fixture
def app_config(db, test_settings: Settings) -> AppConfig:
    """Runtime config provider backed by the test database."""
    return AppConfig(test_settings)


@pytest.fixture
def wait_for_state(db) -> Callable[..., Awaitable[Job]]:
    """
    Poll a job until it reaches one of the given states.

    Fails the test if the job does not get there within the timeout.
    """

    async def _wait(job_id: str, *states: JobState, timeout: float = 10.0) -> Job:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        job = None

        while loop.time() < deadline:
            async with connection.AsyncSessionLocal() as session:
                job = await JobRepository(session).get_job(job_id)
            if job is not None and job.state in states:
                return job
            await asyncio.sleep(0.05)

        pytest.fail(f"Job {job_id} did not reach {states}, last seen: {job!r}")

    return _wait
