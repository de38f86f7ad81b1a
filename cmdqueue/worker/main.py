"""
Worker process for executing jobs.

Starts a pool of worker loops against the configured database and runs until
SIGTERM or SIGINT, then drains the pool and exits.
"""

import asyncio
import logging
import signal

from cmdqueue.config import get_settings
from cmdqueue.core.app_config import AppConfig
from cmdqueue.db import close_db, create_schema, get_engine, init_db
from cmdqueue.observability.logging import setup_logging
from cmdqueue.observability.metrics import setup_metrics
from cmdqueue.observability.tracing import instrument_sqlalchemy, setup_tracing
from cmdqueue.worker.pool import WorkerPool

logger = logging.getLogger(__name__)


async def run_async() -> None:
    """Run the worker pool until a shutdown signal arrives."""
    settings = get_settings()

    setup_logging()
    if settings.metrics_enabled:
        setup_metrics(settings.prometheus_port)

    await init_db()

    engine = get_engine()
    if settings.otel_enabled:
        setup_tracing()
        instrument_sqlalchemy(engine)

    # SQLite databases are local files with no migration step
    if engine.url.get_backend_name() == "sqlite":
        await create_schema()

    pool = WorkerPool(config=AppConfig(settings))

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await pool.start(settings.worker_count)
        await shutdown.wait()
        logger.info("Shutdown signal received")
        await pool.stop()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
