"""
Ops API for the interview inbox: health probes and poller status.
Optionally hosts the poller scheduler in-process (RUN_POLLER_IN_API).
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI

from interview_inbox.config import settings
from interview_inbox.db.pool import db_pool
from interview_inbox.infrastructure.observability.logging import get_logger, setup_logging
from interview_inbox.jobs.interview_poller_job import (
    create_interview_poller_job,
    start_interview_poller_scheduler,
)
from interview_inbox.routes import health

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool and, if configured, start the poller scheduler."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    await db_pool.initialize()

    app.state.poller_job = None
    scheduler_task: asyncio.Task | None = None

    if settings.RUN_POLLER_IN_API:
        app.state.poller_job = create_interview_poller_job()
        scheduler_task = asyncio.create_task(
            start_interview_poller_scheduler(app.state.poller_job), name="interview_poller"
        )
        logger.info("Interview poller started in-process")

    try:
        yield
    finally:
        logger.info("Application shutting down")

        if scheduler_task is not None:
            scheduler_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler_task
            await app.state.poller_job.close()

        await db_pool.close()


app = FastAPI(
    title="Interview Inbox",
    description="Mailbox polling and conversation ingestion for interview scheduling",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
