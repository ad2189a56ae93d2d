"""
Shared plumbing for worker jobs: process resources and the interval loop.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager

from app.db.document_store import document_store
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import fast_redis

logger = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 60


@asynccontextmanager
async def worker_resources():
    """Open the pool and Redis for a standalone worker process."""
    async with AsyncExitStack() as stack:
        await db_pool.initialize()
        stack.push_async_callback(db_pool.close)
        await document_store.ensure_schema()
        await fast_redis.initialize()
        stack.push_async_callback(fast_redis.close)
        yield


async def run_every(
    job: Callable[[], Awaitable[object]],
    interval_seconds: float,
    *,
    name: str,
    max_cycles: int | None = None,
) -> None:
    """
    Run ``job`` forever (or ``max_cycles`` times), sleeping between runs.

    Errors are logged and retried after a short backoff so one bad cycle
    never kills the worker.
    """
    logger.info("Starting job scheduler", job=name, interval_seconds=interval_seconds)

    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        cycles += 1
        try:
            await job()
            delay = interval_seconds
        except Exception as e:
            logger.error(
                "Error in job scheduler", job=name, error=str(e), error_type=type(e).__name__
            )
            delay = ERROR_BACKOFF_SECONDS
        if max_cycles is None or cycles < max_cycles:
            await asyncio.sleep(delay)
