"""
Short-lived Redis locks around check-then-write steps.

The document store guards updates with versions, but a uniqueness check
followed by a create has no version to compare against. Those steps run
under a lock named for what must stay unique (a guest/podcast pair, one
author's outstanding proposal), and re-run their check once they hold it.
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from app.infrastructure.observability.logging import get_logger
from app.services.errors import DownstreamError, StateConflictError
from app.services.redis_client import FastRedisClient, LockError

logger = get_logger(__name__)


@asynccontextmanager
async def exclusive(
    locks: FastRedisClient,
    name: str,
    ttl_s: int,
    *,
    busy_message: str,
    collaboration_id: str | None = None,
) -> AsyncIterator[None]:
    """
    Hold ``name`` for the duration of the block.

    Raises:
        StateConflictError: another request holds the lock
        DownstreamError: Redis could not be reached
    """
    token = uuid.uuid4().hex
    try:
        acquired = await locks.acquire_lock(name, token, ttl_s)
    except LockError as e:
        raise DownstreamError(
            "Service temporarily unavailable, please retry", collaboration_id=collaboration_id
        ) from e
    if not acquired:
        logger.info("Lock busy, rejecting concurrent request", lock=name)
        raise StateConflictError(busy_message, collaboration_id=collaboration_id)

    try:
        yield
    finally:
        await locks.release_lock(name, token)
