# app/db/helpers.py
"""
Thin query helpers over the connection pool used by the document store.

Each helper accepts an optional open connection so several statements can
share one transaction; without one it borrows a pooled connection for the
single statement. psycopg errors come back as DatabaseError, flagged
recoverable when the failure was operational (connection loss, timeouts).
"""

import asyncio
import functools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A statement against the documents table failed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _statement(
    operation: str, query: str, connection: psycopg.AsyncConnection | None
) -> AsyncIterator[psycopg.AsyncConnection]:
    try:
        if connection is not None:
            yield connection
        else:
            async with await get_db_connection() as conn:
                yield conn
    except psycopg.Error as e:
        logger.error(
            "Database statement failed", operation=operation, query=query[:100], error=str(e)
        )
        raise DatabaseError(
            f"Query failed: {e}",
            operation=operation,
            recoverable=isinstance(e, psycopg.OperationalError),
        ) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """Return the first row as a dict, or None."""
    async with _statement("fetch_one", query, connection) as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchone()


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    async with _statement("fetch_all", query, connection) as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row (e.g. ``SELECT COUNT(*)``)."""
    row = await fetch_one(query, params, connection=connection)
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a write statement and return the affected row count."""
    async with _statement("execute", query, connection) as conn:
        cursor = await conn.execute(query, params)
        return cursor.rowcount


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a read on operational failures with exponential backoff.

    Only recoverable errors are retried; integrity and data errors, and any
    DatabaseError already marked non-recoverable, propagate immediately.
    Writes are not decorated: a retried versioned update could apply twice.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except (psycopg.IntegrityError, psycopg.DataError) as e:
                    logger.error("Permanent database error", operation=func.__name__, error=str(e))
                    raise DatabaseError(
                        f"Permanent database error: {e}",
                        operation=func.__name__,
                        recoverable=False,
                    ) from e
                except (psycopg.OperationalError, DatabaseError) as e:
                    if isinstance(e, DatabaseError) and not e.recoverable:
                        raise
                    if attempt == max_retries:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
