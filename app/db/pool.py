# app/db/pool.py
"""
Async Postgres connection pool for the document store.

One pool per process, opened in the FastAPI lifespan (or by a worker job)
and closed on shutdown. Connections run in autocommit; multi-statement
writes go through ``transaction()``.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

POOL_CLOSE_TIMEOUT_SECONDS = 30.0
UTILIZATION_LIMIT_PERCENT = 90


class DatabasePoolManager:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None

    @property
    def ready(self) -> bool:
        return self.pool is not None

    async def initialize(self) -> None:
        """Open the pool and prove one round trip works."""
        if self.ready:
            logger.warning("Database pool already initialized")
            return

        config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **config,
        )

        try:
            await pool.open()
            await pool.wait()
            self.pool = pool
            await self._round_trip()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self.pool = None
            try:
                await pool.close()
            except Exception as close_error:
                logger.warning("Error closing pool after failed init", error=str(close_error))
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool initialized",
            min_size=config["min_size"],
            max_size=config["max_size"],
            timeout=config["timeout"],
            environment=settings.environment,
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        # SET does not take bind parameters
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"uvocollab-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '30s'")

    async def _round_trip(self) -> None:
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1 AS ok")
                row = await cur.fetchone()
        if not row or row.get("ok") != 1:
            raise RuntimeError("Database round trip returned an unexpected result")

    async def close(self) -> None:
        if not self.ready:
            return

        pool, self.pool = self.pool, None
        try:
            await asyncio.wait_for(pool.close(), timeout=POOL_CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        if not self.ready:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """A pooled connection inside BEGIN/COMMIT; rolls back if the block raises."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if not self.ready:
            return {"healthy": False, "error": "Pool not initialized"}

        try:
            stats = self.pool.get_stats()
            started = time.time()
            await self._round_trip()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {"healthy": False, "error": str(e), "error_type": type(e).__name__}

        pool_size = stats.get("pool_size", 0)
        pool_available = stats.get("pool_available", 0)
        utilization = (pool_size - pool_available) / pool_size * 100 if pool_size else 0

        return {
            "healthy": utilization < UTILIZATION_LIMIT_PERCENT,
            "connection_time_ms": round((time.time() - started) * 1000, 2),
            "pool_stats": {
                "pool_size": pool_size,
                "pool_available": pool_available,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Pooled connection context manager for the query helpers."""
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
