# app/services/redis_client.py
"""
Redis-backed named locks.

Payout release and the match sweep each take a lock keyed by name with a
random token and a TTL. Release only deletes the key while it still holds
the caller's token, so a lock that expired and was re-taken elsewhere is
never dropped by its previous owner.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LOCK_PREFIX = "lock:"

# Compare-and-delete: only the token holder may release
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LockError(Exception):
    """Redis could not be reached, so lock ownership is unknown."""


class FastRedisClient:
    def __init__(self):
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def initialize(self) -> None:
        if self.connected:
            return

        pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            retry_on_timeout=True,
            retry_on_error=[redis.ConnectionError, redis.TimeoutError],
            socket_connect_timeout=10,
            socket_timeout=10,
            health_check_interval=30,
            decode_responses=True,
        )
        client = redis.Redis(connection_pool=pool)
        try:
            await client.ping()
        except Exception as e:
            logger.error("Redis connection failed", error=str(e))
            await pool.disconnect()
            raise RuntimeError("Redis initialization failed") from e

        self.pool, self.client = pool, client
        logger.info("Redis lock client ready", max_connections=settings.REDIS_MAX_CONNECTIONS)

    async def close(self) -> None:
        client, pool = self.client, self.pool
        self.client = self.pool = None
        try:
            if client:
                await client.aclose()
            if pool:
                await pool.disconnect()
            logger.info("Redis lock client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _client(self) -> redis.Redis:
        if not self.connected:
            logger.warning("Redis used before startup, connecting lazily")
            await self.initialize()
        return self.client

    async def ping(self) -> bool:
        try:
            return bool(await (await self._client()).ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def acquire_lock(self, name: str, token: str, ttl_s: int) -> bool:
        """
        SET NX EX on ``lock:<name>``.

        Returns False when another holder has the lock.

        Raises:
            LockError: Redis could not be reached
        """
        try:
            client = await self._client()
            acquired = await client.set(LOCK_PREFIX + name, token, nx=True, ex=ttl_s)
        except Exception as e:
            logger.error("Redis lock acquire failed", lock=name, error=str(e))
            raise LockError(f"Could not acquire lock {name}: {e}") from e

        logger.debug("Lock attempt", lock=name, acquired=bool(acquired), ttl_s=ttl_s)
        return bool(acquired)

    async def release_lock(self, name: str, token: str) -> bool:
        try:
            client = await self._client()
            return bool(await client.eval(RELEASE_LOCK_SCRIPT, 1, LOCK_PREFIX + name, token))
        except Exception as e:
            # the TTL reclaims it
            logger.error("Redis lock release failed", lock=name, error=str(e))
            return False


fast_redis = FastRedisClient()


def get_redis() -> FastRedisClient:
    return fast_redis
