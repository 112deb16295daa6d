import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisStore:
    """
    Owner of the shared Redis connection pool.

    Unlike a cache, the store is the system of record: a failed ping is
    logged but the client is still handed out, and every command failure
    surfaces to the repositories, which wrap it as a ``StorageError``.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> redis.Redis:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        # Ping to surface mis-configuration early (non-fatal).
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", self.url)
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
        return self._redis

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def client(self) -> redis.Redis:
        if self._redis is None:
            raise RuntimeError("RedisStore.connect() has not been called")
        return self._redis

    async def ping(self) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            logger.debug("Redis ping failed: %s", exc)
            return False
