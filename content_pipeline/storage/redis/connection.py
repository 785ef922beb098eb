"""
Redis connection used by the lease backend.

Only opened when ``SCHEDULER_LEASE_BACKEND=redis``; run and task state
always lives in the workflow store.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from content_pipeline.config import get_settings
from content_pipeline.config.settings import RedisSettings

logger = logging.getLogger(__name__)


class RedisConnection:
    """Pooled Redis client with an explicit init/close lifecycle."""

    def __init__(self, settings: Optional[RedisSettings] = None):
        self._settings = settings or get_settings().redis
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def init(self) -> None:
        """
        Open the pool and ping the server.

        Raises:
            RedisError: If the server cannot be reached
        """
        settings = self._settings
        self._pool = ConnectionPool(
            host=settings.host,
            port=settings.port,
            db=settings.db,
            password=settings.password,
            max_connections=settings.max_connections,
            socket_timeout=settings.socket_timeout,
            socket_connect_timeout=settings.socket_connect_timeout,
            decode_responses=True,
        )
        self._client = redis.Redis(connection_pool=self._pool)
        await self._client.ping()
        logger.debug(f"Connected to Redis at {settings.host}:{settings.port}/{settings.db}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis not initialized. Call init() first.")
        return self._client

    async def health_check(self) -> bool:
        """Ping the server; False when closed or unreachable."""
        if self._client is None:
            return False
        try:
            await self._client.ping()
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False
        return True
