"""
redis_client.py — Shared Redis connection with fail-over state
The cache asks for a client on every call; None means "use the in-process
store". A failed probe or command marks the connection down and it is only
re-probed after REDIS_RETRY_SECONDS.
"""

import asyncio
import logging
import time

import redis.asyncio as redis
from redis.exceptions import RedisError

from habitpulse.config import REDIS_URL, REDIS_RETRY_SECONDS, CACHE_OP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class RedisConnection:
    def __init__(self, url: str = "", retry_seconds: float = 30, timeout: float = 0.5):
        self.url = url
        self.retry_seconds = retry_seconds
        self.timeout = timeout
        self._client: redis.Redis | None = None
        self._connected = False
        self._retry_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def is_connected(self) -> bool:
        return self._connected

    async def get_client(self) -> redis.Redis | None:
        """Live client, or None when Redis is unset or currently unreachable."""
        if not self.url:
            return None
        if self._connected:
            return self._client
        if time.monotonic() < self._retry_at:
            return None
        return await self._probe()

    async def _probe(self) -> redis.Redis | None:
        try:
            if self._client is None:
                self._client = redis.from_url(
                    self.url,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=10,
                    socket_timeout=self.timeout,
                    socket_connect_timeout=self.timeout,
                )
            await asyncio.wait_for(self._client.ping(), timeout=self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self.mark_down(e)
            return None
        self._connected = True
        logger.info("Redis connected")
        return self._client

    def mark_down(self, error: Exception | None = None):
        if self._connected or self._retry_at == 0.0:
            logger.warning(f"Redis unavailable, using in-process cache: {error}")
        self._connected = False
        self._retry_at = time.monotonic() + self.retry_seconds

    async def close(self):
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("Redis disconnected")
            except (RedisError, OSError) as e:
                logger.warning(f"Redis close failed: {e}")
        self._client = None
        self._connected = False
        self._retry_at = 0.0


redis_connection = RedisConnection(REDIS_URL, REDIS_RETRY_SECONDS, CACHE_OP_TIMEOUT_SECONDS)
