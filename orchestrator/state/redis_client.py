# orchestrator/state/redis_client.py
# @ai-rules:
# 1. [Pattern]: redis.asyncio via from_url(), decode_responses=True.
# 2. [Pattern]: connect() retries (REDIS_RETRY_ATTEMPTS x REDIS_RETRY_DELAY) for sidecar startup races.
# 3. [Constraint]: No module-level client. The lifespan owns one RedisClient and closes it on shutdown.
"""Async Redis client with connect-retry, used by the event log."""
from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Optional

import redis.asyncio as redis

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

REDIS_RETRY_ATTEMPTS = int(os.getenv("REDIS_RETRY_ATTEMPTS", "5"))
REDIS_RETRY_DELAY = float(os.getenv("REDIS_RETRY_DELAY", "2.0"))


class RedisClient:
    """
    Connection holder.

    Usage:
        client = RedisClient(host, port, password)
        conn = await client.connect()
        await client.close()
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: str = "",
        db: int = 0,
        attempts: int = REDIS_RETRY_ATTEMPTS,
        delay: float = REDIS_RETRY_DELAY,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.db = db
        self.attempts = max(1, attempts)
        self.delay = delay
        self._client: Optional["Redis"] = None

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    async def connect(self) -> "Redis":
        """Connect and PING, retrying on connection errors. Raises ConnectionError when exhausted."""
        if self._client is not None:
            return self._client

        logger.info(f"Connecting to Redis at {self.host}:{self.port}")
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            client = redis.Redis.from_url(self.url, decode_responses=True)
            try:
                await client.ping()
            except (redis.ConnectionError, ConnectionError, OSError) as e:
                last_error = e
                await client.aclose()
                if attempt < self.attempts:
                    logger.warning(
                        f"Redis connection attempt {attempt}/{self.attempts} failed: {e}. "
                        f"Retrying in {self.delay}s..."
                    )
                    await asyncio.sleep(self.delay)
                continue
            self._client = client
            logger.info(f"Redis connection established (attempt {attempt})")
            return client

        logger.error(f"Redis connection failed after {self.attempts} attempts: {last_error}")
        raise ConnectionError(f"Failed to connect to Redis after {self.attempts} attempts: {last_error}")

    @property
    def client(self) -> "Redis":
        if self._client is None:
            raise ConnectionError("Redis client not connected. Call connect() first.")
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            logger.info("Closing Redis connection")
            await self._client.aclose()
            self._client = None
