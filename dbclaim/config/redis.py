"""
Redis connection used for controller leader election, with retry logic.
"""
import asyncio
from typing import Optional

import redis.asyncio as redis

from dbclaim.config.settings import settings
from dbclaim.config.logging import get_logger

logger = get_logger(__name__)


class RedisConnection:
    """Redis connection manager with retry logic."""

    client: Optional[redis.Redis] = None

    @classmethod
    async def connect(cls, max_attempts: int = 10) -> None:
        """
        Connect to Redis with retry logic.

        Retries with exponential backoff (2s, 4s, 8s, 16s, 30s max).
        """
        if settings.redis_url is None:
            raise RuntimeError("redis_url is not configured")

        base_delay = 2
        max_delay = 30
        safe_url = str(settings.redis_url).split("@")[-1]  # Log without credentials

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info(
                    "connecting_to_redis",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    url=safe_url,
                )

                cls.client = redis.Redis.from_url(
                    str(settings.redis_url),
                    max_connections=settings.redis_max_connections,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    socket_keepalive=True,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )

                await cls.client.ping()

                logger.info("redis_connected")
                return

            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.error(
                    "redis_connection_failed",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                    url=safe_url,
                )

                if attempt >= max_attempts:
                    logger.error("redis_max_retries_exceeded")
                    raise

                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                logger.info("retrying_redis", delay_seconds=delay)

                # Use asyncio.sleep which respects cancellation/interrupts
                await asyncio.sleep(delay)

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls.client:
            logger.info("closing_redis_connection")
            await cls.client.close()
            cls.client = None
            logger.info("redis_connection_closed")

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """
        Get Redis client instance.

        Returns:
            Redis client instance

        Raises:
            RuntimeError: If Redis is not connected
        """
        if cls.client is None:
            raise RuntimeError("Redis is not connected. Call connect() first.")
        return cls.client
