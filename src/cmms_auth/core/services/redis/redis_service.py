"""Redis client lifecycle for the Redis-backed rate limiter."""

import redis.asyncio as redis_async
from loguru import logger
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError
from redis.retry import Retry

from src.cmms_auth.runtime.config.config_data import RedisConfig
from src.cmms_auth.runtime.context import get_config


class RedisService:
    """Owns the optional Redis connection pool.

    When Redis is disabled or has no URL the service stays inert and
    ``client`` is None, which makes the limiter fall back to memory.
    """

    def __init__(self, config: RedisConfig | None = None) -> None:
        redis_config = config or get_config().redis
        self._client: redis_async.Redis | None = None

        if not redis_config.enabled:
            logger.info("Redis is disabled, service will not connect")
            return
        if not redis_config.connection_string:
            logger.warning("Redis URL not configured, service will not connect")
            return

        self._client = redis_async.from_url(
            redis_config.connection_string,
            encoding="utf-8",
            decode_responses=redis_config.decode_responses,
            socket_timeout=5,
            socket_connect_timeout=5,
            health_check_interval=30,
            retry=Retry(ExponentialBackoff(base=1, cap=10), retries=3),
            client_name="cmms_auth",
        )
        logger.info("Redis client initialized")

    @property
    def client(self) -> redis_async.Redis | None:
        return self._client

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.error("Redis health check failed: {}", exc)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")
