"""Rate limiting helpers used by the HTTP layer."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import Any

from fastapi import HTTPException, Request, Response
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
from loguru import logger

from src.cmms_auth.core.security import extract_client_ip
from src.cmms_auth.runtime.context import get_config

RateLimiterType = Callable[[Request, Response], Awaitable[Any]]

RateLimiterFactory = Callable[[int, int, bool, bool], RateLimiterType]

_rate_limiter_factory: RateLimiterFactory | None = None
_local_limiters: list[DefaultLocalRateLimiter] = []
_factory_counter: int = 0
_redis_backed = False


class DefaultLocalRateLimiter:
    """In-memory sliding window limiter keyed by client IP."""

    def __init__(
        self, times: int, milliseconds: int, per_endpoint: bool, per_method: bool
    ) -> None:
        self._hits: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._times = times
        self._seconds = milliseconds / 1000
        self._per_endpoint = per_endpoint
        self._per_method = per_method
        self._last_cleanup = time.monotonic()
        self._cleanup_interval = 60.0

    async def __call__(self, request: Request, response: Response) -> Any:
        await self._throttle(self._make_key(request))

    def _make_key(self, request: Request) -> str:
        parts = [f"ip:{extract_client_ip(request) or 'anonymous'}"]
        if self._per_method:
            parts.append(request.method)
        if self._per_endpoint:
            route = request.scope.get("route")
            template = getattr(route, "path", None)
            parts.append((template or request.url.path).rstrip("/"))
        return ":".join(parts)

    def _cleanup_old_keys(self, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        stale = []
        for key, hits in self._hits.items():
            while hits and hits[0] <= now - self._seconds:
                hits.popleft()
            if not hits:
                stale.append(key)
        for key in stale:
            del self._hits[key]

    async def cleanup(self) -> None:
        async with self._lock:
            self._hits.clear()

    async def _throttle(self, key: str) -> None:
        now = time.monotonic()
        async with self._lock:
            self._cleanup_old_keys(now)
            hits = self._hits[key]
            while hits and hits[0] <= now - self._seconds:
                hits.popleft()
            if len(hits) >= self._times:
                retry_after = max(1, int(self._seconds - (now - hits[0])))
                logger.warning("Rate limit exceeded for {}", key)
                raise HTTPException(
                    status_code=429,
                    detail="Too Many Requests",
                    headers={"Retry-After": str(retry_after)},
                )
            hits.append(now)


def _local_rate_limiter_factory(
    times: int, milliseconds: int, per_endpoint: bool, per_method: bool
) -> RateLimiterType:
    limiter = DefaultLocalRateLimiter(times, milliseconds, per_endpoint, per_method)
    _local_limiters.append(limiter)
    return limiter


def _redis_rate_limiter_factory(
    times: int, milliseconds: int, per_endpoint: bool, per_method: bool
) -> RateLimiterType:
    return RateLimiter(times=times, milliseconds=milliseconds)


async def configure_rate_limiter(
    limiter_factory: RateLimiterFactory | None = None,
    redis_client: Any | None = None,
) -> None:
    """Select the limiter backend: explicit factory, Redis, or in-memory."""
    global _rate_limiter_factory, _factory_counter, _redis_backed

    _create_rate_limiter.cache_clear()
    _factory_counter += 1

    if limiter_factory:
        _rate_limiter_factory = limiter_factory
    elif redis_client is not None:
        await FastAPILimiter.init(redis_client)
        _redis_backed = True
        _rate_limiter_factory = _redis_rate_limiter_factory
        logger.info("Using Redis-backed rate limiter from fastapi-limiter package")
    else:
        _rate_limiter_factory = _local_rate_limiter_factory
        logger.info("Using local in-memory rate limiter")


@lru_cache(maxsize=100)
def _create_rate_limiter(
    requests: int,
    window_ms: int,
    per_endpoint: bool,
    per_method: bool,
    factory_id: int,
) -> RateLimiterType:
    if _rate_limiter_factory is None:
        raise RuntimeError("Rate limiter not configured")
    return _rate_limiter_factory(requests, window_ms, per_endpoint, per_method)


def get_rate_limiter(requests: int | None = None, window_ms: int | None = None) -> RateLimiterType:
    config = get_config().rate_limiter
    return _create_rate_limiter(
        requests if requests is not None else config.requests,
        window_ms if window_ms is not None else config.window_ms,
        config.per_endpoint,
        config.per_method,
        _factory_counter,
    )


def rate_limit(
    requests: int | Callable[[], int] | None = None, window_ms: int | None = None
) -> RateLimiterType:
    """Return a dependency enforcing request quotas.

    ``requests`` may be a callable so per-route limits are read from the
    active configuration at request time.
    """

    async def dependency(request: Request, response: Response) -> Any:
        if not get_config().rate_limiter.enabled or _rate_limiter_factory is None:
            return None
        limit = requests() if callable(requests) else requests
        limiter = get_rate_limiter(limit, window_ms)
        return await limiter(request, response)

    return dependency


async def close_rate_limiter() -> None:
    global _rate_limiter_factory, _redis_backed

    _create_rate_limiter.cache_clear()
    for limiter in _local_limiters:
        await limiter.cleanup()
    _local_limiters.clear()
    if _redis_backed:
        await FastAPILimiter.close()
        _redis_backed = False
    _rate_limiter_factory = None
    logger.info("Rate limiter cleanup completed")
