from typing import Any

import httpx
from cachetools import TTLCache
from loguru import logger

from src.cmms_auth.core.exceptions import ProviderUnavailable
from src.cmms_auth.runtime.config.config_data import OIDCProviderConfig


class JWKSCache:
    """Process-wide TTL cache of provider key sets, keyed by JWKS URL."""

    _JWKS_CACHE: TTLCache[str, dict[str, Any]] = TTLCache(maxsize=32, ttl=3600)

    def get_jwks(self, jwks_url: str) -> dict[str, Any]:
        return self._JWKS_CACHE.get(jwks_url, {})

    def set_jwks(self, jwks_url: str, jwks: dict[str, Any]) -> None:
        self._JWKS_CACHE[jwks_url] = jwks

    def clear_jwks_cache(self) -> None:
        self._JWKS_CACHE.clear()


class JwksService:
    def __init__(self, cache: JWKSCache, timeout: float = 5.0) -> None:
        self._cache = cache
        self._timeout = timeout

    async def fetch_jwks(self, provider: OIDCProviderConfig) -> dict[str, Any]:
        jwks_url = provider.jwks_uri
        jwks = self._cache.get_jwks(jwks_url)
        if jwks:
            return jwks

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(jwks_url)
                resp.raise_for_status()
                jwks = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to fetch JWKS from {}: {}", jwks_url, exc)
            raise ProviderUnavailable() from exc

        self._cache.set_jwks(jwks_url, jwks)
        return jwks
