"""HTTP client for provider token exchange and profile lookups."""

from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict

from src.cmms_auth.core.exceptions import ProviderUnavailable


class TokenResponse(BaseModel):
    """Token endpoint response; extra provider parameters are kept."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    @property
    def params(self) -> dict[str, Any]:
        """Everything the provider returned besides the tokens themselves."""
        return {
            k: v
            for k, v in self.model_dump().items()
            if k not in {"access_token", "refresh_token", "id_token"} and v is not None
        }


class FederationClient:
    """Blocking-from-the-caller's-view provider I/O, always with a timeout.

    Every transport or HTTP error is logged here and surfaces as
    ``ProviderUnavailable`` so callers can only report a generic failure.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    async def exchange_code(
        self,
        token_endpoint: str,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str | None,
    ) -> TokenResponse:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
        }
        auth = httpx.BasicAuth(client_id, client_secret) if client_secret else None
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    token_endpoint,
                    data=data,
                    auth=auth,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                payload = response.json()
            return TokenResponse(**payload)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Token exchange with {} failed: {}", token_endpoint, exc)
            raise ProviderUnavailable() from exc

    async def fetch_json(self, url: str, access_token: str) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(
                    url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Profile request to {} failed: {}", url, exc)
            raise ProviderUnavailable() from exc
