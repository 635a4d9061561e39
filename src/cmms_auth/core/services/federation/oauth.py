"""OAuth2 verify-callback handling.

Provider strategies invoke the verify callback either as
``(request, access_token, refresh_token, profile, done)`` or, when the
strategy passes the raw token response along, as
``(request, access_token, refresh_token, params, profile, done)``. Both
shapes are reduced to one ``OAuthVerifyArgs`` before any identity logic runs.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from loguru import logger

from src.cmms_auth.core.exceptions import GENERIC_SSO_FAILURE, AuthError, InvalidCredential
from src.cmms_auth.core.models.identity import FederatedIdentity
from src.cmms_auth.core.roles import normalize_roles
from src.cmms_auth.core.services.federation.client import FederationClient, TokenResponse
from src.cmms_auth.runtime.config.config_data import OAuthProviderConfig

VerifyDone = Callable[[Exception | None, FederatedIdentity | None], Any]


@dataclass(frozen=True)
class OAuthVerifyArgs:
    request: Any
    access_token: str | None
    refresh_token: str | None
    profile: Mapping[str, Any]
    done: VerifyDone
    params: Mapping[str, Any] | None = None


def normalize_oauth_args(*args: Any) -> OAuthVerifyArgs:
    """Accept both verify-callback arities and return a single shape.

    The callback is always last, so a callable in the final slot of a six
    argument call means the fourth argument is the token ``params``.

    Raises:
        TypeError: if the arity is not 5 or 6 or the last argument is not callable
    """
    if len(args) not in (5, 6) or not callable(args[-1]):
        raise TypeError(
            "OAuth verify callback expects (request, access, refresh, [params], profile, done)"
        )
    request, access_token, refresh_token, *rest = args
    if len(rest) == 3:
        params, profile, done = rest
    else:
        params = None
        profile, done = rest
    return OAuthVerifyArgs(
        request=request,
        access_token=access_token,
        refresh_token=refresh_token,
        profile=profile or {},
        done=done,
        params=params,
    )


def profile_email(profile: Mapping[str, Any]) -> str | None:
    """First usable email from a provider profile, lowercased."""
    emails = profile.get("emails")
    candidates: list[Any] = []
    if isinstance(emails, list):
        for entry in emails:
            candidates.append(entry.get("value") if isinstance(entry, Mapping) else entry)
    candidates.append(profile.get("email"))
    raw = profile.get("_json")
    if isinstance(raw, Mapping):
        candidates.append(raw.get("email"))

    for candidate in candidates:
        if isinstance(candidate, str) and "@" in candidate:
            return candidate.strip().lower()
    return None


def email_domain(email: str) -> str | None:
    _, _, domain = email.rpartition("@")
    return domain.lower() or None


class OAuthAdapter:
    """Turns an OAuth2 provider profile into a ``FederatedIdentity``."""

    protocol = "oauth2"

    def __init__(
        self,
        provider: str,
        config: OAuthProviderConfig,
        client: FederationClient | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self._client = client or FederationClient()

    @property
    def configured(self) -> bool:
        return bool(self.config.client_id and self.config.client_secret)

    def to_identity(
        self, profile: Mapping[str, Any], params: Mapping[str, Any] | None = None
    ) -> FederatedIdentity:
        email = profile_email(profile)
        if not email:
            logger.warning("{} profile did not include an email", self.provider)
            raise InvalidCredential(GENERIC_SSO_FAILURE)

        raw = profile.get("_json") if isinstance(profile.get("_json"), Mapping) else {}
        domain = raw.get("hd") or profile.get("hd") or email_domain(email)
        roles = normalize_roles(raw.get("roles") or profile.get("roles"))
        return FederatedIdentity(
            protocol="oauth2",
            provider=self.provider,
            email=email,
            name=profile.get("displayName") or raw.get("name") or profile.get("name"),
            roles=roles,
            subject=str(profile["id"]) if profile.get("id") is not None else None,
            domain=domain.lower() if isinstance(domain, str) else None,
            raw_claims=dict(params or {}),
            profile=dict(raw or profile),
        )

    def verify(self, *args: Any) -> FederatedIdentity | None:
        """Verify callback entry point; reports through ``done`` and returns the identity."""
        normalized = normalize_oauth_args(*args)
        try:
            identity = self.to_identity(normalized.profile, normalized.params)
        except AuthError as exc:
            normalized.done(exc, None)
            return None
        normalized.done(None, identity)
        return identity

    async def fetch_profile(self, code: str) -> tuple[TokenResponse, dict[str, Any]]:
        """Exchange ``code`` and load the profile in the passport-style shape.

        Returns:
            ``(tokens, profile)`` where ``profile`` has ``id``, ``displayName``,
            ``emails`` and the raw provider document under ``_json``
        """
        if not self.configured:
            raise InvalidCredential(GENERIC_SSO_FAILURE)
        tokens = await self._client.exchange_code(
            self.config.token_endpoint,
            code,
            self.config.redirect_uri,
            self.config.client_id or "",
            self.config.client_secret,
        )
        raw = await self._client.fetch_json(self.config.userinfo_endpoint, tokens.access_token)
        if not isinstance(raw, dict):
            raw = {}

        emails: list[dict[str, Any]] = []
        if raw.get("email"):
            emails.append({"value": raw["email"]})
        elif self.config.emails_endpoint:
            listed = await self._client.fetch_json(
                self.config.emails_endpoint, tokens.access_token
            )
            if isinstance(listed, list):
                # primary verified address first
                listed = sorted(
                    (e for e in listed if isinstance(e, dict) and e.get("verified", True)),
                    key=lambda e: not e.get("primary"),
                )
                emails.extend({"value": e.get("email")} for e in listed)

        profile = {
            "id": raw.get("sub") or raw.get("id"),
            "displayName": raw.get("name") or raw.get("login"),
            "emails": emails,
            "_json": raw,
        }
        return tokens, profile

    def authorization_url(self, state: str) -> str:
        query = {
            "response_type": "code",
            "client_id": self.config.client_id or "",
            "redirect_uri": self.config.redirect_uri,
            "scope": " ".join(self.config.scopes),
            "state": state,
        }
        return f"{self.config.authorization_endpoint}?{urlencode(query)}"

    async def authenticate(self, request: Any, code: str) -> FederatedIdentity:
        """Code exchange plus profile lookup, reported through the verify callback."""
        tokens, profile = await self.fetch_profile(code)
        outcome: dict[str, Any] = {}

        def done(error: Exception | None, identity: FederatedIdentity | None) -> None:
            outcome["error"] = error
            outcome["identity"] = identity

        self.verify(
            request, tokens.access_token, tokens.refresh_token, tokens.params, profile, done
        )
        if outcome.get("error") is not None:
            raise outcome["error"]
        return outcome["identity"]
