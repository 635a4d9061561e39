"""OIDC verification: fixed eight-argument verify callback plus code flow."""

from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import urlencode

from loguru import logger

from src.cmms_auth.core.exceptions import GENERIC_SSO_FAILURE, AuthError, InvalidCredential
from src.cmms_auth.core.models.identity import FederatedIdentity
from src.cmms_auth.core.roles import normalize_roles
from src.cmms_auth.core.services.federation.client import FederationClient
from src.cmms_auth.core.services.federation.oauth import email_domain, profile_email
from src.cmms_auth.core.services.jwt import JwtVerificationService
from src.cmms_auth.runtime.config.config_data import OIDCProviderConfig

# Checked in order; the first path holding a non-empty value wins.
ROLE_CLAIM_PATHS: tuple[tuple[str, ...], ...] = (
    ("roles",),
    ("groups",),
    ("realm_access", "roles"),
    ("_json", "roles"),
    ("_json", "groups"),
)


def _dig(source: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(source, Mapping):
            return None
        source = source.get(key)
    return source


def extract_roles(*sources: Mapping[str, Any] | None) -> list[str]:
    for source in sources:
        if not source:
            continue
        for path in ROLE_CLAIM_PATHS:
            roles = normalize_roles(_dig(source, path))
            if roles:
                return roles
    return []


class OidcAdapter:
    """Maps verified OIDC claims for one configured provider."""

    protocol = "oidc"

    def __init__(
        self,
        provider: str,
        config: OIDCProviderConfig,
        verifier: JwtVerificationService | None = None,
        client: FederationClient | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self._verifier = verifier
        self._client = client or FederationClient()

    def to_identity(
        self,
        issuer: str | None,
        subject: str | None,
        profile: Mapping[str, Any] | None,
        id_token_claims: Mapping[str, Any] | None,
        params: Mapping[str, Any] | None = None,
    ) -> FederatedIdentity:
        profile = profile or {}
        claims = id_token_claims or {}

        email = None
        claim_email = claims.get("email")
        if isinstance(claim_email, str) and "@" in claim_email:
            email = claim_email.strip().lower()
        email = email or profile_email(profile)
        if not email:
            logger.warning("OIDC provider {} returned no email for {}", self.provider, subject)
            raise InvalidCredential(GENERIC_SSO_FAILURE)

        return FederatedIdentity(
            protocol="oidc",
            provider=self.provider,
            email=email,
            name=claims.get("name") or profile.get("displayName") or profile.get("name"),
            roles=extract_roles(claims, profile),
            subject=subject or claims.get("sub"),
            issuer=issuer or claims.get("iss"),
            domain=email_domain(email),
            tenant_hint=self.config.tenant_id,
            raw_claims={**dict(params or {}), **dict(claims)},
            profile=dict(profile),
        )

    def verify(
        self,
        issuer: str | None,
        subject: str | None,
        profile: Mapping[str, Any] | None,
        id_token_claims: Mapping[str, Any] | None,
        access_token: str | None,
        refresh_token: str | None,
        params: Mapping[str, Any] | None,
        done: Callable[[Exception | None, FederatedIdentity | None], Any],
    ) -> FederatedIdentity | None:
        try:
            identity = self.to_identity(issuer, subject, profile, id_token_claims, params)
        except AuthError as exc:
            done(exc, None)
            return None
        done(None, identity)
        return identity

    def authorization_url(self, state: str, nonce: str) -> str:
        query = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": " ".join(self.config.scopes),
            "state": state,
            "nonce": nonce,
        }
        return f"{self.config.authorization_endpoint}?{urlencode(query)}"

    async def authenticate(self, code: str, nonce: str | None) -> FederatedIdentity:
        """Run the code exchange, verify the ID token and map the result."""
        if self._verifier is None:
            raise InvalidCredential(GENERIC_SSO_FAILURE)
        tokens = await self._client.exchange_code(
            self.config.token_endpoint,
            code,
            self.config.redirect_uri,
            self.config.client_id,
            self.config.client_secret,
        )
        if not tokens.id_token:
            logger.warning("OIDC provider {} returned no id_token", self.provider)
            raise InvalidCredential(GENERIC_SSO_FAILURE)
        claims = await self._verifier.verify_id_token(tokens.id_token, self.config, nonce)

        profile: dict[str, Any] = {}
        if self.config.userinfo_endpoint:
            userinfo = await self._client.fetch_json(
                self.config.userinfo_endpoint, tokens.access_token
            )
            if isinstance(userinfo, dict):
                if userinfo.get("sub") not in (None, claims.get("sub")):
                    logger.warning("Userinfo subject mismatch for provider {}", self.provider)
                    raise InvalidCredential(GENERIC_SSO_FAILURE)
                profile = {
                    "id": userinfo.get("sub"),
                    "displayName": userinfo.get("name"),
                    "emails": [{"value": userinfo["email"]}] if userinfo.get("email") else [],
                    "_json": userinfo,
                }

        outcome: dict[str, Any] = {}

        def done(error: Exception | None, identity: FederatedIdentity | None) -> None:
            outcome["error"] = error
            outcome["identity"] = identity

        self.verify(
            claims.get("iss"),
            claims.get("sub"),
            profile,
            claims,
            tokens.access_token,
            tokens.refresh_token,
            tokens.params,
            done,
        )
        if outcome.get("error") is not None:
            raise outcome["error"]
        return outcome["identity"]
