from typing import Any

from authlib.jose import JoseError, JsonWebKey, jwt
from loguru import logger

from src.cmms_auth.core.exceptions import InvalidToken
from src.cmms_auth.core.services.jwt.jwks import JwksService
from src.cmms_auth.core.services.jwt.jwt_gen import resolve_signing_secret
from src.cmms_auth.runtime.config.config_data import OIDCProviderConfig
from src.cmms_auth.runtime.context import get_config


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


class JwtVerificationService:
    """Verifies locally issued tokens and provider ID tokens."""

    def __init__(self, jwks_service: JwksService) -> None:
        self._jwks_service = jwks_service

    def verify_jwt(self, token: str, purpose: str | None = None) -> dict[str, Any]:
        """Verify a token this service signed and return its payload.

        When ``purpose`` is given the token must carry exactly that purpose
        tag; session tokens carry none, so a rotation or state token can never
        pass as a session and vice versa.

        Raises:
            InvalidToken: On any signature, claim or purpose failure
            ConfigurationError: If no signing secret is available
        """
        config = get_config()
        secret = resolve_signing_secret(config)
        claims_options = {
            "iss": {"essential": True, "values": [config.jwt.issuer]},
            "aud": {"essential": True, "values": [config.jwt.audience]},
            "exp": {"essential": True},
            "sub": {"essential": True},
        }
        try:
            claims = jwt.decode(token, secret, claims_options=claims_options)
            claims.validate(leeway=config.jwt.clock_skew)
        except (JoseError, ValueError) as exc:
            logger.debug("Rejected token: {}", type(exc).__name__)
            raise InvalidToken() from exc

        if claims.get("purpose") != purpose:
            logger.debug("Rejected token with unexpected purpose")
            raise InvalidToken()
        return dict(claims)

    async def verify_id_token(
        self,
        token: str,
        provider: OIDCProviderConfig,
        expected_nonce: str | None = None,
    ) -> dict[str, Any]:
        """Verify an OIDC ID token against the provider's JWKS."""
        config = get_config()
        jwks = await self._jwks_service.fetch_jwks(provider)
        claims_options = {
            "iss": {"essential": True, "values": [provider.issuer.rstrip("/"), provider.issuer]},
            "aud": {"essential": True, "values": [provider.client_id]},
            "sub": {"essential": True},
        }
        try:
            claims = jwt.decode(
                token, JsonWebKey.import_key_set(jwks), claims_options=claims_options
            )
            claims.validate(leeway=config.jwt.clock_skew)
        except (JoseError, ValueError) as exc:
            logger.warning("ID token rejected for issuer {}: {}", provider.issuer, type(exc).__name__)
            raise InvalidToken() from exc

        if expected_nonce is not None and claims.get("nonce") != expected_nonce:
            raise InvalidToken("Invalid/missing nonce")

        azp = claims.get("azp")
        aud = _as_list(claims.get("aud"))
        if len(aud) > 1 and azp != provider.client_id:
            raise InvalidToken("Invalid azp for multi-audience token")

        return dict(claims)
