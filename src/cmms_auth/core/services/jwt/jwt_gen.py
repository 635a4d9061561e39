import time
from typing import Any

from authlib.common.security import generate_token
from authlib.jose import JoseError, jwt
from loguru import logger

from src.cmms_auth.core.exceptions import ConfigurationError
from src.cmms_auth.runtime.config.config_data import ConfigData
from src.cmms_auth.runtime.context import get_config

RESERVED_CLAIMS = frozenset({"iss", "sub", "aud", "exp", "iat", "nbf", "jti"})

_warned_dev_secret = False


def resolve_signing_secret(config: ConfigData | None = None) -> str:
    """Return the HMAC secret for session tokens.

    Production requires an explicit secret of at least ``min_secret_length``
    characters. Other environments fall back to a development secret.

    Raises:
        ConfigurationError: If production has no usable secret
    """
    global _warned_dev_secret
    config = config or get_config()
    secret = config.jwt.secret
    if config.app.environment == "production":
        if not secret or len(secret) < config.jwt.min_secret_length:
            logger.error("JWT signing secret missing or too short in production")
            raise ConfigurationError()
        return secret
    if not secret:
        if not _warned_dev_secret:
            logger.warning("JWT_SECRET not set; using the development signing secret")
            _warned_dev_secret = True
        return config.jwt.development_secret
    return secret


class JwtGeneratorService:
    """Signs HS256 session, rotation, state and SSO exchange tokens."""

    def generate_jwt(
        self,
        subject: str,
        claims: dict[str, Any] | None = None,
        expires_in_seconds: int = 900,
        purpose: str | None = None,
    ) -> str:
        """Generate a signed JWT using authlib.

        Args:
            subject: Subject (sub) claim, usually the user id
            claims: Additional claims; registered claim names are ignored
            expires_in_seconds: Token lifetime
            purpose: Optional purpose tag checked by the verifier

        Returns:
            Signed JWT token string

        Raises:
            ConfigurationError: If the signing secret is missing or encoding fails
        """
        config = get_config()
        secret = resolve_signing_secret(config)

        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": config.jwt.issuer,
            "sub": subject,
            "aud": config.jwt.audience,
            "iat": now,
            "nbf": now,
            "exp": now + expires_in_seconds,
            "jti": generate_token(16),
        }
        if purpose:
            payload["purpose"] = purpose
        if claims:
            payload.update({k: v for k, v in claims.items() if k not in RESERVED_CLAIMS})

        try:
            token = jwt.encode({"alg": config.jwt.algorithm, "typ": "JWT"}, payload, secret)
        except JoseError as e:
            logger.error("JWT encoding failed: {}", type(e).__name__)
            raise ConfigurationError("Failed to sign token") from e

        return token.decode() if isinstance(token, bytes) else token
