"""Session token issuance, verification and cookie policy."""

from threading import Lock
from typing import Any

from cachetools import TTLCache
from fastapi import Request, Response
from loguru import logger

from src.cmms_auth.core.exceptions import (
    AccountDisabled,
    InvalidRotationToken,
    InvalidToken,
    MfaChallengeRequired,
)
from src.cmms_auth.core.models.session import IssuedSession, SessionClaims, TokenType
from src.cmms_auth.core.roles import role_set
from src.cmms_auth.core.security import build_session_binding, is_session_binding_valid
from src.cmms_auth.core.services.jwt import JwtGeneratorService, JwtVerificationService
from src.cmms_auth.entities.core.user import User, UserRepository
from src.cmms_auth.runtime.context import get_config

ROTATION_PURPOSE = "bootstrap-rotation"
OAUTH_STATE_PURPOSE = "oauth-state"
SSO_CALLBACK_PURPOSE = "sso-callback"
MFA_CHALLENGE_PURPOSE = "mfa-challenge"


def cookie_settings(max_age: int | None = None) -> dict[str, Any]:
    """Cookie attributes shared by the access and refresh cookies."""
    config = get_config()
    secure = config.security.secure_cookies
    if secure is None:
        secure = config.app.environment == "production"
    settings: dict[str, Any] = {
        "httponly": True,
        "secure": secure,
        "samesite": config.security.cookie_samesite,
        "path": "/",
    }
    if max_age is not None:
        settings["max_age"] = max_age
    return settings


class SessionTokenService:
    """Signs and validates access/refresh tokens bound to the client context.

    Tokens embed the user's ``token_version``; bumping the stored version
    (logout, password rotation) invalidates every token issued before it.
    """

    def __init__(
        self, generator: JwtGeneratorService, verifier: JwtVerificationService
    ) -> None:
        self._generator = generator
        self._verifier = verifier
        # jti of exchanged SSO tokens, kept a little longer than the tokens live
        self._consumed_sso: TTLCache[str, bool] = TTLCache(
            maxsize=10_000, ttl=get_config().session.sso_token_ttl_seconds + 60
        )
        self._consumed_lock = Lock()

    @staticmethod
    def max_age(remember: bool) -> int:
        session = get_config().session
        return session.remember_max_age_seconds if remember else session.default_max_age_seconds

    def issue(self, user: User, request: Request, remember: bool = False) -> IssuedSession:
        if not user.active:
            logger.warning("Refusing to issue tokens for inactive user {}", user.id)
            raise AccountDisabled()

        roles = role_set(user.role, user.roles)
        binding = build_session_binding(request)
        claims: dict[str, Any] = {
            "email": user.email,
            "tenantId": user.tenant_id,
            "siteId": user.site_id,
            "role": roles[0],
            "roles": roles,
            "tokenVersion": user.token_version,
            "session": binding.to_claim(),
            "remember": remember,
        }
        max_age = self.max_age(remember)
        access = self._generator.generate_jwt(
            user.id,
            {**claims, "type": "access"},
            expires_in_seconds=get_config().session.access_token_ttl_seconds,
        )
        refresh = self._generator.generate_jwt(
            user.id, {**claims, "type": "refresh"}, expires_in_seconds=max_age
        )
        return IssuedSession(
            access_token=access, refresh_token=refresh, max_age=max_age, remember=remember
        )

    def decode(self, token: str, token_type: TokenType) -> SessionClaims:
        payload = self._verifier.verify_jwt(token)
        try:
            claims = SessionClaims.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc
        if claims.token_type != token_type:
            raise InvalidToken()
        return claims

    def authenticate(
        self,
        token: str | None,
        request: Request,
        users: UserRepository,
        token_type: TokenType = "access",
    ) -> tuple[User, SessionClaims]:
        """Resolve the user behind ``token`` or raise ``InvalidToken``.

        Checks signature and expiry, client binding, that the account is
        still active, and that the token version matches the stored one.
        """
        if not token:
            raise InvalidToken()
        claims = self.decode(token, token_type)

        if get_config().security.enforce_session_binding and not is_session_binding_valid(
            claims.binding, request
        ):
            logger.warning("Session binding mismatch for user {}", claims.user_id)
            raise InvalidToken()

        user = users.get(claims.user_id)
        if user is None or not user.active:
            raise InvalidToken()
        if user.token_version != claims.token_version:
            logger.info("Stale token version for user {}", user.id)
            raise InvalidToken()
        return user, claims

    def refresh(
        self, refresh_token: str | None, request: Request, users: UserRepository
    ) -> tuple[User, IssuedSession]:
        user, claims = self.authenticate(refresh_token, request, users, "refresh")
        return user, self.issue(user, request, remember=claims.remember)

    def revoke_all(self, user_id: str, users: UserRepository) -> int:
        """Invalidate every outstanding token for ``user_id``."""
        return users.increment_token_version(user_id)

    def set_session_cookies(self, response: Response, session: IssuedSession) -> None:
        names = get_config().session
        response.set_cookie(
            names.access_cookie_name, session.access_token, **cookie_settings(session.max_age)
        )
        response.set_cookie(
            names.refresh_cookie_name, session.refresh_token, **cookie_settings(session.max_age)
        )

    def clear_session_cookies(self, response: Response) -> None:
        names = get_config().session
        settings = cookie_settings()
        settings.pop("max_age", None)
        for name in (names.access_cookie_name, names.refresh_cookie_name):
            response.delete_cookie(
                name,
                path=settings["path"],
                secure=settings["secure"],
                httponly=settings["httponly"],
                samesite=settings["samesite"],
            )

    # Purpose-tagged short-lived tokens

    def issue_rotation_token(self, user: User) -> str:
        return self._generator.generate_jwt(
            user.id,
            {"tokenVersion": user.token_version},
            expires_in_seconds=get_config().session.rotation_token_ttl_seconds,
            purpose=ROTATION_PURPOSE,
        )

    def verify_rotation_token(self, token: str | None) -> dict[str, Any]:
        if not token:
            raise InvalidRotationToken()
        try:
            return self._verifier.verify_jwt(token, purpose=ROTATION_PURPOSE)
        except InvalidToken as exc:
            raise InvalidRotationToken() from exc

    def issue_state_token(
        self, provider: str, redirect: str, nonce: str, tenant_id: str | None = None
    ) -> str:
        return self._generator.generate_jwt(
            provider,
            {"nonce": nonce, "redirect": redirect, "tenantId": tenant_id},
            expires_in_seconds=get_config().oauth.state_ttl_seconds,
            purpose=OAUTH_STATE_PURPOSE,
        )

    def verify_state_token(self, token: str | None, provider: str) -> dict[str, Any]:
        if not token:
            raise InvalidToken("Invalid state")
        payload = self._verifier.verify_jwt(token, purpose=OAUTH_STATE_PURPOSE)
        if payload.get("sub") != provider:
            raise InvalidToken("Invalid state")
        return payload

    def issue_sso_token(self, user: User, provider: str, redirect: str | None) -> str:
        return self._generator.generate_jwt(
            user.id,
            {
                "tenantId": user.tenant_id,
                "siteId": user.site_id,
                "provider": provider,
                "redirect": redirect,
                "tokenVersion": user.token_version,
            },
            expires_in_seconds=get_config().session.sso_token_ttl_seconds,
            purpose=SSO_CALLBACK_PURPOSE,
        )

    def verify_sso_token(self, token: str | None) -> dict[str, Any]:
        if not token:
            raise InvalidToken()
        return self._verifier.verify_jwt(token, purpose=SSO_CALLBACK_PURPOSE)

    def consume_sso_token(self, token: str | None) -> dict[str, Any]:
        """Verify an SSO exchange token and mark it used; a second exchange fails."""
        payload = self.verify_sso_token(token)
        jti = payload.get("jti")
        with self._consumed_lock:
            if not jti or jti in self._consumed_sso:
                logger.warning("Replayed SSO exchange token for user {}", payload.get("sub"))
                raise InvalidToken()
            self._consumed_sso[jti] = True
        return payload

    def issue_mfa_challenge(self, user: User, remember: bool = False) -> str:
        """Proof that ``user`` passed the first factor moments ago."""
        return self._generator.generate_jwt(
            user.id,
            {"tokenVersion": user.token_version, "remember": remember},
            expires_in_seconds=get_config().session.mfa_challenge_ttl_seconds,
            purpose=MFA_CHALLENGE_PURPOSE,
        )

    def verify_mfa_challenge(self, token: str | None, user: User) -> dict[str, Any]:
        if not token:
            raise MfaChallengeRequired()
        try:
            payload = self._verifier.verify_jwt(token, purpose=MFA_CHALLENGE_PURPOSE)
        except InvalidToken as exc:
            raise MfaChallengeRequired() from exc
        if payload.get("sub") != user.id or payload.get("tokenVersion") != user.token_version:
            raise MfaChallengeRequired()
        return payload

    def set_mfa_challenge_cookie(self, response: Response, token: str) -> None:
        session = get_config().session
        response.set_cookie(
            session.mfa_challenge_cookie_name,
            token,
            **cookie_settings(session.mfa_challenge_ttl_seconds),
        )

    def clear_mfa_challenge_cookie(self, response: Response) -> None:
        settings = cookie_settings()
        response.delete_cookie(
            get_config().session.mfa_challenge_cookie_name,
            path=settings["path"],
            secure=settings["secure"],
            httponly=settings["httponly"],
            samesite=settings["samesite"],
        )
