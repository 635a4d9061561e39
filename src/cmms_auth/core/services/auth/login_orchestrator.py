"""Login state machine for local credentials, MFA, rotation and SSO completion."""

from datetime import timedelta
from typing import Any

from fastapi import Request
from loguru import logger
from sqlmodel import Session

from src.cmms_auth.core.exceptions import (
    GENERIC_SSO_FAILURE,
    AccountDisabled,
    AccountLocked,
    AuthError,
    InvalidCredential,
    InvalidMfaCode,
    InvalidRotationToken,
    InvalidToken,
    MfaNotConfigured,
    RotationNotRequired,
    RotationRequired,
    TenantMismatch,
    TooManyAttempts,
    UserNotFound,
    WeakPassword,
)
from src.cmms_auth.core.models.identity import (
    FederatedIdentity,
    ProvisionRequest,
    TenantResolution,
)
from src.cmms_auth.core.models.login import LoginOutcome, LoginRequest, LoginState
from src.cmms_auth.core.models.session import IssuedSession
from src.cmms_auth.core.security import validate_password_strength
from src.cmms_auth.core.services.audit import AuditService
from src.cmms_auth.core.services.auth.attempt_limiter import FailureLimiter
from src.cmms_auth.core.services.credentials import CredentialVerifier
from src.cmms_auth.core.services.mfa import MfaEngine, MfaEnrollment
from src.cmms_auth.core.services.session import SessionTokenService
from src.cmms_auth.core.services.tenancy import TenantResolver
from src.cmms_auth.core.services.user import IdentityProvisioningService
from src.cmms_auth.entities.core._base import utcnow
from src.cmms_auth.entities.core.user import User, UserRepository, normalize_email
from src.cmms_auth.runtime.context import get_config

SSO_AUDIT_ACTIONS = {
    "oauth2": "oauth_login_success",
    "oidc": "oidc_login_success",
    "saml": "saml_login_success",
}


class LoginOrchestrator:
    """Drives one login attempt from account lookup to a terminal state.

    Rejections raise an ``AuthError`` after the audit event is written;
    pending and successful terminals return a ``LoginOutcome``. Only the
    ISSUE_TOKEN state ever produces session tokens.
    """

    def __init__(
        self,
        db_session: Session,
        credentials: CredentialVerifier,
        tokens: SessionTokenService,
        limiter: FailureLimiter,
        audit: AuditService | None = None,
        mfa: MfaEngine | None = None,
    ) -> None:
        self._users = UserRepository(db_session)
        self._credentials = credentials
        self._tokens = tokens
        self._limiter = limiter
        self._audit = audit or AuditService(db_session)
        self._mfa = mfa or MfaEngine(self._users)
        self._resolver = TenantResolver(self._users)
        self._provisioning = IdentityProvisioningService(db_session, credentials, self._mfa)

    @property
    def users(self) -> UserRepository:
        return self._users

    @property
    def mfa(self) -> MfaEngine:
        return self._mfa

    def _reject(
        self,
        error: AuthError,
        action: str,
        trail: list[LoginState],
        user: User | None = None,
        tenant_id: str | None = None,
        **details: Any,
    ) -> AuthError:
        trail.append(LoginState.REJECTED)
        self._audit.record(
            action,
            tenant_id=tenant_id or (user.tenant_id if user else None),
            user_id=user.id if user else None,
            details={"reason": error.code, "trail": [s.value for s in trail], **details},
        )
        return error

    def _check_limiter(
        self,
        key: str,
        action: str,
        trail: list[LoginState],
        user: User | None = None,
        **details: Any,
    ) -> None:
        retry_after = self._limiter.retry_after(key)
        if retry_after:
            raise self._reject(
                TooManyAttempts(headers={"Retry-After": str(retry_after)}),
                action,
                trail,
                user=user,
                cause="rate_limited",
                **details,
            )

    def login(self, login: LoginRequest, request: Request) -> LoginOutcome:
        email = normalize_email(login.email)
        key = f"login:{email}"
        trail = [LoginState.CHECK_ACCOUNT]
        self._check_limiter(
            key, "login_failed", trail, tenant_id=login.tenant_hint, email=email
        )

        user = self._users.get_by_email(email)
        if user is None or not user.active:
            # keep the miss path as expensive as a real verification
            self._credentials.verify(None, login.password)
            self._limiter.record_failure(key)
            error = InvalidCredential() if user is None else AccountDisabled()
            raise self._reject(
                error,
                "login_failed",
                trail,
                user=user,
                tenant_id=login.tenant_hint,
                email=email,
                cause="unknown_account" if user is None else "inactive",
            )

        now = utcnow()
        if user.lockout_until and user.lockout_until > now:
            retry_after = int((user.lockout_until - now).total_seconds()) + 1
            raise self._reject(
                AccountLocked(headers={"Retry-After": str(retry_after)}),
                "login_locked",
                trail,
                user=user,
            )

        trail.append(LoginState.CHECK_TENANT_MATCH)
        if login.tenant_hint and user.tenant_id and login.tenant_hint != user.tenant_id:
            raise self._reject(
                TenantMismatch(),
                "login_tenant_mismatch",
                trail,
                user=user,
                requested_tenant=login.tenant_hint,
            )

        trail.append(LoginState.VERIFY_CREDENTIAL)
        check = self._credentials.verify(user.password_hash, login.password)
        if not check.valid:
            self._limiter.record_failure(key)
            lockout = get_config().security.lockout
            user = self._users.record_failed_login(
                user.id,
                now,
                threshold=lockout.threshold,
                window=timedelta(milliseconds=lockout.window_ms),
                duration=timedelta(milliseconds=lockout.duration_ms),
            )
            locked = bool(user.lockout_until and user.lockout_until > now)
            raise self._reject(
                InvalidCredential(),
                "login_locked" if locked else "login_failed",
                trail,
                user=user,
                failed_attempts=user.failed_login_count,
            )

        self._limiter.reset(key)
        upgraded_hash = None
        if check.needs_upgrade:
            upgraded_hash = self._credentials.hash(login.password)
            logger.info("Upgraded stored credential for user {}", user.id)
        user = self._users.record_successful_login(
            user.id,
            now,
            password_hash=upgraded_hash,
            tenant_id=login.tenant_hint if not user.tenant_id else None,
        )
        if not user.active:
            raise self._reject(
                AccountDisabled(), "login_failed", trail, user=user, cause="inactive"
            )

        if user.requires_rotation:
            return self._rotation_required(user, trail)
        if self._mfa.requires_challenge(user):
            return self._mfa_required(user, trail, login.remember)
        return self._issue(user, request, login.remember, trail, "login_success", provider="local")

    def _rotation_required(self, user: User, trail: list[LoginState]) -> LoginOutcome:
        trail.append(LoginState.ROTATION_REQUIRED)
        secret = self._mfa.ensure_secret(user)
        refreshed = self._users.get(user.id) or user
        rotation_token = self._tokens.issue_rotation_token(refreshed)
        self._audit.record(
            "password_rotation_required",
            tenant_id=refreshed.tenant_id,
            user_id=refreshed.id,
            details={"bootstrap": refreshed.bootstrap_account},
        )
        return LoginOutcome(
            state=LoginState.ROTATION_REQUIRED,
            user=refreshed,
            rotation_token=rotation_token,
            mfa_secret=secret,
            trail=trail,
        )

    def _mfa_required(
        self, user: User, trail: list[LoginState], remember: bool
    ) -> LoginOutcome:
        trail.append(LoginState.MFA_REQUIRED)
        self._audit.record(
            "mfa_challenge",
            tenant_id=user.tenant_id,
            user_id=user.id,
            details={"enrolled": bool(user.mfa_enabled and user.mfa_secret)},
        )
        return LoginOutcome(
            state=LoginState.MFA_REQUIRED,
            user=user,
            trail=trail,
            details={"challenge": self._tokens.issue_mfa_challenge(user, remember)},
        )

    def _issue(
        self,
        user: User,
        request: Request,
        remember: bool,
        trail: list[LoginState],
        action: str,
        **details: Any,
    ) -> LoginOutcome:
        trail.append(LoginState.ISSUE_TOKEN)
        session = self._tokens.issue(user, request, remember)
        self._audit.record(
            action,
            tenant_id=user.tenant_id,
            user_id=user.id,
            details={"remember": remember, **details},
        )
        return LoginOutcome(state=LoginState.ISSUE_TOKEN, user=user, session=session, trail=trail)

    # MFA

    def _load_active(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFound()
        if not user.active:
            raise AccountDisabled()
        return user

    def begin_mfa_setup(
        self, user_id: str, challenge: str | None, session_user_id: str | None = None
    ) -> tuple[User, MfaEnrollment]:
        """Start TOTP enrollment.

        Allowed for the signed-in user themselves, or for a user holding a
        fresh first-factor challenge from ``login``.
        """
        user = self._load_active(user_id)
        if session_user_id != user.id:
            self._tokens.verify_mfa_challenge(challenge, user)
        if user.mfa_enabled and user.mfa_secret:
            raise InvalidCredential("MFA already configured")
        enrollment = self._mfa.enroll(user)
        self._audit.record("mfa_setup", tenant_id=user.tenant_id, user_id=user.id)
        return user, enrollment

    def verify_mfa(
        self,
        user_id: str,
        code: str,
        challenge: str | None,
        request: Request,
        remember: bool | None = None,
    ) -> LoginOutcome:
        user = self._load_active(user_id)
        trail = [LoginState.MFA_REQUIRED]
        try:
            payload = self._tokens.verify_mfa_challenge(challenge, user)
            if user.requires_rotation:
                raise RotationRequired()
            if not user.mfa_secret:
                raise MfaNotConfigured()
        except AuthError as exc:
            raise self._reject(exc, "mfa_failed", trail, user=user)

        key = f"mfa:{user.id}"
        self._check_limiter(key, "mfa_failed", trail, user=user)
        if not self._mfa.verify(user, code):
            self._limiter.record_failure(key)
            raise self._reject(InvalidMfaCode(), "mfa_failed", trail, user=user)
        self._limiter.reset(key)

        user = self._users.get(user.id) or user
        if remember is None:
            remember = bool(payload.get("remember"))
        return self._issue(user, request, remember, trail, "mfa_validated")

    # Bootstrap rotation

    def rotate_password(self, rotation_token: str, new_password: str, mfa_code: str) -> User:
        """Replace a bootstrap or expired password.

        The rotation token and a current TOTP code must both validate. On
        success the rotation flags clear, MFA becomes mandatory for the
        account and every previously issued token stops working.
        """
        trail = [LoginState.ROTATION_REQUIRED]
        user: User | None = None
        try:
            payload = self._tokens.verify_rotation_token(rotation_token)
            user = self._users.get(payload["sub"])
            if user is None or not user.active:
                raise InvalidRotationToken()
            if payload.get("tokenVersion") != user.token_version:
                raise InvalidRotationToken()
            if not user.requires_rotation:
                raise RotationNotRequired()
            if not user.mfa_secret:
                raise MfaNotConfigured()
        except AuthError as exc:
            raise self._reject(exc, "password_rotation_failed", trail, user=user)

        if not self._mfa.check_code(user.mfa_secret, mfa_code):
            raise self._reject(InvalidMfaCode(), "mfa_failed", trail, user=user, flow="rotation")

        problems = validate_password_strength(new_password)
        if problems:
            raise self._reject(
                WeakPassword(payload={"errors": problems}),
                "password_rotation_failed",
                trail,
                user=user,
            )

        user.password_hash = self._credentials.hash(new_password)
        user.password_expired = False
        user.bootstrap_account = False
        user.mfa_enabled = True
        user = self._users.save(user)
        version = self._tokens.revoke_all(user.id, self._users)
        self._audit.record(
            "bootstrap_rotation",
            tenant_id=user.tenant_id,
            user_id=user.id,
            details={"token_version": version},
        )
        return self._users.get(user.id) or user

    # Federated logins

    def complete_federated_login(
        self, identity: FederatedIdentity, force: bool = False
    ) -> User:
        """Resolve tenant, provision and audit an externally verified identity."""
        audit_details = {"provider": identity.provider, "protocol": identity.protocol}
        resolution = TenantResolution()
        try:
            resolution = self._resolver.resolve(
                identity.provider,
                identity.email,
                domain=identity.domain,
                claims=identity.raw_claims,
                profile=identity.profile,
            )
            if (
                resolution.user_id
                and identity.tenant_hint
                and resolution.tenant_id
                and resolution.tenant_id != identity.tenant_hint
            ):
                raise TenantMismatch()

            result = self._provisioning.provision_from_identity(
                ProvisionRequest(
                    tenant_id=resolution.tenant_id or identity.tenant_hint,
                    email=identity.email,
                    roles=identity.roles,
                    site_id=resolution.site_id,
                    name=identity.name,
                    skip_mfa=True,
                ),
                force=force,
            )
            if not result.user.active:
                raise AccountDisabled(GENERIC_SSO_FAILURE)
        except AuthError as exc:
            self._audit.record(
                "sso_login_failed",
                tenant_id=resolution.tenant_id or identity.tenant_hint,
                user_id=resolution.user_id,
                details={**audit_details, "reason": exc.code, "email": identity.email},
            )
            raise

        user = result.user
        self._audit.record(
            SSO_AUDIT_ACTIONS[identity.protocol],
            tenant_id=user.tenant_id,
            user_id=user.id,
            details={**audit_details, "created": result.created},
        )
        return user

    def exchange_sso_token(self, sso_token: str, request: Request) -> LoginOutcome:
        """Turn the short-lived callback token into a bound session."""
        payload = self._tokens.consume_sso_token(sso_token)
        user = self._users.get(payload["sub"])
        if user is None or not user.active:
            raise InvalidToken()
        if payload.get("tokenVersion") != user.token_version:
            raise InvalidToken()

        trail = [LoginState.CHECK_ACCOUNT]
        if self._mfa.requires_challenge(user) and not self._mfa.policy.sso_trusted_second_factor:
            return self._mfa_required(user, trail, remember=False)
        return self._issue(
            user, request, False, trail, "sso_session_issued", provider=payload.get("provider")
        )

    def failed_federated_login(self, provider: str, reason: str, **details: Any) -> None:
        self._audit.record(
            "sso_login_failed", details={"provider": provider, "reason": reason, **details}
        )

    # Session lifecycle

    def refresh(self, refresh_token: str | None, request: Request) -> tuple[User, IssuedSession]:
        return self._tokens.refresh(refresh_token, request, self._users)

    def logout(self, user: User) -> int:
        version = self._tokens.revoke_all(user.id, self._users)
        self._audit.record(
            "logout", tenant_id=user.tenant_id, user_id=user.id, details={"token_version": version}
        )
        return version
