"""Authentication error taxonomy.

Each error carries the HTTP status and the public message the API returns.
Credential, disabled-account and unknown-email failures share one public
message so callers cannot enumerate accounts.
"""

from __future__ import annotations

from typing import Any

GENERIC_LOGIN_FAILURE = "Invalid email or password."
GENERIC_SSO_FAILURE = "Authentication failed"


class AuthError(Exception):
    status_code: int = 400
    code: str = "auth.error"
    message: str = "Authentication error"

    def __init__(
        self,
        message: str | None = None,
        *,
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message or self.message
        self.payload = dict(payload or {})
        self.headers = headers
        super().__init__(self.message)

    def to_response(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, **self.payload}


class InvalidCredential(AuthError):
    code = "auth.invalid_credentials"
    message = GENERIC_LOGIN_FAILURE


class AccountDisabled(InvalidCredential):
    """Surfaces exactly like ``InvalidCredential``; the reason stays server-side."""


class AccountLocked(AuthError):
    status_code = 423
    code = "auth.locked"
    message = "Account temporarily locked"


class TenantMismatch(AuthError):
    status_code = 403
    code = "auth.tenant_mismatch"
    message = "Invalid tenant for user"


class RotationRequired(AuthError):
    status_code = 423
    code = "auth.rotation_required"
    message = "Password rotation required"


class InvalidMfaCode(AuthError):
    code = "auth.invalid_mfa"
    message = "Invalid MFA token"


class MfaNotConfigured(AuthError):
    code = "auth.mfa_not_configured"
    message = "MFA not configured"


class InvalidRotationToken(AuthError):
    status_code = 401
    code = "auth.invalid_rotation_token"
    message = "Invalid or expired rotation token"


class RotationNotRequired(AuthError):
    code = "auth.rotation_not_required"
    message = "Rotation not required"


class WeakPassword(AuthError):
    code = "auth.weak_password"
    message = "Password does not meet requirements"


class DuplicateAccount(AuthError):
    code = "auth.duplicate_account"
    message = "Email already registered"


class InvalidInvite(AuthError):
    code = "auth.invalid_invite"
    message = "Invalid or expired invite"


class InvalidToken(AuthError):
    status_code = 401
    code = "auth.invalid_token"
    message = "Unauthorized"


class UserNotFound(AuthError):
    status_code = 404
    code = "auth.user_not_found"
    message = "User not found"


class UnsupportedProvider(AuthError):
    code = "auth.unsupported_provider"
    message = "Unsupported provider"


class ProviderDisabled(AuthError):
    status_code = 404
    code = "auth.provider_disabled"
    message = "Not found"


class ProviderUnavailable(AuthError):
    status_code = 502
    code = "auth.provider_unavailable"
    message = GENERIC_SSO_FAILURE


class TenantUnresolved(AuthError):
    code = "auth.tenant_unresolved"
    message = "Tenant resolution failed for SSO user"


class TenantRequired(AuthError):
    code = "auth.tenant_required"
    message = "Tenant is required"


class SamlAssertionError(InvalidCredential):
    code = "auth.saml_missing_email"
    message = "SAML assertion missing email"


class ConfigurationError(AuthError):
    status_code = 500
    code = "auth.configuration"
    message = "Authentication is not configured"


class TooManyAttempts(AuthError):
    status_code = 429
    code = "auth.too_many_attempts"
    message = "Too many attempts. Try again later."


class MfaChallengeRequired(AuthError):
    status_code = 401
    code = "auth.mfa_challenge_required"
    message = "MFA challenge expired. Sign in again."
