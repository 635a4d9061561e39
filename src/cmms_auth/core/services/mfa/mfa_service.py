"""TOTP enrollment and verification."""

from dataclasses import dataclass

import pyotp
from loguru import logger

from src.cmms_auth.entities.core.user import User, UserRepository
from src.cmms_auth.runtime.config.config_data import MFAConfig
from src.cmms_auth.runtime.context import get_config


@dataclass(frozen=True)
class MfaEnrollment:
    secret: str
    current_code: str
    provisioning_uri: str


class MfaEngine:
    """Time-based one-time codes with a configurable enforcement policy."""

    def __init__(self, user_repo: UserRepository, policy: MFAConfig | None = None) -> None:
        self._users = user_repo
        self._policy = policy

    @property
    def policy(self) -> MFAConfig:
        return self._policy or get_config().mfa

    def enroll(self, user: User) -> MfaEnrollment:
        """Store a fresh, unverified secret and return a code for confirmation."""
        secret = pyotp.random_base32()
        self._users.set_mfa_secret(user.id, secret)
        totp = pyotp.TOTP(secret)
        logger.info("MFA enrollment started for user {}", user.id)
        return MfaEnrollment(
            secret=secret,
            current_code=totp.now(),
            provisioning_uri=totp.provisioning_uri(
                name=user.email, issuer_name=self.policy.issuer_name
            ),
        )

    def ensure_secret(self, user: User) -> str:
        """Return the user's secret, generating an unverified one if missing."""
        if user.mfa_secret:
            return user.mfa_secret
        secret = pyotp.random_base32()
        self._users.set_mfa_secret(user.id, secret)
        return secret

    def check_code(self, secret: str | None, code: str | None, window: int | None = None) -> bool:
        """Pure code check; accepts ``window`` steps of drift either side."""
        if not secret or not code:
            return False
        valid_window = self.policy.valid_window if window is None else window
        return pyotp.TOTP(secret).verify(code.strip(), valid_window=valid_window)

    def verify(self, user: User, code: str | None, window: int | None = None) -> bool:
        """Check ``code`` and complete a pending enrollment on success."""
        if not self.check_code(user.mfa_secret, code, window):
            return False
        if not user.mfa_enabled:
            self._users.enable_mfa(user.id)
            logger.info("MFA enrollment confirmed for user {}", user.id)
        return True

    def requires_challenge(self, user: User) -> bool:
        return user.mfa_enabled or self.policy.enforced

    def initial_mfa_enabled(self, skip_mfa: bool) -> bool:
        """MFA flag for a newly provisioned SSO account."""
        if skip_mfa and self.policy.sso_trusted_second_factor:
            return False
        return self.policy.enforced
