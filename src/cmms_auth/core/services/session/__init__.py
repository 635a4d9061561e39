from .token_issuer import (
    MFA_CHALLENGE_PURPOSE,
    OAUTH_STATE_PURPOSE,
    ROTATION_PURPOSE,
    SSO_CALLBACK_PURPOSE,
    SessionTokenService,
    cookie_settings,
)

__all__ = [
    "MFA_CHALLENGE_PURPOSE",
    "OAUTH_STATE_PURPOSE",
    "ROTATION_PURPOSE",
    "SSO_CALLBACK_PURPOSE",
    "SessionTokenService",
    "cookie_settings",
]
