from .identity import (
    FederatedIdentity,
    FederationProtocol,
    ProvisionRequest,
    ProvisionResult,
    TenantResolution,
)
from .login import LoginOutcome, LoginRequest, LoginState
from .session import AuthUser, IssuedSession, SessionBinding, SessionClaims

__all__ = [
    "AuthUser",
    "FederatedIdentity",
    "FederationProtocol",
    "IssuedSession",
    "LoginOutcome",
    "LoginRequest",
    "LoginState",
    "ProvisionRequest",
    "ProvisionResult",
    "SessionBinding",
    "SessionClaims",
    "TenantResolution",
]
