"""Core services exports."""

from .audit import AuditService
from .auth import FailureLimiter, LoginOrchestrator
from .credentials import CredentialCheck, CredentialVerifier
from .database import DbSessionService
from .federation import FederationClient, FederationRegistry, build_federation_registry
from .jwt import JWKSCache, JwksService, JwtGeneratorService, JwtVerificationService
from .mfa import MfaEngine, MfaEnrollment
from .redis import RedisService
from .session import SessionTokenService
from .tenancy import TenantResolver
from .user import IdentityProvisioningService, UserRegistrationService

__all__ = [
    "AuditService",
    "CredentialCheck",
    "CredentialVerifier",
    "DbSessionService",
    "FailureLimiter",
    "FederationClient",
    "FederationRegistry",
    "IdentityProvisioningService",
    "JWKSCache",
    "JwksService",
    "JwtGeneratorService",
    "JwtVerificationService",
    "LoginOrchestrator",
    "MfaEngine",
    "MfaEnrollment",
    "RedisService",
    "SessionTokenService",
    "TenantResolver",
    "UserRegistrationService",
    "build_federation_registry",
]
