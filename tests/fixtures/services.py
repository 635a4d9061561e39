"""Service fixtures for testing."""

from typing import Any

import pytest
from argon2 import PasswordHasher
from sqlmodel import Session

from src.cmms_auth.core.services import (
    AuditService,
    CredentialVerifier,
    FailureLimiter,
    JWKSCache,
    JwksService,
    JwtGeneratorService,
    JwtVerificationService,
    LoginOrchestrator,
    MfaEngine,
    SessionTokenService,
)
from src.cmms_auth.entities.core.user import UserRepository
from src.cmms_auth.runtime.config.config_data import OIDCProviderConfig


@pytest.fixture
def password_hasher() -> PasswordHasher:
    """Argon2 with the cheapest parameters so tests stay fast."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def credentials(password_hasher: PasswordHasher) -> CredentialVerifier:
    return CredentialVerifier(password_hasher)


@pytest.fixture
def jwks_cache():
    cache = JWKSCache()
    cache.clear_jwks_cache()
    yield cache
    cache.clear_jwks_cache()


@pytest.fixture
def jwks_service_fake(jwks_data: dict[str, Any], jwks_cache: JWKSCache) -> JwksService:
    """JWKS service that serves the test provider keys without network access."""

    class MockJwksService(JwksService):
        async def fetch_jwks(self, provider: OIDCProviderConfig) -> dict[str, Any]:
            return jwks_data

    return MockJwksService(cache=jwks_cache)


@pytest.fixture
def jwt_verify_service(jwks_service_fake: JwksService) -> JwtVerificationService:
    return JwtVerificationService(jwks_service_fake)


@pytest.fixture
def jwt_generate_service() -> JwtGeneratorService:
    return JwtGeneratorService()


@pytest.fixture
def token_service(
    jwt_generate_service: JwtGeneratorService, jwt_verify_service: JwtVerificationService
) -> SessionTokenService:
    return SessionTokenService(jwt_generate_service, jwt_verify_service)


@pytest.fixture
def failure_limiter() -> FailureLimiter:
    return FailureLimiter(attempts=3, window_ms=60_000)


@pytest.fixture
def user_repo(session: Session) -> UserRepository:
    return UserRepository(session)


@pytest.fixture
def audit_service(session: Session) -> AuditService:
    return AuditService(session)


@pytest.fixture
def mfa_engine(user_repo: UserRepository) -> MfaEngine:
    return MfaEngine(user_repo)


@pytest.fixture
def orchestrator(
    session: Session,
    credentials: CredentialVerifier,
    token_service: SessionTokenService,
    failure_limiter: FailureLimiter,
    audit_service: AuditService,
) -> LoginOrchestrator:
    return LoginOrchestrator(
        session, credentials, token_service, failure_limiter, audit=audit_service
    )
