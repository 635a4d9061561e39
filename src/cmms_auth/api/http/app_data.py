from dataclasses import dataclass

from src.cmms_auth.core.services import (
    CredentialVerifier,
    DbSessionService,
    FailureLimiter,
    FederationRegistry,
    JWKSCache,
    JwksService,
    JwtGeneratorService,
    JwtVerificationService,
    RedisService,
    SessionTokenService,
)


@dataclass
class ApplicationDependencies:
    jwks_cache: JWKSCache
    jwks_service: JwksService
    jwt_verify_service: JwtVerificationService
    jwt_generation_service: JwtGeneratorService
    session_token_service: SessionTokenService
    credential_verifier: CredentialVerifier
    failure_limiter: FailureLimiter
    federation_registry: FederationRegistry
    database_service: DbSessionService
    redis_service: RedisService
