from .jwks import JWKSCache, JwksService
from .jwt_gen import JwtGeneratorService, resolve_signing_secret
from .jwt_verify import JwtVerificationService

__all__ = [
    "JWKSCache",
    "JwksService",
    "JwtGeneratorService",
    "JwtVerificationService",
    "resolve_signing_secret",
]
