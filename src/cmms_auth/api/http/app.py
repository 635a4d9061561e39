"""FastAPI application factory and setup."""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from src.cmms_auth.api.http.app_data import ApplicationDependencies
from src.cmms_auth.api.http.middleware.limiter import (
    close_rate_limiter,
    configure_rate_limiter,
)
from src.cmms_auth.api.http.routers.auth import router as auth_router
from src.cmms_auth.api.http.routers.health import router as health_router
from src.cmms_auth.api.http.routers.sso import router as sso_router
from src.cmms_auth.api.utils.app_startup import configure_logging
from src.cmms_auth.core.exceptions import AuthError, ConfigurationError
from src.cmms_auth.core.security import extract_client_ip
from src.cmms_auth.core.services import (
    CredentialVerifier,
    DbSessionService,
    FailureLimiter,
    JWKSCache,
    JwksService,
    JwtGeneratorService,
    JwtVerificationService,
    RedisService,
    SessionTokenService,
    build_federation_registry,
)
from src.cmms_auth.core.services.jwt import resolve_signing_secret
from src.cmms_auth.runtime.config.config_data import ConfigData
from src.cmms_auth.runtime.context import get_config


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Cache-Control", "no-store")
        if get_config().app.environment == "production":
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
        return response


def build_dependencies(config: ConfigData | None = None) -> ApplicationDependencies:
    """Wire the process-wide services from configuration."""
    config = config or get_config()
    jwks_cache = JWKSCache()
    jwks_service = JwksService(jwks_cache)
    jwt_verify_service = JwtVerificationService(jwks_service)
    jwt_generation_service = JwtGeneratorService()
    return ApplicationDependencies(
        jwks_cache=jwks_cache,
        jwks_service=jwks_service,
        jwt_verify_service=jwt_verify_service,
        jwt_generation_service=jwt_generation_service,
        session_token_service=SessionTokenService(jwt_generation_service, jwt_verify_service),
        credential_verifier=CredentialVerifier(),
        failure_limiter=FailureLimiter(
            config.security.account_attempts, config.security.account_window_ms
        ),
        federation_registry=build_federation_registry(config, jwt_verify_service),
        database_service=DbSessionService(config),
        redis_service=RedisService(config.redis),
    )


async def _prefetch_jwks(deps: ApplicationDependencies, config: ConfigData) -> None:
    """Surface unreachable OIDC key sets at startup instead of at first login."""
    adapters = list(deps.federation_registry.oidc.values())
    if not config.features.oidc_enabled or not adapters:
        return
    results = await asyncio.gather(
        *(deps.jwks_service.fetch_jwks(a.config) for a in adapters), return_exceptions=True
    )
    for adapter, result in zip(adapters, results, strict=True):
        if isinstance(result, Exception):
            logger.error("Failed to fetch JWKS for OIDC provider {}", adapter.provider)


async def startup(app: FastAPI) -> None:
    config = get_config()
    logger.info("Starting up application in {} environment", config.app.environment)

    if getattr(app.state, "app_dependencies", None) is None:
        app.state.app_dependencies = build_dependencies(config)
    deps: ApplicationDependencies = app.state.app_dependencies

    try:
        resolve_signing_secret(config)
    except ConfigurationError:
        logger.error("Session signing is not configured; logins will fail with 500")

    deps.database_service.create_all()
    await _prefetch_jwks(deps, config)
    await configure_rate_limiter(redis_client=deps.redis_service.client)


async def shutdown(app: FastAPI) -> None:
    logger.info("Shutting down application")
    await close_rate_limiter()
    deps: ApplicationDependencies = app.state.app_dependencies
    await deps.redis_service.close()
    deps.database_service.dispose()


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def create_app(dependencies: ApplicationDependencies | None = None) -> FastAPI:
    configure_logging()
    config = get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await startup(app)
        try:
            yield
        finally:
            await shutdown(app)

    is_production = config.app.environment == "production"
    app = FastAPI(
        title="CMMS Auth",
        lifespan=lifespan,
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
    )
    app.state.app_dependencies = dependencies

    if is_production and "*" in config.app.cors.origins:
        raise RuntimeError(
            "CORS misconfigured: cannot use '*' with allow_credentials=True in production"
        )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.app.cors.origins,
        allow_credentials=config.app.cors.allow_credentials,
        allow_methods=config.app.cors.allow_methods,
        allow_headers=config.app.cors.allow_headers,
    )

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        logger.bind(error_code=exc.code, status_code=exc.status_code).info("request.rejected")
        return JSONResponse(
            status_code=exc.status_code,
            content={**exc.to_response(), "request_id": _request_id(request)},
            headers=exc.headers,
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        base_ctx = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": extract_client_ip(request) or "unknown",
        }
        start = time.perf_counter()
        with logger.contextualize(**base_ctx):
            try:
                logger.info("request.start")
                response = await call_next(request)
            except Exception as exc:
                logger.bind(
                    status_code=500,
                    duration_ms=round((time.perf_counter() - start) * 1000, 1),
                    error_type=type(exc).__name__,
                ).exception("request.error")
                return JSONResponse(
                    status_code=500,
                    content={"message": "Internal Server Error", "request_id": request_id},
                    headers={"X-Request-ID": request_id},
                )
            logger.bind(
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
            ).info("request.end")
            response.headers.setdefault("X-Request-ID", request_id)
            return response

    base = config.app.api_base_path.rstrip("/")
    app.include_router(auth_router, prefix=base)
    app.include_router(sso_router, prefix=base)
    app.include_router(health_router)
    return app


__all__ = ["build_dependencies", "create_app", "shutdown", "startup"]


if __name__ == "__main__":
    import uvicorn

    main_config = get_config()
    uvicorn.run(
        create_app(),
        host=main_config.app.host,
        port=main_config.app.port,
        access_log=False,
    )
