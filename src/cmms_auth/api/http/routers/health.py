"""Liveness and readiness probes."""

from typing import Any

from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

from src.cmms_auth.api.http.app_data import ApplicationDependencies
from src.cmms_auth.runtime.context import get_config

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe; does not touch dependencies."""
    return {"status": "healthy", "service": "cmms-auth"}


@router.get("/ready", response_model=None)
async def readiness(request: Request) -> dict[str, Any] | JSONResponse:
    """Readiness probe: 503 unless the database answers.

    Redis is reported but never fails readiness, since the rate limiter
    falls back to memory.
    """
    app_deps: ApplicationDependencies = request.app.state.app_dependencies
    config = get_config()

    db_healthy = app_deps.database_service.health_check()
    checks: dict[str, Any] = {
        "database": {
            "status": "healthy" if db_healthy else "unhealthy",
            "type": config.database.url.split(":", 1)[0],
        }
    }
    if config.redis.enabled:
        redis_healthy = await app_deps.redis_service.health_check()
        checks["redis"] = {"status": "healthy" if redis_healthy else "degraded"}

    body = {"status": "ready" if db_healthy else "not_ready", "checks": checks}
    if not db_healthy:
        return JSONResponse(status_code=503, content=body)
    return body
