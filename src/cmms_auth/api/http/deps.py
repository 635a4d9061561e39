"""FastAPI dependency implementations."""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, Request
from sqlmodel import Session

from src.cmms_auth.api.http.app_data import ApplicationDependencies
from src.cmms_auth.core.services import (
    AuditService,
    CredentialVerifier,
    FederationRegistry,
    LoginOrchestrator,
    SessionTokenService,
    UserRegistrationService,
)
from src.cmms_auth.entities.core.identity_provider import IdentityProviderConfigRepository
from src.cmms_auth.entities.core.user import User, UserRepository
from src.cmms_auth.runtime.context import get_config


def _app_deps(request: Request) -> ApplicationDependencies:
    return request.app.state.app_dependencies


def get_db_session(request: Request) -> Iterator[Session]:
    """Request-scoped database session."""
    session = _app_deps(request).database_service.get_session()
    try:
        yield session
    finally:
        session.close()


def get_session_token_service(request: Request) -> SessionTokenService:
    return _app_deps(request).session_token_service


def get_credential_verifier(request: Request) -> CredentialVerifier:
    return _app_deps(request).credential_verifier


def get_federation_registry(request: Request) -> FederationRegistry:
    return _app_deps(request).federation_registry


def get_login_orchestrator(
    request: Request, db: Session = Depends(get_db_session)
) -> LoginOrchestrator:
    deps = _app_deps(request)
    return LoginOrchestrator(
        db,
        deps.credential_verifier,
        deps.session_token_service,
        deps.failure_limiter,
        audit=AuditService(db),
    )


def get_registration_service(
    db: Session = Depends(get_db_session),
    credentials: CredentialVerifier = Depends(get_credential_verifier),
) -> UserRegistrationService:
    return UserRegistrationService(db, credentials)


def get_audit_service(db: Session = Depends(get_db_session)) -> AuditService:
    return AuditService(db)


def get_idp_repository(db: Session = Depends(get_db_session)) -> IdentityProviderConfigRepository:
    return IdentityProviderConfigRepository(db)


def session_token_from_request(request: Request) -> str | None:
    """Access token from the session cookie, else an ``Authorization: Bearer`` header."""
    token = request.cookies.get(get_config().session.access_cookie_name)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db_session),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> User:
    """Authenticate the request from its session token.

    Signature, expiry, client binding and token version are all checked;
    any failure is a 401.
    """
    user, _ = tokens.authenticate(
        session_token_from_request(request), request, UserRepository(db)
    )
    return user
