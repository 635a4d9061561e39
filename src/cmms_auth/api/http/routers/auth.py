"""Local authentication endpoints: login, registration, MFA, rotation, session lifecycle."""

from typing import Any

from fastapi import APIRouter, Depends, Header, Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from src.cmms_auth.api.http.deps import (
    get_audit_service,
    get_current_user,
    get_login_orchestrator,
    get_registration_service,
    get_session_token_service,
    session_token_from_request,
)
from src.cmms_auth.api.http.middleware.limiter import rate_limit
from src.cmms_auth.core.exceptions import InvalidToken
from src.cmms_auth.core.models import AuthUser, LoginOutcome, LoginRequest, LoginState
from src.cmms_auth.core.roles import role_set
from src.cmms_auth.core.services import (
    AuditService,
    LoginOrchestrator,
    SessionTokenService,
    UserRegistrationService,
)
from src.cmms_auth.core.services.user import resolve_registration_tenant
from src.cmms_auth.entities.core.user import User
from src.cmms_auth.runtime.context import get_config

router = APIRouter(prefix="/auth", tags=["auth"])


def _login_limit() -> int:
    return get_config().rate_limiter.login_requests


def _register_limit() -> int:
    return get_config().rate_limiter.register_requests


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginBody(CamelModel):
    email: str
    password: str
    remember: bool = False
    tenant_id: str | None = Field(default=None, alias="tenantId")


class RegisterBody(CamelModel):
    name: str = Field(min_length=1)
    email: str
    password: str
    tenant_id: str | None = Field(default=None, alias="tenantId")
    employee_id: str | None = Field(default=None, alias="employeeId")


class MfaSetupBody(CamelModel):
    user_id: str = Field(alias="userId")


class MfaVerifyBody(CamelModel):
    user_id: str = Field(alias="userId")
    token: str
    remember: bool | None = None


class RotateBody(CamelModel):
    rotation_token: str = Field(alias="rotationToken")
    new_password: str = Field(alias="newPassword")
    mfa_token: str = Field(alias="mfaToken")


class InviteAcceptBody(CamelModel):
    email: str
    token: str
    password: str


class SsoCallbackBody(CamelModel):
    sso_token: str = Field(alias="ssoToken")


def public_user(user: User) -> dict[str, Any]:
    roles = role_set(user.role, user.roles)
    return AuthUser(
        id=user.id,
        email=user.email,
        name=user.name,
        tenant_id=user.tenant_id,
        site_id=user.site_id,
        role=roles[0],
        roles=roles,
        mfa_enabled=user.mfa_enabled,
    ).model_dump(by_alias=True)


def outcome_response(
    outcome: LoginOutcome, response: Response, tokens: SessionTokenService
) -> dict[str, Any] | JSONResponse:
    """Render a terminal login state as the HTTP body (and cookies) clients expect."""
    user = outcome.user
    if user is None:
        raise RuntimeError(f"Login outcome {outcome.state} carries no user")

    if outcome.state == LoginState.ROTATION_REQUIRED:
        return JSONResponse(
            status_code=status.HTTP_423_LOCKED,
            content={
                "message": "Password rotation required",
                "rotationRequired": True,
                "userId": user.id,
                "rotationToken": outcome.rotation_token,
                "mfaSecret": outcome.mfa_secret,
            },
        )

    if outcome.state == LoginState.MFA_REQUIRED:
        tokens.set_mfa_challenge_cookie(response, outcome.details["challenge"])
        return {"mfaRequired": True, "userId": user.id}

    session = outcome.session
    if session is None:
        raise RuntimeError(f"Login outcome {outcome.state} carries no session")
    tokens.set_session_cookies(response, session)
    tokens.clear_mfa_challenge_cookie(response)
    body: dict[str, Any] = {"user": public_user(user)}
    if get_config().session.include_token_in_body:
        body["token"] = session.access_token
    return body


@router.post("/login", dependencies=[Depends(rate_limit(_login_limit))], response_model=None)
def login(
    body: LoginBody,
    request: Request,
    response: Response,
    x_tenant_id: str | None = Header(default=None),
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, Any] | JSONResponse:
    outcome = orchestrator.login(
        LoginRequest(
            email=body.email,
            password=body.password,
            remember=body.remember,
            tenant_hint=body.tenant_id or x_tenant_id,
        ),
        request,
    )
    return outcome_response(outcome, response, tokens)


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(_register_limit))],
)
def register(
    body: RegisterBody,
    x_tenant_id: str | None = Header(default=None),
    registration: UserRegistrationService = Depends(get_registration_service),
    audit: AuditService = Depends(get_audit_service),
) -> dict[str, Any]:
    tenant_id = resolve_registration_tenant(body.tenant_id, x_tenant_id)
    user = registration.register(
        name=body.name,
        email=body.email,
        password=body.password,
        tenant_id=tenant_id,
        employee_id=body.employee_id,
    )
    audit.record("register", tenant_id=tenant_id, user_id=user.id)
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "tenantId": user.tenant_id,
        "employeeId": user.employee_id,
    }


@router.post("/mfa/setup")
def mfa_setup(
    body: MfaSetupBody,
    request: Request,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, str]:
    session_user_id = None
    access = session_token_from_request(request)
    if access:
        try:
            session_user, _ = tokens.authenticate(access, request, orchestrator.users)
            session_user_id = session_user.id
        except InvalidToken:
            logger.debug("Ignoring stale session on MFA setup")

    challenge = request.cookies.get(get_config().session.mfa_challenge_cookie_name)
    _, enrollment = orchestrator.begin_mfa_setup(body.user_id, challenge, session_user_id)
    return {
        "secret": enrollment.secret,
        "token": enrollment.current_code,
        "otpauthUrl": enrollment.provisioning_uri,
    }


@router.post("/mfa/verify", dependencies=[Depends(rate_limit(_login_limit))], response_model=None)
def mfa_verify(
    body: MfaVerifyBody,
    request: Request,
    response: Response,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, Any] | JSONResponse:
    challenge = request.cookies.get(get_config().session.mfa_challenge_cookie_name)
    outcome = orchestrator.verify_mfa(body.user_id, body.token, challenge, request, body.remember)
    return outcome_response(outcome, response, tokens)


@router.post("/bootstrap/rotate", dependencies=[Depends(rate_limit(_login_limit))])
def bootstrap_rotate(
    body: RotateBody,
    response: Response,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, bool]:
    orchestrator.rotate_password(body.rotation_token, body.new_password, body.mfa_token)
    tokens.clear_session_cookies(response)
    return {"rotated": True}


@router.get("/me")
def me(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"user": public_user(user)}


@router.post("/refresh")
def refresh(
    request: Request,
    response: Response,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, Any]:
    refresh_token = request.cookies.get(get_config().session.refresh_cookie_name)
    user, session = orchestrator.refresh(refresh_token, request)
    tokens.set_session_cookies(response, session)
    body: dict[str, Any] = {"user": public_user(user)}
    if get_config().session.include_token_in_body:
        body["token"] = session.access_token
    return body


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, bool]:
    """Revoke every token of the signed-in user; always clears cookies.

    The refresh cookie identifies the user once the access token has expired.
    """
    candidates = (
        (session_token_from_request(request), "access"),
        (request.cookies.get(get_config().session.refresh_cookie_name), "refresh"),
    )
    for token, token_type in candidates:
        if not token:
            continue
        try:
            user, _ = tokens.authenticate(token, request, orchestrator.users, token_type)
        except InvalidToken:
            logger.debug("Logout {} token is not valid", token_type)
            continue
        orchestrator.logout(user)
        break
    tokens.clear_session_cookies(response)
    tokens.clear_mfa_challenge_cookie(response)
    return {"success": True}


@router.post("/invite/accept", dependencies=[Depends(rate_limit(_register_limit))])
def accept_invite(
    body: InviteAcceptBody,
    registration: UserRegistrationService = Depends(get_registration_service),
    audit: AuditService = Depends(get_audit_service),
) -> dict[str, Any]:
    user = registration.accept_invite(body.email, body.token, body.password)
    audit.record("invite_accepted", tenant_id=user.tenant_id, user_id=user.id)
    return {"user": public_user(user)}


@router.post("/sso/callback", response_model=None)
def sso_callback(
    body: SsoCallbackBody,
    request: Request,
    response: Response,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, Any] | JSONResponse:
    outcome = orchestrator.exchange_sso_token(body.sso_token, request)
    return outcome_response(outcome, response, tokens)
