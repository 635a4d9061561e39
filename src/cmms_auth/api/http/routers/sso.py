"""Federated sign-in endpoints for OAuth2, OIDC and SAML.

Browser flows finish with a redirect to the frontend carrying a short-lived
``ssoToken``; the frontend exchanges it at ``POST /auth/sso/callback`` for a
bound session. Tokens are never put into a JSON body here.
"""

from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse, Response
from loguru import logger

from src.cmms_auth.api.http.deps import (
    get_federation_registry,
    get_idp_repository,
    get_login_orchestrator,
    get_session_token_service,
)
from src.cmms_auth.core.exceptions import (
    AuthError,
    InvalidToken,
    ProviderDisabled,
    SamlAssertionError,
    TenantUnresolved,
    UnsupportedProvider,
)
from src.cmms_auth.core.models import FederatedIdentity
from src.cmms_auth.core.security import generate_nonce, sanitize_redirect
from src.cmms_auth.core.services import (
    FederationRegistry,
    LoginOrchestrator,
    SessionTokenService,
)
from src.cmms_auth.core.services.federation import (
    assertion_to_identity,
    build_saml_metadata,
    parse_saml_assertion,
)
from src.cmms_auth.core.services.session import cookie_settings
from src.cmms_auth.entities.core.identity_provider import (
    IdentityProviderConfig,
    IdentityProviderConfigRepository,
)
from src.cmms_auth.entities.core.user import User
from src.cmms_auth.runtime.context import get_config

router = APIRouter(prefix="/auth", tags=["sso"])

NONCE_COOKIE = "sso_nonce"


def frontend_url(path: str, **params: Any) -> str:
    base = get_config().app.frontend_url.rstrip("/")
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return f"{base}{path}?{query}" if query else f"{base}{path}"


def failure_redirect(reason: str = "sso_failed") -> RedirectResponse:
    response = RedirectResponse(frontend_url("/login", error=reason), status.HTTP_302_FOUND)
    response.delete_cookie(NONCE_COOKIE, path="/")
    return response


def callback_url(
    user: User, provider: str, redirect: str | None, tokens: SessionTokenService
) -> str:
    return frontend_url(
        "/auth/callback",
        ssoToken=tokens.issue_sso_token(user, provider, redirect),
        email=user.email,
        tenantId=user.tenant_id,
        provider=provider,
        redirect=redirect,
    )


def start_redirect(authorization_url: str, nonce: str) -> RedirectResponse:
    response = RedirectResponse(authorization_url, status.HTTP_302_FOUND)
    response.set_cookie(
        NONCE_COOKIE, nonce, **cookie_settings(get_config().oauth.state_ttl_seconds)
    )
    return response


def verify_state(
    request: Request, state: str | None, provider: str, tokens: SessionTokenService
) -> dict[str, Any]:
    """State must be ours, for this provider, and bound to this browser's nonce."""
    payload = tokens.verify_state_token(state, provider)
    if payload.get("nonce") != request.cookies.get(NONCE_COOKIE):
        raise InvalidToken("Invalid state")
    return payload


def require_oidc_enabled() -> None:
    if not get_config().features.oidc_enabled:
        raise ProviderDisabled()


def require_saml_enabled() -> None:
    if not get_config().features.saml_enabled:
        raise ProviderDisabled()


# OAuth2


@router.get("/oauth/{provider}")
async def oauth_start(
    provider: str,
    redirect: str | None = Query(default=None),
    registry: FederationRegistry = Depends(get_federation_registry),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> RedirectResponse:
    adapter = registry.oauth_adapter(provider)
    if not adapter.configured:
        logger.warning("OAuth provider {} has no client credentials", provider)
        raise UnsupportedProvider()
    nonce = generate_nonce()
    state = tokens.issue_state_token(adapter.provider, sanitize_redirect(redirect), nonce)
    return start_redirect(adapter.authorization_url(state), nonce)


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    registry: FederationRegistry = Depends(get_federation_registry),
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> RedirectResponse:
    adapter = registry.oauth_adapter(provider)
    if error or not code:
        await run_in_threadpool(
            orchestrator.failed_federated_login, adapter.provider, error or "missing_code"
        )
        return failure_redirect()
    try:
        payload = verify_state(request, state, adapter.provider, tokens)
        identity = await adapter.authenticate(request, code)
    except AuthError as exc:
        logger.warning("OAuth sign-in via {} failed: {}", adapter.provider, exc.code)
        await run_in_threadpool(orchestrator.failed_federated_login, adapter.provider, exc.code)
        return failure_redirect()

    try:
        user = await run_in_threadpool(orchestrator.complete_federated_login, identity)
    except TenantUnresolved:
        return failure_redirect("tenant_unresolved")
    except AuthError as exc:
        logger.warning("OAuth sign-in via {} failed: {}", adapter.provider, exc.code)
        return failure_redirect()

    redirect_to = callback_url(user, adapter.provider, payload.get("redirect"), tokens)
    response = RedirectResponse(redirect_to, status.HTTP_302_FOUND)
    response.delete_cookie(NONCE_COOKIE, path="/")
    return response


# OIDC


def _tenant_gate(
    provider: str, tenant: str | None, idps: IdentityProviderConfigRepository
) -> bool:
    """True when ``tenant`` registered ``provider``; 404 when it did not."""
    if tenant is None:
        return False
    if not idps.is_enabled(tenant, "oidc", provider):
        raise ProviderDisabled()
    return True


@router.get("/oidc/{provider}", dependencies=[Depends(require_oidc_enabled)], response_model=None)
def oidc_start(
    provider: str,
    tenant: str | None = Query(default=None),
    redirect: str | None = Query(default=None),
    registry: FederationRegistry = Depends(get_federation_registry),
    idps: IdentityProviderConfigRepository = Depends(get_idp_repository),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> RedirectResponse | JSONResponse:
    tenant_registered = _tenant_gate(provider, tenant, idps)
    adapter = registry.oidc_adapter(provider)
    if adapter is None:
        if tenant_registered:
            return JSONResponse(
                status_code=status.HTTP_202_ACCEPTED,
                content={
                    "message": "Provider is registered for this tenant but not configured",
                    "provider": provider,
                    "tenantId": tenant,
                },
            )
        raise UnsupportedProvider()

    nonce = generate_nonce()
    state = tokens.issue_state_token(adapter.provider, sanitize_redirect(redirect), nonce, tenant)
    return start_redirect(adapter.authorization_url(state, nonce), nonce)


@router.get("/oidc/{provider}/callback", dependencies=[Depends(require_oidc_enabled)])
async def oidc_callback(
    provider: str,
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    registry: FederationRegistry = Depends(get_federation_registry),
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> RedirectResponse:
    adapter = registry.oidc_adapter(provider)
    if adapter is None:
        raise UnsupportedProvider()
    if error or not code:
        await run_in_threadpool(
            orchestrator.failed_federated_login, adapter.provider, error or "missing_code"
        )
        return failure_redirect()
    try:
        payload = verify_state(request, state, adapter.provider, tokens)
        identity: FederatedIdentity = await adapter.authenticate(code, payload.get("nonce"))
    except AuthError as exc:
        logger.warning("OIDC sign-in via {} failed: {}", adapter.provider, exc.code)
        await run_in_threadpool(orchestrator.failed_federated_login, adapter.provider, exc.code)
        return failure_redirect()

    if payload.get("tenantId") and not identity.tenant_hint:
        identity = identity.model_copy(update={"tenant_hint": payload["tenantId"]})
    try:
        user = await run_in_threadpool(
            orchestrator.complete_federated_login, identity, force=True
        )
    except AuthError as exc:
        logger.warning("OIDC sign-in via {} failed: {}", adapter.provider, exc.code)
        return failure_redirect()

    redirect_to = callback_url(user, adapter.provider, payload.get("redirect"), tokens)
    response = RedirectResponse(redirect_to, status.HTTP_302_FOUND)
    response.delete_cookie(NONCE_COOKIE, path="/")
    return response


@router.get(
    "/oidc/{provider}/metadata",
    dependencies=[Depends(require_oidc_enabled)],
    response_model=None,
)
def oidc_metadata(
    provider: str,
    tenant: str | None = Query(default=None),
    registry: FederationRegistry = Depends(get_federation_registry),
    idps: IdentityProviderConfigRepository = Depends(get_idp_repository),
) -> dict[str, Any] | JSONResponse:
    tenant_registered = _tenant_gate(provider, tenant, idps)
    adapter = registry.oidc_adapter(provider)
    if adapter is None:
        if tenant_registered:
            return JSONResponse(
                status_code=status.HTTP_202_ACCEPTED,
                content={"provider": provider, "tenantId": tenant, "configured": False},
            )
        raise UnsupportedProvider()

    config = adapter.config
    return {
        "provider": adapter.provider,
        "issuer": config.issuer,
        "authorizationEndpoint": config.authorization_endpoint,
        "tokenEndpoint": config.token_endpoint,
        "jwksUri": config.jwks_uri,
        "scopes": config.scopes,
        "callbackPath": f"{get_config().app.api_base_path}/auth/oidc/{adapter.provider}/callback",
        "tenantId": tenant or config.tenant_id,
        "configured": True,
    }


# SAML


async def _saml_body(request: Request) -> dict[str, Any]:
    if request.headers.get("content-type", "").startswith("application/json"):
        body = await request.json()
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _saml_gate(
    tenant_id: str, idps: IdentityProviderConfigRepository
) -> IdentityProviderConfig:
    registrations = [c for c in idps.list_for_tenant(tenant_id, "saml") if c.enabled]
    if not registrations:
        raise ProviderDisabled()
    return registrations[0]


@router.post("/saml/{tenant_id}/acs", dependencies=[Depends(require_saml_enabled)])
def saml_acs(
    tenant_id: str,
    body: dict[str, Any] = Depends(_saml_body),
    idps: IdentityProviderConfigRepository = Depends(get_idp_repository),
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
    tokens: SessionTokenService = Depends(get_session_token_service),
) -> dict[str, str]:
    idp = _saml_gate(tenant_id, idps)
    try:
        assertion = parse_saml_assertion(body)
    except SamlAssertionError as exc:
        orchestrator.failed_federated_login(idp.provider, exc.code, tenant_id=tenant_id)
        raise

    user = orchestrator.complete_federated_login(
        assertion_to_identity(assertion, tenant_id), force=True
    )
    redirect = sanitize_redirect(assertion.relay_state)
    return {"redirectUrl": callback_url(user, "saml", redirect, tokens)}


@router.get("/saml/{tenant_id}/metadata", dependencies=[Depends(require_saml_enabled)])
def saml_metadata(
    tenant_id: str,
    idps: IdentityProviderConfigRepository = Depends(get_idp_repository),
) -> Response:
    idp = _saml_gate(tenant_id, idps)
    return Response(content=build_saml_metadata(tenant_id, idp), media_type="application/xml")


@router.get("/saml/{tenant_id}/redirect", dependencies=[Depends(require_saml_enabled)])
def saml_redirect(
    tenant_id: str,
    redirect: str | None = Query(default=None),
    idps: IdentityProviderConfigRepository = Depends(get_idp_repository),
) -> dict[str, str]:
    """IdP-initiated placeholder: the IdP posts to the ACS; we only echo the target."""
    idp = _saml_gate(tenant_id, idps)
    return {
        "redirect": sanitize_redirect(redirect, fallback="/login"),
        "hint": f"Start sign-in at your identity provider ({idp.provider}); it posts to the ACS URL.",
    }
