"""HTTP tests for the OAuth2, OIDC and SAML sign-in endpoints."""

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from src.cmms_auth.api.http.app_data import ApplicationDependencies
from src.cmms_auth.core.exceptions import ProviderUnavailable
from src.cmms_auth.core.models import FederatedIdentity
from src.cmms_auth.core.services import AuditService, FederationRegistry
from src.cmms_auth.core.services.federation import OAuthAdapter
from src.cmms_auth.entities.core.identity_provider import (
    IdentityProviderConfig,
    IdentityProviderConfigRepository,
)
from src.cmms_auth.entities.core.user import UserRepository
from src.cmms_auth.runtime.config.config_data import OAuthProviderConfig
from tests.utils import saml_response

BASE = "/api/auth"


def query_of(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.fixture
def register_idp(app_session):
    def _register(tenant_id: str = "acme", protocol: str = "saml", provider: str = "okta", **kw):
        return IdentityProviderConfigRepository(app_session).create(
            IdentityProviderConfig(tenant_id=tenant_id, protocol=protocol, provider=provider, **kw)
        )

    return _register


@pytest.fixture
def google(client: TestClient, app_dependencies: ApplicationDependencies) -> OAuthAdapter:
    adapter = OAuthAdapter(
        "google",
        OAuthProviderConfig(
            authorization_endpoint="https://accounts.example.test/authorize",
            token_endpoint="https://accounts.example.test/token",
            userinfo_endpoint="https://accounts.example.test/userinfo",
            client_id="google-client",
            client_secret="google-secret",
            redirect_uri="http://testserver/api/auth/oauth/google/callback",
        ),
    )
    app_dependencies.federation_registry = FederationRegistry(oauth={"google": adapter})
    return adapter


class TestOAuth:
    def test_unsupported_provider(self, client: TestClient):
        response = client.get(f"{BASE}/oauth/myspace", follow_redirects=False)
        assert response.status_code == 400
        assert response.json()["code"] == "auth.unsupported_provider"

    def test_start_redirects_with_state(self, client: TestClient, google: OAuthAdapter):
        response = client.get(
            f"{BASE}/oauth/google", params={"redirect": "/work-orders"}, follow_redirects=False
        )
        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://accounts.example.test/authorize?")
        assert query_of(location)["state"]
        assert response.cookies.get("sso_nonce")

    def test_provider_error_redirects_to_login(self, client: TestClient, google: OAuthAdapter):
        response = client.get(
            f"{BASE}/oauth/google/callback",
            params={"error": "access_denied"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"].endswith("/login?error=sso_failed")

    def test_forged_state_is_rejected(self, client: TestClient, google: OAuthAdapter):
        response = client.get(
            f"{BASE}/oauth/google/callback",
            params={"code": "abc", "state": "forged"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert "error=sso_failed" in response.headers["location"]

    def test_forged_state_is_audited(
        self, client: TestClient, google: OAuthAdapter, app_session
    ):
        client.get(
            f"{BASE}/oauth/google/callback",
            params={"code": "abc", "state": "forged"},
            follow_redirects=False,
        )
        app_session.expire_all()
        event = AuditService(app_session).recent()[0]
        assert event.action == "sso_login_failed"
        assert event.details == {"provider": "google", "reason": "auth.invalid_token"}

    def test_provider_outage_is_audited(
        self, client: TestClient, google: OAuthAdapter, app_session, monkeypatch
    ):
        async def unavailable(self, request, code):
            raise ProviderUnavailable()

        monkeypatch.setattr(OAuthAdapter, "authenticate", unavailable)
        start = client.get(f"{BASE}/oauth/google", follow_redirects=False)
        state = query_of(start.headers["location"])["state"]

        response = client.get(
            f"{BASE}/oauth/google/callback",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )
        assert "error=sso_failed" in response.headers["location"]
        app_session.expire_all()
        event = AuditService(app_session).recent()[0]
        assert event.action == "sso_login_failed"
        assert event.details["reason"] == "auth.provider_unavailable"

    def test_full_flow_then_exchange(
        self, client: TestClient, google: OAuthAdapter, seed_user, monkeypatch
    ):
        user = seed_user(password=None)

        async def fake_authenticate(self, request, code):
            assert code == "auth-code"
            return FederatedIdentity(
                protocol="oauth2", provider="google", email=user.email, domain="plant.example"
            )

        monkeypatch.setattr(OAuthAdapter, "authenticate", fake_authenticate)

        start = client.get(
            f"{BASE}/oauth/google", params={"redirect": "/work-orders"}, follow_redirects=False
        )
        state = query_of(start.headers["location"])["state"]

        callback = client.get(
            f"{BASE}/oauth/google/callback",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )
        assert callback.status_code == 302
        landing = query_of(callback.headers["location"])
        assert landing["provider"] == "google"
        assert landing["tenantId"] == "acme"
        assert landing["redirect"] == "/work-orders"

        exchanged = client.post(f"{BASE}/sso/callback", json={"ssoToken": landing["ssoToken"]})
        assert exchanged.status_code == 200
        assert exchanged.json()["user"]["id"] == user.id
        assert exchanged.cookies.get("auth")

        replayed = client.post(f"{BASE}/sso/callback", json={"ssoToken": landing["ssoToken"]})
        assert replayed.status_code == 401

    def test_state_without_nonce_cookie_is_rejected(
        self, client: TestClient, google: OAuthAdapter, monkeypatch
    ):
        async def fake_authenticate(self, request, code):
            raise AssertionError("provider must not be called")

        monkeypatch.setattr(OAuthAdapter, "authenticate", fake_authenticate)
        start = client.get(f"{BASE}/oauth/google", follow_redirects=False)
        state = query_of(start.headers["location"])["state"]
        client.cookies.clear()

        response = client.get(
            f"{BASE}/oauth/google/callback",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )
        assert "error=sso_failed" in response.headers["location"]


class TestOidc:
    def test_unknown_provider(self, client: TestClient):
        response = client.get(f"{BASE}/oidc/okta", follow_redirects=False)
        assert response.status_code == 400

    def test_tenant_without_registration(self, client: TestClient):
        response = client.get(f"{BASE}/oidc/okta", params={"tenant": "acme"})
        assert response.status_code == 404
        assert response.json()["code"] == "auth.provider_disabled"

    def test_registered_but_unconfigured(self, client: TestClient, register_idp):
        register_idp(protocol="oidc", provider="okta")
        response = client.get(f"{BASE}/oidc/okta", params={"tenant": "acme"})
        assert response.status_code == 202
        assert response.json()["tenantId"] == "acme"

    def test_metadata_for_registered_provider(self, client: TestClient, register_idp):
        register_idp(protocol="oidc", provider="okta")
        response = client.get(f"{BASE}/oidc/okta/metadata", params={"tenant": "acme"})
        assert response.status_code == 202
        assert response.json()["configured"] is False


class TestSaml:
    def test_acs_requires_registration(self, client: TestClient):
        response = client.post(
            f"{BASE}/saml/acme/acs", json={"attributes": {"email": "tech@plant.example"}}
        )
        assert response.status_code == 404

    def test_acs_with_json_attributes(self, client: TestClient, register_idp, seed_user):
        register_idp()
        user = seed_user(password=None)

        response = client.post(
            f"{BASE}/saml/acme/acs",
            json={"attributes": {"email": user.email}, "RelayState": "/assets"},
        )
        assert response.status_code == 200
        landing = query_of(response.json()["redirectUrl"])
        assert landing["provider"] == "saml"
        assert landing["redirect"] == "/assets"
        assert landing["ssoToken"]

    def test_acs_with_encoded_response_provisions(
        self, client: TestClient, register_idp, app_session
    ):
        register_idp()
        response = client.post(
            f"{BASE}/saml/acme/acs",
            data={"SAMLResponse": saml_response("new.planner@plant.example", roles=["Planner"])},
        )
        assert response.status_code == 200

        created = UserRepository(app_session).get_by_email("new.planner@plant.example")
        assert created is not None
        assert created.tenant_id == "acme"
        assert "planner" in created.roles

    def test_acs_without_email(self, client: TestClient, register_idp):
        register_idp()
        response = client.post(f"{BASE}/saml/acme/acs", json={"attributes": {"role": "tech"}})
        assert response.status_code == 400

    def test_open_redirect_in_relay_state_is_dropped(
        self, client: TestClient, register_idp, seed_user
    ):
        register_idp()
        user = seed_user(password=None)
        response = client.post(
            f"{BASE}/saml/acme/acs",
            json={"attributes": {"email": user.email}, "RelayState": "https://evil.example/"},
        )
        landing = query_of(response.json()["redirectUrl"])
        assert "evil.example" not in landing.get("redirect", "")

    def test_metadata(self, client: TestClient, register_idp):
        register_idp()
        response = client.get(f"{BASE}/saml/acme/metadata")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "EntityDescriptor" in response.text

    def test_forged_sso_token(self, client: TestClient):
        response = client.post(f"{BASE}/sso/callback", json={"ssoToken": "not-a-token"})
        assert response.status_code == 401
