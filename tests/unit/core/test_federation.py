"""Unit tests for the OAuth2, OIDC and SAML adapters."""

import base64
from unittest.mock import AsyncMock

import pytest

from src.cmms_auth.core.exceptions import (
    InvalidCredential,
    InvalidToken,
    SamlAssertionError,
    UnsupportedProvider,
)
from src.cmms_auth.core.services.federation import (
    FederationClient,
    OAuthAdapter,
    OidcAdapter,
    assertion_to_identity,
    build_federation_registry,
    build_saml_metadata,
    normalize_oauth_args,
    parse_saml_assertion,
)
from src.cmms_auth.core.services.federation.client import TokenResponse
from src.cmms_auth.core.services.federation.saml import decode_saml_response
from src.cmms_auth.entities.core.identity_provider import IdentityProviderConfig
from src.cmms_auth.runtime.config.config_data import (
    ConfigData,
    OAuthConfig,
    OAuthProviderConfig,
    OIDCConfig,
)
from tests.utils import saml_response, sign_id_token


@pytest.fixture
def google_config() -> OAuthProviderConfig:
    return OAuthProviderConfig(
        authorization_endpoint="https://accounts.example/auth",
        token_endpoint="https://accounts.example/token",
        userinfo_endpoint="https://accounts.example/userinfo",
        client_id="google-client",
        client_secret="google-secret",
        redirect_uri="http://localhost:8000/api/auth/oauth/google/callback",
    )


@pytest.fixture
def google_profile() -> dict:
    return {
        "id": "1077",
        "displayName": "Pat Tech",
        "emails": [{"value": "Pat@Plant.Example"}],
        "_json": {"hd": "plant.example", "roles": ["Planner"]},
    }


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, error, identity):
        self.calls.append((error, identity))


class TestOAuthArgs:
    def test_five_and_six_argument_forms_are_equivalent(self, google_config, google_profile):
        adapter = OAuthAdapter("google", google_config)
        five, six = Recorder(), Recorder()

        adapter.verify("req", "access", "refresh", google_profile, five)
        adapter.verify("req", "access", "refresh", {"expires_in": 3600}, google_profile, six)

        (err5, id5), (err6, id6) = five.calls[0], six.calls[0]
        assert err5 is None and err6 is None
        assert id5.model_dump(exclude={"raw_claims"}) == id6.model_dump(exclude={"raw_claims"})
        assert id6.raw_claims == {"expires_in": 3600}

    def test_normalized_six_argument_shape(self):
        done = Recorder()
        args = normalize_oauth_args("req", "a", "r", {"scope": "email"}, {"id": 1}, done)
        assert args.params == {"scope": "email"}
        assert args.profile == {"id": 1}
        assert args.done is done

    @pytest.mark.parametrize(
        "args",
        [
            ("req", "a", "r", {}),
            ("req", "a", "r", {}, {}, {}, lambda *a: None),
            ("req", "a", "r", {}, "not-callable"),
        ],
    )
    def test_bad_arity_is_a_type_error(self, args):
        with pytest.raises(TypeError):
            normalize_oauth_args(*args)

    def test_identity_fields(self, google_config, google_profile):
        identity = OAuthAdapter("google", google_config).to_identity(google_profile)
        assert identity.protocol == "oauth2"
        assert identity.email == "pat@plant.example"
        assert identity.domain == "plant.example"
        assert identity.roles == ["planner"]
        assert identity.subject == "1077"
        assert identity.name == "Pat Tech"

    def test_domain_falls_back_to_email(self, google_config):
        identity = OAuthAdapter("google", google_config).to_identity(
            {"emails": [{"value": "a@Personal.Example"}]}
        )
        assert identity.domain == "personal.example"

    def test_missing_email_reports_error_through_done(self, google_config):
        done = Recorder()
        result = OAuthAdapter("github", google_config).verify("req", "a", "r", {"id": 5}, done)
        assert result is None
        error, identity = done.calls[0]
        assert isinstance(error, InvalidCredential)
        assert identity is None

    @pytest.mark.asyncio
    async def test_authenticate_exchanges_code_and_reads_profile(self, google_config):
        client = AsyncMock(spec=FederationClient)
        client.exchange_code.return_value = TokenResponse(access_token="at", expires_in=60)
        client.fetch_json.return_value = {
            "sub": "42",
            "name": "Pat",
            "email": "pat@plant.example",
            "hd": "plant.example",
        }
        identity = await OAuthAdapter("google", google_config, client).authenticate(None, "code")

        assert identity.email == "pat@plant.example"
        assert identity.domain == "plant.example"
        assert identity.raw_claims == {"token_type": "Bearer", "expires_in": 60}
        client.exchange_code.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_github_uses_primary_verified_email(self, google_config):
        config = google_config.model_copy(
            update={"emails_endpoint": "https://api.example/user/emails"}
        )
        client = AsyncMock(spec=FederationClient)
        client.exchange_code.return_value = TokenResponse(access_token="at")
        client.fetch_json.side_effect = [
            {"id": 7, "login": "pat"},
            [
                {"email": "old@plant.example", "primary": False, "verified": True},
                {"email": "unverified@plant.example", "primary": True, "verified": False},
                {"email": "pat@plant.example", "primary": True, "verified": True},
            ],
        ]
        identity = await OAuthAdapter("github", config, client).authenticate(None, "code")
        assert identity.email == "pat@plant.example"
        assert identity.name == "pat"

    def test_authorization_url(self, google_config):
        url = OAuthAdapter("google", google_config).authorization_url("state-1")
        assert url.startswith("https://accounts.example/auth?")
        assert "state=state-1" in url
        assert "client_id=google-client" in url


class TestOidc:
    def test_eight_argument_verify_extracts_roles(self, oidc_provider_config):
        adapter = OidcAdapter("okta", oidc_provider_config)
        done = Recorder()
        adapter.verify(
            "https://idp.example.test",
            "sub-1",
            {"_json": {"groups": ["Viewer"]}},
            {"email": "Pat@Plant.Example", "realm_access": {"roles": ["Supervisor", "Tech"]}},
            "access",
            "refresh",
            {"scope": "openid"},
            done,
        )
        error, identity = done.calls[0]
        assert error is None
        assert identity.protocol == "oidc"
        assert identity.email == "pat@plant.example"
        assert identity.roles == ["supervisor", "tech"]
        assert identity.subject == "sub-1"
        assert identity.raw_claims["scope"] == "openid"

    def test_roles_fall_back_to_profile(self, oidc_provider_config):
        identity = OidcAdapter("okta", oidc_provider_config).to_identity(
            None, "s", {"_json": {"groups": ["Viewer"]}, "email": "a@b.example"}, {}
        )
        assert identity.roles == ["viewer"]

    def test_no_email_fails(self, oidc_provider_config):
        done = Recorder()
        OidcAdapter("okta", oidc_provider_config).verify(
            "iss", "sub", {}, {}, None, None, None, done
        )
        assert isinstance(done.calls[0][0], InvalidCredential)

    def test_configured_tenant_is_the_hint(self, oidc_provider_config):
        config = oidc_provider_config.model_copy(update={"tenant_id": "acme"})
        identity = OidcAdapter("okta", config).to_identity(None, "s", None, {"email": "a@b.c"})
        assert identity.tenant_hint == "acme"

    @pytest.mark.asyncio
    async def test_authenticate_verifies_id_token(
        self, oidc_provider_config, jwt_verify_service, idp_key, idp_kid, issuer
    ):
        id_token = sign_id_token(
            idp_key,
            idp_kid,
            issuer,
            oidc_provider_config.client_id,
            sub="sub-9",
            nonce="n-1",
            email="pat@plant.example",
            roles=["Admin"],
        )
        client = AsyncMock(spec=FederationClient)
        client.exchange_code.return_value = TokenResponse(access_token="at", id_token=id_token)
        client.fetch_json.return_value = {"sub": "sub-9", "name": "Pat"}
        adapter = OidcAdapter("okta", oidc_provider_config, jwt_verify_service, client)

        identity = await adapter.authenticate("code", "n-1")
        assert identity.email == "pat@plant.example"
        assert identity.roles == ["admin"]
        assert identity.name == "Pat"

    @pytest.mark.asyncio
    async def test_nonce_mismatch(
        self, oidc_provider_config, jwt_verify_service, idp_key, idp_kid, issuer
    ):
        id_token = sign_id_token(
            idp_key, idp_kid, issuer, oidc_provider_config.client_id, sub="s", nonce="other"
        )
        client = AsyncMock(spec=FederationClient)
        client.exchange_code.return_value = TokenResponse(access_token="at", id_token=id_token)
        adapter = OidcAdapter("okta", oidc_provider_config, jwt_verify_service, client)
        with pytest.raises(InvalidToken):
            await adapter.authenticate("code", "n-1")

    @pytest.mark.asyncio
    async def test_userinfo_subject_mismatch(
        self, oidc_provider_config, jwt_verify_service, idp_key, idp_kid, issuer
    ):
        id_token = sign_id_token(
            idp_key, idp_kid, issuer, oidc_provider_config.client_id, sub="s", email="a@b.c"
        )
        client = AsyncMock(spec=FederationClient)
        client.exchange_code.return_value = TokenResponse(access_token="at", id_token=id_token)
        client.fetch_json.return_value = {"sub": "someone-else"}
        adapter = OidcAdapter("okta", oidc_provider_config, jwt_verify_service, client)
        with pytest.raises(InvalidCredential):
            await adapter.authenticate("code", None)


class TestSaml:
    def test_inline_attributes_with_relay_state(self):
        assertion = parse_saml_assertion(
            {"attributes": {"email": "a@b.com", "roles": ["Admin"]}, "RelayState": "/dash"}
        )
        assert assertion.email == "a@b.com"
        assert assertion.roles == ["Admin"]
        assert assertion.relay_state == "/dash"

    def test_camel_case_relay_state_and_profile(self):
        assertion = parse_saml_assertion(
            {"profile": {"mail": "x@y.example", "Groups": "Tech"}, "relayState": "/wo"}
        )
        assert assertion.email == "x@y.example"
        assert assertion.roles == ["Tech"]
        assert assertion.relay_state == "/wo"

    def test_missing_email_is_typed_error(self):
        with pytest.raises(SamlAssertionError) as exc_info:
            parse_saml_assertion({"attributes": {"roles": ["admin"]}})
        assert isinstance(exc_info.value, InvalidCredential)

    def test_email_without_at_sign_is_skipped(self):
        assertion = parse_saml_assertion(
            {"attributes": {"email": "not-an-email", "NameID": "n@id.example"}}
        )
        assert assertion.email == "n@id.example"

    def test_roles_default_to_empty(self):
        assert parse_saml_assertion({"email": "a@b.com"}).roles == []

    def test_base64_response_is_parsed(self):
        assertion = parse_saml_assertion(
            {
                "SAMLResponse": saml_response("Pat@Plant.Example", ["Admin", "Tech"], "Pat"),
                "RelayState": "/dash",
            }
        )
        assert assertion.email == "pat@plant.example"
        assert assertion.roles == ["Admin", "Tech"]
        assert assertion.name == "Pat"

    def test_undecodable_response_is_used_raw(self):
        assert decode_saml_response("%%not base64%%") == "%%not base64%%"
        assertion = parse_saml_assertion({"SAMLResponse": "%%not base64%%", "email": "a@b.com"})
        assert assertion.email == "a@b.com"

    def test_garbage_xml_yields_no_attributes(self):
        payload = base64.b64encode(b"<broken").decode()
        with pytest.raises(SamlAssertionError):
            parse_saml_assertion({"SAMLResponse": payload})

    def test_identity_normalizes_roles(self):
        assertion = parse_saml_assertion({"attributes": {"email": "a@b.com", "roles": ["Admin"]}})
        identity = assertion_to_identity(assertion, "acme")
        assert identity.protocol == "saml"
        assert identity.roles == ["admin"]
        assert identity.tenant_hint == "acme"

    def test_metadata(self):
        idp = IdentityProviderConfig(
            tenant_id="acme", protocol="saml", provider="adfs", certificate="MIIC-test"
        )
        xml = build_saml_metadata("acme", idp)
        assert 'entityID="urn:cmms:acme"' in xml
        assert "MIIC-test" in xml
        assert 'Location="/api/auth/saml/acme/acs"' in xml


class TestRegistry:
    def test_only_supported_and_enabled_providers(self, google_config, oidc_provider_config, jwt_verify_service):
        config = ConfigData(
            oauth=OAuthConfig(
                providers={
                    "google": google_config,
                    "github": google_config.model_copy(update={"enabled": False}),
                    "myspace": google_config,
                }
            ),
            oidc=OIDCConfig(providers={"Okta": oidc_provider_config}),
        )
        registry = build_federation_registry(config, jwt_verify_service)

        assert registry.oauth_adapter("Google").provider == "google"
        with pytest.raises(UnsupportedProvider):
            registry.oauth_adapter("github")
        with pytest.raises(UnsupportedProvider):
            registry.oauth_adapter("myspace")
        assert registry.oidc_adapter("okta") is not None
        assert registry.oidc_adapter("azure") is None
