from .client import FederationClient, TokenResponse
from .oauth import OAuthAdapter, OAuthVerifyArgs, normalize_oauth_args, profile_email
from .oidc import OidcAdapter, extract_roles
from .registry import FederationRegistry, build_federation_registry
from .saml import (
    SamlAssertion,
    assertion_to_identity,
    build_saml_metadata,
    parse_saml_assertion,
    saml_acs_url,
    saml_entity_id,
)

__all__ = [
    "FederationClient",
    "FederationRegistry",
    "OAuthAdapter",
    "OAuthVerifyArgs",
    "OidcAdapter",
    "SamlAssertion",
    "TokenResponse",
    "assertion_to_identity",
    "build_federation_registry",
    "build_saml_metadata",
    "extract_roles",
    "normalize_oauth_args",
    "parse_saml_assertion",
    "profile_email",
    "saml_acs_url",
    "saml_entity_id",
]
