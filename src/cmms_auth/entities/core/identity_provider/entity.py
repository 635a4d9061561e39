"""Per-tenant identity provider registration."""

from typing import Literal

from pydantic import Field

from src.cmms_auth.entities.core._base import Entity

Protocol = Literal["oidc", "saml"]


class IdentityProviderConfig(Entity):
    """An identity provider a tenant has registered for SSO."""

    tenant_id: str = Field(description="Owning tenant")
    protocol: Protocol = Field(description="Federation protocol")
    provider: str = Field(description="Provider name, e.g. 'okta' or 'azure'")
    issuer: str | None = Field(default=None)
    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)
    metadata_url: str | None = Field(default=None)
    acs_url: str | None = Field(default=None)
    redirect_uri: str | None = Field(default=None)
    certificate: str | None = Field(default=None, description="IdP signing certificate")
    enabled: bool = Field(default=True)
