"""Identity provider configuration table."""

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from src.cmms_auth.entities.core._base import EntityTable


class IdentityProviderConfigTable(EntityTable, table=True):
    __tablename__ = "identity_provider_configs"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "protocol", "provider", name="uq_idp_tenant_protocol_provider"
        ),
    )

    tenant_id: str = Field(index=True)
    protocol: str
    provider: str
    issuer: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    metadata_url: str | None = None
    acs_url: str | None = None
    redirect_uri: str | None = None
    certificate: str | None = None
    enabled: bool = True
