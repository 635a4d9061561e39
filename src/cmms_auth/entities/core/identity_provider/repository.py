from sqlmodel import Session, select

from src.cmms_auth.entities.core.identity_provider.entity import (
    IdentityProviderConfig,
    Protocol,
)
from src.cmms_auth.entities.core.identity_provider.table import (
    IdentityProviderConfigTable,
)


class IdentityProviderConfigRepository:
    """Data-access layer for tenant identity provider registrations."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(
        self, tenant_id: str, protocol: Protocol, provider: str
    ) -> IdentityProviderConfig | None:
        statement = select(IdentityProviderConfigTable).where(
            (IdentityProviderConfigTable.tenant_id == tenant_id)
            & (IdentityProviderConfigTable.protocol == protocol)
            & (IdentityProviderConfigTable.provider == provider.lower())
        )
        row = self._session.exec(statement).first()
        if row is None:
            return None
        return IdentityProviderConfig.model_validate(row, from_attributes=True)

    def list_for_tenant(
        self, tenant_id: str, protocol: Protocol | None = None
    ) -> list[IdentityProviderConfig]:
        statement = select(IdentityProviderConfigTable).where(
            IdentityProviderConfigTable.tenant_id == tenant_id
        )
        if protocol is not None:
            statement = statement.where(IdentityProviderConfigTable.protocol == protocol)
        return [
            IdentityProviderConfig.model_validate(row, from_attributes=True)
            for row in self._session.exec(statement).all()
        ]

    def is_enabled(self, tenant_id: str, protocol: Protocol, provider: str) -> bool:
        config = self.get(tenant_id, protocol, provider)
        return bool(config and config.enabled)

    def create(self, config: IdentityProviderConfig) -> IdentityProviderConfig:
        row = IdentityProviderConfigTable(**config.model_dump())
        row.provider = row.provider.lower()
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return IdentityProviderConfig.model_validate(row, from_attributes=True)
