"""Tenant and site resolution for external identities."""

from typing import Any

from loguru import logger

from src.cmms_auth.core.models.identity import TenantResolution
from src.cmms_auth.core.roles import normalize_roles
from src.cmms_auth.entities.core.user import UserRepository
from src.cmms_auth.runtime.config.config_data import TenancyConfig
from src.cmms_auth.runtime.context import get_config


def split_mapping(value: str | None) -> tuple[str | None, str | None]:
    """Split a ``tenant[:site]`` mapping value."""
    if not value:
        return None, None
    tenant, _, site = value.partition(":")
    return tenant.strip() or None, site.strip() or None


def first_claim(sources: list[dict[str, Any] | None], keys: list[str]) -> str | None:
    """First non-blank string found under any of ``keys``, in source order."""
    for source in sources:
        if not source:
            continue
        for key in keys:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


class TenantResolver:
    """Derive tenant and site for a login from provider claims and the user store.

    An existing user's tenant, site and roles always win. Claims and the
    configured domain/issuer maps only fill values the record lacks.
    """

    def __init__(
        self, user_repo: UserRepository, tenancy: TenancyConfig | None = None
    ) -> None:
        self._users = user_repo
        self._tenancy = tenancy

    @property
    def tenancy(self) -> TenancyConfig:
        return self._tenancy or get_config().tenancy

    def _from_domain(
        self, email: str | None, domain: str | None, profile: dict[str, Any] | None
    ) -> tuple[str | None, str | None]:
        candidate = domain or (profile or {}).get("hd")
        if not candidate and email and "@" in email:
            candidate = email.rsplit("@", 1)[1]
        if not isinstance(candidate, str) or not candidate:
            return None, None
        return split_mapping(self.tenancy.domain_map.get(candidate.strip().lower()))

    def _from_issuer(
        self, claims: dict[str, Any] | None, profile: dict[str, Any] | None
    ) -> tuple[str | None, str | None]:
        tid = first_claim([claims, profile], ["tid", "tenantId"])
        if not tid:
            return None, None
        return split_mapping(self.tenancy.issuer_map.get(tid.lower()))

    def resolve(
        self,
        provider: str | None,
        email: str | None,
        domain: str | None = None,
        claims: dict[str, Any] | None = None,
        profile: dict[str, Any] | None = None,
    ) -> TenantResolution:
        tenancy = self.tenancy
        normalized = (provider or "").lower()
        tenant_id: str | None = None
        site_id: str | None = None

        if normalized in tenancy.domain_providers:
            tenant_id, site_id = self._from_domain(email, domain, profile)
        elif normalized in tenancy.issuer_providers:
            tenant_id, site_id = self._from_issuer(claims, profile)

        site_id = first_claim([claims, profile], tenancy.site_claim_keys) or site_id

        user = self._users.get_by_email(email) if email else None
        if user is None:
            logger.debug(
                "Tenant resolved from claims for provider {}: tenant={} site={}",
                normalized or "-",
                tenant_id,
                site_id,
            )
            return TenantResolution(tenant_id=tenant_id, site_id=site_id)

        return TenantResolution(
            tenant_id=user.tenant_id or tenant_id,
            site_id=user.site_id or site_id,
            roles=normalize_roles(user.roles or user.role) or None,
            user_id=user.id,
        )
