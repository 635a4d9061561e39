"""Federated identity and provisioning models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from src.cmms_auth.entities.core.user import User

FederationProtocol = Literal["oauth2", "oidc", "saml"]


class FederatedIdentity(BaseModel):
    """Identity asserted by an external provider, normalized across protocols."""

    protocol: FederationProtocol
    provider: str
    email: str
    name: str | None = None
    roles: list[str] = Field(default_factory=list)
    subject: str | None = None
    issuer: str | None = None
    domain: str | None = None
    tenant_hint: str | None = None
    relay_state: str | None = None
    raw_claims: dict[str, Any] = Field(default_factory=dict)
    profile: dict[str, Any] = Field(default_factory=dict)


class TenantResolution(BaseModel):
    """Reconciled tenant context; computed per request, never persisted."""

    tenant_id: str | None = None
    site_id: str | None = None
    roles: list[str] | None = None
    user_id: str | None = None


class ProvisionRequest(BaseModel):
    tenant_id: str | None
    email: str
    roles: list[str] = Field(default_factory=list)
    site_id: str | None = None
    name: str | None = None
    skip_mfa: bool = False


class ProvisionResult(BaseModel):
    user: User
    created: bool
