"""Session token models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

TokenType = Literal["access", "refresh"]


class SessionBinding(BaseModel):
    """Client fingerprint embedded in session tokens."""

    fingerprint: str = Field(description="sha256 of ip|user-agent[|device]")
    device_bound: bool = Field(default=False)

    def to_claim(self) -> dict[str, Any]:
        return {"fp": self.fingerprint, "dev": self.device_bound}

    @classmethod
    def from_claim(cls, value: Any) -> SessionBinding | None:
        if not isinstance(value, dict) or not isinstance(value.get("fp"), str):
            return None
        return cls(fingerprint=value["fp"], device_bound=bool(value.get("dev")))


class SessionClaims(BaseModel):
    """Verified claims of an access or refresh token."""

    user_id: str
    email: str
    tenant_id: str | None = None
    site_id: str | None = None
    role: str
    roles: list[str] = Field(default_factory=list)
    token_version: int
    token_type: TokenType
    remember: bool = False
    binding: SessionBinding | None = None
    expires_at: int
    jti: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SessionClaims:
        return cls(
            user_id=payload["sub"],
            email=payload.get("email", ""),
            tenant_id=payload.get("tenantId"),
            site_id=payload.get("siteId"),
            role=payload.get("role", ""),
            roles=list(payload.get("roles") or []),
            token_version=int(payload.get("tokenVersion", 0)),
            token_type=payload.get("type", "access"),
            remember=bool(payload.get("remember", False)),
            binding=SessionBinding.from_claim(payload.get("session")),
            expires_at=int(payload["exp"]),
            jti=payload.get("jti"),
        )


class IssuedSession(BaseModel):
    """Tokens produced for a successful login."""

    access_token: str
    refresh_token: str
    max_age: int = Field(description="Cookie and refresh lifetime in seconds")
    remember: bool = False


class AuthUser(BaseModel):
    """User view returned to clients; never carries secrets."""

    id: str
    email: str
    name: str | None = None
    tenant_id: str | None = Field(default=None, serialization_alias="tenantId")
    site_id: str | None = Field(default=None, serialization_alias="siteId")
    role: str
    roles: list[str]
    mfa_enabled: bool = Field(default=False, serialization_alias="mfaEnabled")
