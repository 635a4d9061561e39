"""Environment variables that toggle features and supply secrets.

Values here take precedence over config.yaml. Anything left unset keeps the
value from the YAML file.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_tenant_mapping(raw: str | None) -> dict[str, str]:
    """Parse ``key=tenant[:site],key2=tenant2`` into a lowercased-key dict."""
    mapping: dict[str, str] = {}
    if not raw:
        return mapping
    for entry in raw.split(","):
        key, sep, value = entry.partition("=")
        key = key.strip().lower()
        value = value.strip()
        if sep and key and value:
            mapping[key] = value
    return mapping


class EnvironmentVariables(BaseSettings):
    """Simple primitive values loaded from environment variables and .env files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    environment: Literal["development", "production", "test"] | None = Field(
        default=None, validation_alias="APP_ENVIRONMENT"
    )

    # Secrets and URLs
    jwt_secret: str | None = Field(default=None, validation_alias="JWT_SECRET")
    frontend_url: str | None = Field(default=None, validation_alias="FRONTEND_URL")
    database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
    redis_url: str | None = Field(default=None, validation_alias="REDIS_URL")

    # Feature flags
    enable_oidc: bool | None = Field(default=None, validation_alias="ENABLE_OIDC")
    enable_saml: bool | None = Field(default=None, validation_alias="ENABLE_SAML")
    mfa_enforced: bool | None = Field(default=None, validation_alias="MFA_ENFORCED")
    mfa_optional_for_sso: bool | None = Field(
        default=None, validation_alias="MFA_OPTIONAL_FOR_SSO"
    )
    cookie_secure: bool | None = Field(default=None, validation_alias="COOKIE_SECURE")

    # Lockout
    login_lockout_threshold: int | None = Field(
        default=None, validation_alias="LOGIN_LOCKOUT_THRESHOLD"
    )
    login_lockout_window_ms: int | None = Field(
        default=None, validation_alias="LOGIN_LOCKOUT_WINDOW_MS"
    )
    login_lockout_duration_ms: int | None = Field(
        default=None, validation_alias="LOGIN_LOCKOUT_DURATION_MS"
    )

    # Tenant maps in key=tenant[:site] form
    google_workspace_domain_map: str | None = Field(
        default=None, validation_alias="GOOGLE_WORKSPACE_DOMAIN_MAP"
    )
    azure_ad_tenant_map: str | None = Field(
        default=None, validation_alias="AZURE_AD_TENANT_MAP"
    )

    @property
    def domain_map(self) -> dict[str, str]:
        return parse_tenant_mapping(self.google_workspace_domain_map)

    @property
    def issuer_map(self) -> dict[str, str]:
        return parse_tenant_mapping(self.azure_ad_tenant_map)
