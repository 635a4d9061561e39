"""Pydantic models for parsing the config.yaml configuration file.

This module contains Pydantic models that correspond to the structure of config.yaml.
These models handle validation and type conversion of the YAML configuration data.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, computed_field


class CORSConfig(BaseModel):
    """CORS configuration for the application."""

    origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )
    allow_credentials: bool = True
    allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    )
    allow_headers: list[str] = Field(default=["*"])


class RateLimiterConfig(BaseModel):
    """Rate limiter configuration model."""

    requests: int = Field(
        default=100, description="Number of requests allowed per window"
    )
    window_ms: int = Field(default=60000, description="Time window in milliseconds")
    enabled: bool = Field(default=True, description="Enable rate limiting")
    per_endpoint: bool = Field(
        default=True, description="Apply rate limiting per endpoint"
    )
    per_method: bool = Field(
        default=True, description="Apply rate limiting per HTTP method"
    )
    login_requests: int = Field(
        default=20, description="Login attempts allowed per IP and window"
    )
    register_requests: int = Field(
        default=10, description="Registrations allowed per IP and window"
    )


class RedisConfig(BaseModel):
    """Redis configuration model."""

    enabled: bool = Field(default=False, description="Enable Redis service")
    url: str | None = Field(default=None, description="Redis connection URL")
    password: str | None = Field(
        default=None, description="Password for Redis authentication"
    )
    decode_responses: bool = Field(
        default=True, description="Decode Redis responses to strings"
    )

    @computed_field
    @property
    def connection_string(self) -> str | None:
        """Construct the Redis connection string with password if provided."""
        if self.url and self.password and "@" not in self.url:
            parts = self.url.split("://", 1)
            if len(parts) == 2:
                scheme, rest = parts
                return f"{scheme}://:{self.password}@{rest}"
        return self.url


class OAuthProviderConfig(BaseModel):
    """Third-party OAuth2 provider (Google, GitHub) configuration."""

    authorization_endpoint: str = Field(description="Authorization endpoint URL")
    token_endpoint: str = Field(description="Token endpoint URL")
    userinfo_endpoint: str = Field(description="Profile endpoint URL")
    emails_endpoint: str | None = Field(
        default=None, description="Secondary endpoint listing verified emails"
    )
    client_id: str | None = Field(
        default=None, description="Client ID registered with the provider"
    )
    client_secret: str | None = Field(
        default=None, description="Client secret for the provider"
    )
    redirect_uri: str = Field(description="Callback URL registered with the provider")
    scopes: list[str] = Field(default_factory=lambda: ["openid", "email", "profile"])
    enabled: bool = Field(default=True, description="Enable this provider")


class OAuthConfig(BaseModel):
    """OAuth2 configuration model."""

    providers: dict[str, OAuthProviderConfig] = Field(
        default_factory=dict, description="OAuth provider configurations"
    )
    supported_providers: list[str] = Field(
        default_factory=lambda: ["google", "github"],
        description="Provider names accepted by the OAuth endpoints",
    )
    state_ttl_seconds: int = Field(default=600, description="OAuth state token TTL")


class OIDCProviderConfig(BaseModel):
    """OIDC provider configuration model."""

    authorization_endpoint: str = Field(description="OIDC authorization endpoint URL")
    token_endpoint: str = Field(description="OIDC token endpoint URL")
    userinfo_endpoint: str | None = Field(
        default=None, description="OIDC userinfo endpoint URL"
    )
    issuer: str = Field(description="OIDC issuer URL")
    jwks_uri: str = Field(description="JWKS endpoint for ID token validation")
    scopes: list[str] = Field(
        default_factory=lambda: ["openid", "profile", "email"],
        description="OIDC scopes to request during authentication",
    )
    client_id: str = Field(description="Client ID for the OIDC provider")
    client_secret: str = Field(description="Client secret for the OIDC provider")
    redirect_uri: str = Field(description="Redirect URI for this provider")
    tenant_id: str | None = Field(
        default=None, description="Tenant bound to this provider, if any"
    )
    enabled: bool = Field(default=True, description="Enable this provider")


class OIDCConfig(BaseModel):
    """OIDC configuration model."""

    providers: dict[str, OIDCProviderConfig] = Field(
        default_factory=dict, description="OIDC provider configurations"
    )


class SAMLConfig(BaseModel):
    """SAML service provider configuration."""

    entity_id_prefix: str = Field(
        default="urn:cmms", description="Prefix for per-tenant SP entity ids"
    )
    certificate_placeholder: str = Field(
        default="REPLACE_WITH_IDP_CERT",
        description="Certificate emitted when a tenant has none registered",
    )


class JWTConfig(BaseModel):
    """Session token signing configuration."""

    secret: str | None = Field(default=None, description="HMAC signing secret")
    issuer: str = Field(default="cmms-auth", description="Issuer for session tokens")
    audience: str = Field(default="cmms-api", description="Audience for session tokens")
    algorithm: str = Field(default="HS256", description="Signing algorithm")
    clock_skew: int = Field(default=30, description="Clock skew tolerance in seconds")
    min_secret_length: int = Field(
        default=32, description="Minimum secret length required in production"
    )
    development_secret: str = Field(
        default="development-secret-change-me-0000",
        description="Fallback secret used outside production",
    )


class SessionConfig(BaseModel):
    """Session token lifetimes and cookie names."""

    access_token_ttl_seconds: int = Field(default=900, description="Access token TTL")
    remember_max_age_seconds: int = Field(
        default=30 * 24 * 3600, description="Cookie/refresh lifetime with remember me"
    )
    default_max_age_seconds: int = Field(
        default=8 * 3600, description="Cookie/refresh lifetime without remember me"
    )
    rotation_token_ttl_seconds: int = Field(
        default=900, description="Bootstrap rotation token TTL"
    )
    sso_token_ttl_seconds: int = Field(
        default=300, description="SSO callback exchange token TTL"
    )
    mfa_challenge_ttl_seconds: int = Field(
        default=300, description="Pending MFA challenge token TTL"
    )
    access_cookie_name: str = Field(default="auth")
    refresh_cookie_name: str = Field(default="refresh_token")
    mfa_challenge_cookie_name: str = Field(default="mfa_challenge")
    include_token_in_body: bool = Field(
        default=False, description="Echo the access token in login response bodies"
    )


class PasswordPolicyConfig(BaseModel):
    """Password strength requirements."""

    min_length: int = Field(default=12)
    require_upper: bool = Field(default=True)
    require_lower: bool = Field(default=True)
    require_digit: bool = Field(default=True)
    require_symbol: bool = Field(default=True)


class LockoutConfig(BaseModel):
    """Per-account lockout after repeated failures."""

    threshold: int = Field(default=5, description="Failures before lockout")
    window_ms: int = Field(default=15 * 60 * 1000, description="Failure window")
    duration_ms: int = Field(default=30 * 60 * 1000, description="Lockout duration")


class SecurityConfig(BaseModel):
    """Security configuration for authentication and sessions."""

    secure_cookies: bool | None = Field(
        default=None,
        description="Force the Secure cookie attribute; None derives it from the environment",
    )
    cookie_samesite: Literal["lax", "strict", "none"] = Field(
        default="lax", description="SameSite cookie attribute"
    )
    enforce_session_binding: bool = Field(
        default=True, description="Reject tokens replayed from another client context"
    )
    device_header: str = Field(
        default="x-device-id", description="Header carrying an optional device id"
    )
    account_attempts: int = Field(
        default=10, description="Failed attempts allowed per account and window"
    )
    account_window_ms: int = Field(default=60000)
    password: PasswordPolicyConfig = Field(default_factory=PasswordPolicyConfig)
    lockout: LockoutConfig = Field(default_factory=LockoutConfig)
    invite_ttl_seconds: int = Field(default=7 * 24 * 3600)


class MFAConfig(BaseModel):
    """Multi-factor enforcement policy."""

    enforced: bool = Field(
        default=False, description="Require MFA before any session token issuance"
    )
    sso_trusted_second_factor: bool = Field(
        default=True,
        description="Treat a successful SSO login as the second factor",
    )
    issuer_name: str = Field(default="CMMS", description="Authenticator app label")
    valid_window: int = Field(default=1, description="Accepted clock drift in steps")


class FeatureFlags(BaseModel):
    """Environment-driven feature switches."""

    oidc_enabled: bool = Field(default=False)
    saml_enabled: bool = Field(default=False)
    jit_provisioning: bool = Field(default=True)


class TenancyConfig(BaseModel):
    """Identity-provider claim to tenant mappings."""

    domain_map: dict[str, str] = Field(
        default_factory=dict,
        description="Email/workspace domain to 'tenant[:site]'",
    )
    issuer_map: dict[str, str] = Field(
        default_factory=dict,
        description="Directory tenant id or issuer to 'tenant[:site]'",
    )
    domain_providers: list[str] = Field(
        default_factory=lambda: ["google", "google-workspace"]
    )
    issuer_providers: list[str] = Field(default_factory=lambda: ["azure", "azuread"])
    site_claim_keys: list[str] = Field(
        default_factory=lambda: [
            "siteId",
            "siteID",
            "site_id",
            "extension_siteId",
            "extension_siteID",
            "extension_site_id",
        ]
    )


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default="INFO", description="Logging level")
    format: Literal["json", "plain"] = Field(default="json", description="Log format")
    file: str | None = Field(default=None, description="Log file path")
    max_size_mb: int = Field(default=10, description="Maximum log file size in MB")
    backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )


class DatabaseConfig(BaseModel):
    """Database configuration model."""

    url: str = Field(
        default="sqlite:///./cmms_auth.db", description="Database connection URL"
    )
    pool_size: int = Field(default=20, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    pool_recycle: int = Field(default=1800, description="Pool recycle time in seconds")


class AppConfig(BaseModel):
    """Application configuration model."""

    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    host: str = Field(default="localhost", description="Application host")
    port: int = Field(default=8000, description="Application port")
    frontend_url: str = Field(
        default="http://localhost:5173", description="Browser application base URL"
    )
    api_base_path: str = Field(default="/api", description="Public API mount path")
    cors: CORSConfig = Field(
        default_factory=CORSConfig, description="CORS configuration"
    )

    @property
    def base_url(self) -> str:
        """Construct the base URL from host and port."""
        scheme = "https" if self.environment == "production" else "http"
        return f"{scheme}://{self.host}:{self.port}"


class ConfigData(BaseModel):
    """Root configuration model that matches the config.yaml structure."""

    app: AppConfig = Field(
        default_factory=AppConfig, description="Application configuration"
    )
    jwt: JWTConfig = Field(
        default_factory=JWTConfig, description="Session token signing configuration"
    )
    session: SessionConfig = Field(
        default_factory=SessionConfig, description="Session lifetimes and cookies"
    )
    security: SecurityConfig = Field(
        default_factory=SecurityConfig, description="Security configuration"
    )
    mfa: MFAConfig = Field(default_factory=MFAConfig, description="MFA policy")
    features: FeatureFlags = Field(
        default_factory=FeatureFlags, description="Feature flags"
    )
    tenancy: TenancyConfig = Field(
        default_factory=TenancyConfig, description="Tenant mapping configuration"
    )
    oauth: OAuthConfig = Field(
        default_factory=OAuthConfig, description="OAuth2 configuration"
    )
    oidc: OIDCConfig = Field(
        default_factory=OIDCConfig, description="OIDC configuration"
    )
    saml: SAMLConfig = Field(
        default_factory=SAMLConfig, description="SAML configuration"
    )
    rate_limiter: RateLimiterConfig = Field(
        default_factory=RateLimiterConfig, description="Rate limiter configuration"
    )
    redis: RedisConfig = Field(
        default_factory=RedisConfig, description="Redis configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description="Database configuration"
    )
