"""Provider name to adapter lookup, built once from configuration."""

from dataclasses import dataclass, field

from loguru import logger

from src.cmms_auth.core.exceptions import UnsupportedProvider
from src.cmms_auth.core.services.federation.client import FederationClient
from src.cmms_auth.core.services.federation.oauth import OAuthAdapter
from src.cmms_auth.core.services.federation.oidc import OidcAdapter
from src.cmms_auth.core.services.jwt import JwtVerificationService
from src.cmms_auth.runtime.config.config_data import ConfigData


@dataclass
class FederationRegistry:
    oauth: dict[str, OAuthAdapter] = field(default_factory=dict)
    oidc: dict[str, OidcAdapter] = field(default_factory=dict)

    def oauth_adapter(self, provider: str) -> OAuthAdapter:
        adapter = self.oauth.get(provider.lower())
        if adapter is None:
            raise UnsupportedProvider()
        return adapter

    def oidc_adapter(self, provider: str) -> OidcAdapter | None:
        """Statically configured OIDC adapter, or None for tenant-registered ones."""
        return self.oidc.get(provider.lower())


def build_federation_registry(
    config: ConfigData,
    verifier: JwtVerificationService,
    client: FederationClient | None = None,
) -> FederationRegistry:
    client = client or FederationClient()
    registry = FederationRegistry()
    supported = {p.lower() for p in config.oauth.supported_providers}
    for name, provider in config.oauth.providers.items():
        if name.lower() in supported and provider.enabled:
            registry.oauth[name.lower()] = OAuthAdapter(name.lower(), provider, client)
    for name, provider in config.oidc.providers.items():
        if provider.enabled:
            registry.oidc[name.lower()] = OidcAdapter(name.lower(), provider, verifier, client)
    logger.info(
        "Federation providers: oauth={} oidc={}",
        sorted(registry.oauth),
        sorted(registry.oidc),
    )
    return registry
