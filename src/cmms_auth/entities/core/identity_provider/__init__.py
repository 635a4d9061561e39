from .entity import IdentityProviderConfig
from .repository import IdentityProviderConfigRepository
from .table import IdentityProviderConfigTable

__all__ = [
    "IdentityProviderConfig",
    "IdentityProviderConfigRepository",
    "IdentityProviderConfigTable",
]
