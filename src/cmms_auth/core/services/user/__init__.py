from .user_provisioning import IdentityProvisioningService
from .user_registration import UserRegistrationService, resolve_registration_tenant

__all__ = [
    "IdentityProvisioningService",
    "UserRegistrationService",
    "resolve_registration_tenant",
]
