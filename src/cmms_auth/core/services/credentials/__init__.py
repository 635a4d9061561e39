from .password_service import CredentialCheck, CredentialVerifier

__all__ = ["CredentialCheck", "CredentialVerifier"]
