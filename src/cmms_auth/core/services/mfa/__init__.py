from .mfa_service import MfaEngine, MfaEnrollment

__all__ = ["MfaEngine", "MfaEnrollment"]
