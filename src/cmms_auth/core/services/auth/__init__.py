from .attempt_limiter import FailureLimiter
from .login_orchestrator import SSO_AUDIT_ACTIONS, LoginOrchestrator

__all__ = ["FailureLimiter", "LoginOrchestrator", "SSO_AUDIT_ACTIONS"]
