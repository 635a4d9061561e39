"""Security utilities: random tokens, redirect sanitizing, client binding."""

import base64
import hashlib
import hmac
import re
import secrets
from urllib.parse import urlparse

from fastapi import Request

from src.cmms_auth.core.models.session import SessionBinding
from src.cmms_auth.runtime.config.config_data import PasswordPolicyConfig
from src.cmms_auth.runtime.context import get_config

_FORWARDED_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")
_BLOCKED_REDIRECT_PREFIXES = ("/login", "/auth/callback")


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token.

    Args:
        length: Number of random bytes to generate (default 32)

    Returns:
        URL-safe base64 encoded token
    """
    return (
        base64.urlsafe_b64encode(secrets.token_bytes(length))
        .decode("utf-8")
        .rstrip("=")
    )


def generate_nonce() -> str:
    return generate_secure_token(32)


def hash_token(token: str) -> str:
    """sha256 hex digest used to store one-time tokens at rest."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def sanitize_redirect(target: str | None, fallback: str = "/") -> str:
    """Only allow same-origin, non-auth paths as post-login destinations.

    Absolute URLs, protocol-relative ``//host`` values, anything not starting
    with ``/`` and the login/callback pages themselves collapse to ``fallback``.
    """
    if not target:
        return fallback
    target = target.strip()
    if not target.startswith("/") or target.startswith("//"):
        return fallback
    if urlparse(target).netloc or any(ord(c) < 32 for c in target):
        return fallback
    path = target.split("?", 1)[0].split("#", 1)[0]
    for blocked in _BLOCKED_REDIRECT_PREFIXES:
        if path == blocked or path.startswith(blocked + "/"):
            return fallback
    return target


def extract_client_ip(request: Request) -> str | None:
    """Best-effort client IP, preferring proxy headers over the socket peer."""
    for header in _FORWARDED_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def hash_client_fingerprint(
    client_ip: str | None, user_agent: str | None, device_id: str | None = None
) -> str:
    """Create a stable fingerprint for client context binding.

    Returns:
        SHA256 hash of ``ip|user-agent`` with ``|device`` appended when present
    """
    components = [(client_ip or "unknown-ip").strip(), (user_agent or "unknown-ua").strip()]
    if device_id:
        components.append(device_id.strip())
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


def build_session_binding(request: Request) -> SessionBinding:
    """Fingerprint the requesting client for embedding in session tokens."""
    device_header = get_config().security.device_header
    device_id = request.headers.get(device_header)
    return SessionBinding(
        fingerprint=hash_client_fingerprint(
            extract_client_ip(request), request.headers.get("user-agent"), device_id
        ),
        device_bound=bool(device_id),
    )


def is_session_binding_valid(binding: SessionBinding | None, request: Request) -> bool:
    """True only when ``request`` comes from the client the token was issued to."""
    if binding is None:
        return False
    current = build_session_binding(request)
    return hmac.compare_digest(binding.fingerprint, current.fingerprint)


def validate_password_strength(
    password: str, policy: PasswordPolicyConfig | None = None
) -> list[str]:
    """Return the unmet password requirements; empty means acceptable."""
    policy = policy or get_config().security.password
    problems = []
    if len(password) < policy.min_length:
        problems.append(f"Password must be at least {policy.min_length} characters")
    if policy.require_upper and not re.search(r"[A-Z]", password):
        problems.append("Password must contain an uppercase letter")
    if policy.require_lower and not re.search(r"[a-z]", password):
        problems.append("Password must contain a lowercase letter")
    if policy.require_digit and not re.search(r"\d", password):
        problems.append("Password must contain a digit")
    if policy.require_symbol and not re.search(r"[^A-Za-z0-9]", password):
        problems.append("Password must contain a symbol")
    return problems
