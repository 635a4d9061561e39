"""Role claim normalization.

Providers hand us roles as a string, a list, nested group structures or
nothing at all. Everything is reduced to a lowercase, deduplicated,
insertion-ordered list here before it reaches provisioning or tokens.
"""

from collections.abc import Iterable
from typing import Any

# Most privileged first.
ROLE_PRIORITY: tuple[str, ...] = (
    "general_manager",
    "assistant_general_manager",
    "operations_manager",
    "department_leader",
    "assistant_department_leader",
    "area_leader",
    "team_leader",
    "team_member",
    "technical_team_member",
    "admin",
    "supervisor",
    "manager",
    "planner",
    "tech",
    "technician",
    "viewer",
)

KNOWN_ROLES = frozenset(ROLE_PRIORITY)

DEFAULT_ROLE = "tech"


def normalize_roles(value: Any) -> list[str]:
    """Lowercase, strip and dedupe a role claim of any shape.

    Non-string entries are dropped. A bare string is treated as a single role.
    """
    if value is None:
        return []
    if isinstance(value, str):
        candidates: Iterable[Any] = [value]
    elif isinstance(value, (list, tuple, set, frozenset)):
        candidates = value
    else:
        return []

    roles: list[str] = []
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        role = candidate.strip().lower()
        if role and role not in roles:
            roles.append(role)
    return roles


def canonical_roles(value: Any) -> list[str]:
    """Normalize and keep only roles the application knows about."""
    return [role for role in normalize_roles(value) if role in KNOWN_ROLES]


def derive_primary_role(explicit_role: Any, roles: Any) -> str:
    """Pick the role that represents a user in tokens and UI.

    An explicit role wins when it is a known role. Otherwise the highest
    priority role present is chosen, then the first normalized role, then
    ``DEFAULT_ROLE``. Never returns an empty string.
    """
    explicit = normalize_roles(explicit_role)
    if explicit and explicit[0] in KNOWN_ROLES:
        return explicit[0]

    normalized = normalize_roles(roles)
    for candidate in ROLE_PRIORITY:
        if candidate in normalized:
            return candidate
    if normalized:
        return normalized[0]
    return DEFAULT_ROLE


def role_set(explicit_role: Any, roles: Any) -> list[str]:
    """Primary role first, followed by the remaining normalized roles."""
    primary = derive_primary_role(explicit_role, roles)
    return [primary, *(r for r in normalize_roles(roles) if r != primary)]
