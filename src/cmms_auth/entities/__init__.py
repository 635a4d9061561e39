"""Entities grouped by business concept.

Each entity package holds ``entity.py`` (domain model), ``table.py``
(persistence model) and ``repository.py`` (data access).
"""

from .core.audit_event import AuditEvent, AuditEventRepository, AuditEventTable
from .core.identity_provider import (
    IdentityProviderConfig,
    IdentityProviderConfigRepository,
    IdentityProviderConfigTable,
)
from .core.user import User, UserRepository, UserTable

__all__ = [
    "AuditEvent",
    "AuditEventRepository",
    "AuditEventTable",
    "IdentityProviderConfig",
    "IdentityProviderConfigRepository",
    "IdentityProviderConfigTable",
    "User",
    "UserRepository",
    "UserTable",
]
