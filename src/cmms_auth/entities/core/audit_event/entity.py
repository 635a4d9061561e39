from typing import Any

from pydantic import Field

from src.cmms_auth.entities.core._base import Entity


class AuditEvent(Entity):
    """Forensic record of an authentication decision."""

    action: str
    tenant_id: str | None = None
    user_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
