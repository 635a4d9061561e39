from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field

from src.cmms_auth.entities.core._base import EntityTable


class AuditEventTable(EntityTable, table=True):
    __tablename__ = "audit_events"

    action: str = Field(index=True)
    tenant_id: str | None = Field(default=None, index=True)
    user_id: str | None = Field(default=None, index=True)
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
