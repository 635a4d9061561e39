from sqlmodel import Session, col, select

from src.cmms_auth.entities.core.audit_event.entity import AuditEvent
from src.cmms_auth.entities.core.audit_event.table import AuditEventTable


class AuditEventRepository:
    """Append-only access to the audit trail."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, event: AuditEvent) -> AuditEvent:
        row = AuditEventTable(**event.model_dump())
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return AuditEvent.model_validate(row, from_attributes=True)

    def list_recent(
        self, tenant_id: str | None = None, action: str | None = None, limit: int = 100
    ) -> list[AuditEvent]:
        statement = select(AuditEventTable)
        if tenant_id is not None:
            statement = statement.where(AuditEventTable.tenant_id == tenant_id)
        if action is not None:
            statement = statement.where(AuditEventTable.action == action)
        statement = statement.order_by(col(AuditEventTable.created_at).desc()).limit(limit)
        return [
            AuditEvent.model_validate(row, from_attributes=True)
            for row in self._session.exec(statement).all()
        ]
