"""Audit trail for authentication decisions."""

from typing import Any

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from src.cmms_auth.entities.core.audit_event import AuditEvent, AuditEventRepository


class AuditService:
    """Persist and log one event per terminal authentication decision."""

    def __init__(self, db_session: Session) -> None:
        self._db_session = db_session
        self._events = AuditEventRepository(db_session)

    def record(
        self,
        action: str,
        tenant_id: str | None = None,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        event = AuditEvent(
            action=action,
            tenant_id=tenant_id,
            user_id=user_id,
            details=details or {},
        )
        logger.bind(
            audit_action=action, tenant_id=tenant_id, user_id=user_id
        ).info("audit.{}", action)
        try:
            return self._events.create(event)
        except SQLAlchemyError:
            # audit persistence failures never fail the request
            self._db_session.rollback()
            logger.exception("Failed to persist audit event {}", action)
            return None

    def recent(
        self, tenant_id: str | None = None, action: str | None = None, limit: int = 100
    ) -> list[AuditEvent]:
        return self._events.list_recent(tenant_id=tenant_id, action=action, limit=limit)
