from .entity import AuditEvent
from .repository import AuditEventRepository
from .table import AuditEventTable

__all__ = ["AuditEvent", "AuditEventRepository", "AuditEventTable"]
