from datetime import date, datetime
from enum import Enum
from typing import Optional

from leave_ledger.models.audit_log import AuditLog
from leave_ledger.services.base import BaseService


def sanitize(obj):
    """Make payloads JSON-column friendly."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {str(k): sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize(i) for i in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    return obj


class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int],
        details: dict,
    ) -> AuditLog:
        """
        Create an audit log entry. Strictly append-only.
        Flushes but does not commit; the caller owns the transaction.
        """
        db_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            details=sanitize(details),
        )
        self.db.add(db_log)
        self.db.flush()
        return db_log

    def history(self, entity_type: str, entity_id: int):
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id.asc())
            .all()
        )
