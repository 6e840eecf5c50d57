from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from leave_ledger.database import Base

class AuditLog(Base):
    """Append-only record of committed ledger and workflow transitions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False, index=True)  # e.g. leave.approved, workflow.advanced
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(Integer, nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
