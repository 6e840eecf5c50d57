from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean, Text, Enum
from sqlalchemy.sql import func
from leave_ledger.database import Base
from leave_ledger.models.leave_balance import LeaveCategory
import enum

class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, index=True, nullable=False)
    requester_id = Column(Integer, nullable=False)  # differs from employee_id for proxy submissions
    leave_type = Column(Enum(LeaveCategory, values_callable=lambda e: [m.value for m in e]), index=True, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_days = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    covering_employee_id = Column(Integer, nullable=True)  # opaque reference, not validated

    # Medical certificate for sick leave
    attachment_ref = Column(String, nullable=True)
    attachment_filename = Column(String, nullable=True)

    status = Column(String, default=LeaveStatus.PENDING.value, nullable=False, index=True)
    approver_id = Column(Integer, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Post-decision administrative flags; the only fields mutable after a terminal status
    admin_processed = Column(Boolean, default=False, nullable=False)
    admin_processed_by = Column(Integer, nullable=True)
    admin_processed_at = Column(DateTime(timezone=True), nullable=True)
    bdm_notified = Column(Boolean, default=False, nullable=False)
    crm_notified = Column(Boolean, default=False, nullable=False)

    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def year(self) -> int:
        """Ledger year debited by this request."""
        return self.start_date.year

    @property
    def is_terminal(self) -> bool:
        return self.status != LeaveStatus.PENDING.value
