"""
Generic sequential approval workflow.

Keyed by (item_type, item_id) so leave requests and any other approval-gated
item share one state machine instead of one per item type.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, UniqueConstraint
from sqlalchemy.sql import func

from leave_ledger.database import Base


class WorkflowStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

# Item types whose workflows only change inside their owning orchestrator's unit
LEAVE_ITEM_TYPE = "leave_request"
ORCHESTRATED_ITEM_TYPES = frozenset({LEAVE_ITEM_TYPE})


class ApprovalWorkflow(Base):
    __tablename__ = "approval_workflows"
    __table_args__ = (
        UniqueConstraint("item_type", "item_id", name="uq_approval_workflow_item"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # What's being approved
    item_type = Column(String, nullable=False, index=True)
    item_id = Column(Integer, nullable=False)
    item_title = Column(String, nullable=True)

    requester_id = Column(Integer, nullable=False, index=True)
    employee_id = Column(Integer, nullable=False)  # whose item it is, for authorization

    # Empty chain means "any authorized approver" for each of total_steps
    approval_chain = Column(JSON, nullable=False, default=list)
    total_steps = Column(Integer, nullable=False)
    current_step = Column(Integer, nullable=False, default=1)

    status = Column(String, nullable=False, default=WorkflowStatus.PENDING.value, index=True)

    # Append-only [{"approver_id": int, "approved_at": iso8601}]
    approved_by = Column(JSON, nullable=False, default=list)
    rejected_by = Column(Integer, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    requested_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<ApprovalWorkflow {self.item_type}:{self.item_id} step={self.current_step}/{self.total_steps} {self.status}>"

    @property
    def is_terminal(self) -> bool:
        return self.status != WorkflowStatus.PENDING.value

    @property
    def current_approver_id(self):
        """Named approver for the current step, if the chain names one."""
        chain = self.approval_chain or []
        if self.is_terminal or self.current_step > len(chain):
            return None
        return chain[self.current_step - 1]
