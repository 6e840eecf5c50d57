# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    leave_balance, leave_request, approval_workflow, audit_log, notification
)

# Explicit class exports for cleaner imports
from .leave_balance import LeaveBalance, LeaveCategory, LeavePool, CATEGORY_POOLS
from .leave_request import LeaveRequest, LeaveStatus
from .approval_workflow import ApprovalWorkflow, WorkflowStatus
from .audit_log import AuditLog
from .notification import Notification

__all__ = [
    "LeaveBalance",
    "LeaveCategory",
    "LeavePool",
    "CATEGORY_POOLS",
    "LeaveRequest",
    "LeaveStatus",
    "ApprovalWorkflow",
    "WorkflowStatus",
    "AuditLog",
    "Notification",
]
