from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional


class WorkflowCreate(BaseModel):
    item_type: str = Field(min_length=1)
    item_id: int
    item_title: Optional[str] = None
    employee_id: Optional[int] = None
    approval_chain: List[int] = []
    total_steps: Optional[int] = Field(default=None, ge=1)


class ApprovalEntry(BaseModel):
    approver_id: int
    approved_at: datetime


class WorkflowResponse(BaseModel):
    id: int
    item_type: str
    item_id: int
    item_title: Optional[str] = None
    requester_id: int
    employee_id: int
    approval_chain: List[int]
    total_steps: int
    current_step: int
    current_approver_id: Optional[int] = None
    status: str
    approved_by: List[ApprovalEntry]
    rejected_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WorkflowRejection(BaseModel):
    reason: Optional[str] = None
