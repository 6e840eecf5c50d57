from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import List, Optional

from leave_ledger.models.leave_balance import LeaveCategory, LeavePool
from leave_ledger.services.leave_service import DecisionOutcome

class LeaveRequestCreate(BaseModel):
    employee_id: Optional[int] = None  # defaults to the acting user; set for proxy submissions
    leave_type: LeaveCategory
    start_date: date
    end_date: date
    reason: Optional[str] = None
    covering_employee_id: Optional[int] = None
    attachment_ref: Optional[str] = None
    attachment_filename: Optional[str] = None
    approval_chain: Optional[List[int]] = None

class LeaveRequestResponse(BaseModel):
    id: int
    employee_id: int
    requester_id: int
    leave_type: LeaveCategory
    start_date: date
    end_date: date
    total_days: int
    reason: Optional[str] = None
    covering_employee_id: Optional[int] = None
    attachment_ref: Optional[str] = None
    attachment_filename: Optional[str] = None
    status: str
    approver_id: Optional[int] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    admin_processed: bool
    admin_processed_by: Optional[int] = None
    admin_processed_at: Optional[datetime] = None
    bdm_notified: bool
    crm_notified: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class AttachmentUpdate(BaseModel):
    attachment_ref: str
    attachment_filename: Optional[str] = None

class AdminProcessingRequest(BaseModel):
    notify_bdm: bool = True
    notify_crm: bool = True

class LeaveDecisionRequest(BaseModel):
    outcome: DecisionOutcome
    reason: Optional[str] = None

class LeaveDecisionResponse(BaseModel):
    request: LeaveRequestResponse
    approval_status: str
    current_step: int
    total_steps: int

class PoolSnapshot(BaseModel):
    pool: LeavePool
    total: int
    used: int
    remaining: int

class LeaveBalanceResponse(BaseModel):
    employee_id: int
    year: int
    pools: List[PoolSnapshot]

    @classmethod
    def from_balance(cls, balance) -> "LeaveBalanceResponse":
        return cls(
            employee_id=balance.employee_id,
            year=balance.year,
            pools=[
                PoolSnapshot(
                    pool=pool,
                    total=balance.total(pool),
                    used=balance.used(pool),
                    remaining=balance.remaining(pool),
                )
                for pool in LeavePool
            ],
        )

class EntitlementSeed(BaseModel):
    """Pre-seeded totals per pool; omitted pools keep their current total."""
    sick_paid: Optional[int] = Field(default=None, ge=0)
    sick_unpaid: Optional[int] = Field(default=None, ge=0)
    casual_paid: Optional[int] = Field(default=None, ge=0)
    casual_unpaid: Optional[int] = Field(default=None, ge=0)
    bereavement: Optional[int] = Field(default=None, ge=0)
    public_holiday: Optional[int] = Field(default=None, ge=0)
    unpaid: Optional[int] = Field(default=None, ge=0)

class AuditEntryResponse(BaseModel):
    id: int
    action: str
    user_id: Optional[int] = None
    details: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# Resolve forward references for Pydantic V2
LeaveBalanceResponse.model_rebuild()
