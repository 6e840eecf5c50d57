from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from leave_ledger.core.limiter import decision_rate, limiter
from leave_ledger.dependencies import get_actor_id, get_orchestrator
from leave_ledger.models.approval_workflow import LEAVE_ITEM_TYPE
from leave_ledger.models.leave_request import LeaveStatus
from leave_ledger.schemas.leave import (
    AdminProcessingRequest,
    AttachmentUpdate,
    AuditEntryResponse,
    EntitlementSeed,
    LeaveBalanceResponse,
    LeaveDecisionRequest,
    LeaveDecisionResponse,
    LeaveRequestCreate,
    LeaveRequestResponse,
)
from leave_ledger.services.audit import AuditService
from leave_ledger.services.leave_service import LeaveApprovalOrchestrator

router = APIRouter(prefix="/leave", tags=["leave"])


# --- Requests ---

@router.post("/requests", response_model=LeaveRequestResponse, status_code=201)
def submit_leave_request(
    payload: LeaveRequestCreate,
    actor_id: int = Depends(get_actor_id),
    orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.submit(
        employee_id=payload.employee_id or actor_id,
        requester_id=actor_id,
        category=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        covering_employee_id=payload.covering_employee_id,
        attachment_ref=payload.attachment_ref,
        attachment_filename=payload.attachment_filename,
        reason=payload.reason,
        approval_chain=payload.approval_chain,
    )


@router.get("/requests", response_model=List[LeaveRequestResponse])
def list_leave_requests(
    employee_id: Optional[int] = None,
    status: Optional[LeaveStatus] = None,
    orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_requests(employee_id=employee_id, status=status.value if status else None)


@router.get("/requests/{request_id}", response_model=LeaveRequestResponse)
def get_leave_request(request_id: int, orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_request(request_id)


@router.put("/requests/{request_id}/attachment", response_model=LeaveRequestResponse)
def attach_medical_certificate(
    request_id: int,
    payload: AttachmentUpdate,
    actor_id: int = Depends(get_actor_id),
    orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.attach_document(request_id, payload.attachment_ref, payload.attachment_filename)


@router.post("/requests/{request_id}/decision", response_model=LeaveDecisionResponse)
@limiter.limit(decision_rate)
def decide_leave_request(
    request: Request,
    request_id: int,
    decision: LeaveDecisionRequest,
    actor_id: int = Depends(get_actor_id),
    orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator),
):
    leave = orchestrator.decide(request_id, actor_id, decision.outcome, decision.reason)
    workflow = orchestrator.workflow_for(leave.id)
    return LeaveDecisionResponse(
        request=LeaveRequestResponse.model_validate(leave),
        approval_status=workflow.status,
        current_step=workflow.current_step,
        total_steps=workflow.total_steps,
    )


@router.post("/requests/{request_id}/process", response_model=LeaveRequestResponse)
def process_leave_request(
    request_id: int,
    payload: Optional[AdminProcessingRequest] = None,
    actor_id: int = Depends(get_actor_id),
    orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator),
):
    payload = payload or AdminProcessingRequest()
    return orchestrator.process_administratively(
        request_id, actor_id, notify_bdm=payload.notify_bdm, notify_crm=payload.notify_crm
    )


@router.get("/requests/{request_id}/history", response_model=List[AuditEntryResponse])
def leave_request_history(request_id: int, orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator)):
    orchestrator.get_request(request_id)
    return AuditService(orchestrator.db).history(LEAVE_ITEM_TYPE, request_id)


# --- Balances ---

@router.get("/balances/{employee_id}/{year}", response_model=LeaveBalanceResponse)
def get_leave_balance(employee_id: int, year: int, orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator)):
    return LeaveBalanceResponse.from_balance(orchestrator.get_balance(employee_id, year))


@router.put("/balances/{employee_id}/{year}", response_model=LeaveBalanceResponse)
def seed_leave_entitlements(
    employee_id: int,
    year: int,
    payload: EntitlementSeed,
    actor_id: int = Depends(get_actor_id),
    orchestrator: LeaveApprovalOrchestrator = Depends(get_orchestrator),
):
    balance = orchestrator.seed_entitlements(employee_id, year, payload.model_dump(exclude_none=True), actor_id)
    return LeaveBalanceResponse.from_balance(balance)
