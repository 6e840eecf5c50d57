from typing import List, Optional

from fastapi import APIRouter, Depends

from leave_ledger.dependencies import get_actor_id, get_workflow_service
from leave_ledger.models.approval_workflow import WorkflowStatus
from leave_ledger.schemas.workflow import WorkflowCreate, WorkflowRejection, WorkflowResponse
from leave_ledger.services.workflow import ApprovalWorkflowService

router = APIRouter(prefix="/workflows", tags=["workflows"])


@router.post("", response_model=WorkflowResponse, status_code=201)
def create_workflow(
    payload: WorkflowCreate,
    actor_id: int = Depends(get_actor_id),
    service: ApprovalWorkflowService = Depends(get_workflow_service),
):
    return service.create(
        payload.item_type,
        payload.item_id,
        actor_id,
        approval_chain=payload.approval_chain,
        total_steps=payload.total_steps,
        employee_id=payload.employee_id,
        item_title=payload.item_title,
    )


@router.get("", response_model=List[WorkflowResponse])
def list_workflows(
    status: Optional[WorkflowStatus] = None,
    item_type: Optional[str] = None,
    requester_id: Optional[int] = None,
    service: ApprovalWorkflowService = Depends(get_workflow_service),
):
    return service.list_workflows(
        status=status.value if status else None,
        item_type=item_type,
        requester_id=requester_id,
    )


@router.get("/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(workflow_id: int, service: ApprovalWorkflowService = Depends(get_workflow_service)):
    return service.get(workflow_id)


@router.post("/{workflow_id}/advance", response_model=WorkflowResponse)
def advance_workflow(
    workflow_id: int,
    actor_id: int = Depends(get_actor_id),
    service: ApprovalWorkflowService = Depends(get_workflow_service),
):
    return service.advance(workflow_id, actor_id)


@router.post("/{workflow_id}/reject", response_model=WorkflowResponse)
def reject_workflow(
    workflow_id: int,
    payload: WorkflowRejection,
    actor_id: int = Depends(get_actor_id),
    service: ApprovalWorkflowService = Depends(get_workflow_service),
):
    return service.reject(workflow_id, actor_id, payload.reason)
