"""
Approval Workflow Service

Sequential multi-approver state machine shared by every approval-gated item.

    pending(step 1) --advance--> pending(step 2) ... --advance--> approved
           \\--------------------- reject ------------------------> rejected

Both terminal states are write-once. ``apply_advance`` / ``apply_reject`` run
inside the caller's transaction so other services can compose them with their
own writes; ``advance`` / ``reject`` commit on their own.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from leave_ledger.core.exceptions import (
    AlreadyTerminalError,
    InvalidArgumentError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
)
from leave_ledger.models.approval_workflow import ApprovalWorkflow, ORCHESTRATED_ITEM_TYPES, WorkflowStatus
from leave_ledger.services.base import BaseService
from leave_ledger.services.collaborators import Authorizer, NotificationSink, dispatch
from leave_ledger.services.transactions import run_atomically


def workflow_event(workflow: ApprovalWorkflow, actor_id: Optional[int]) -> Dict[str, Any]:
    return {
        "entity_type": "approval_workflow",
        "entity_id": workflow.id,
        "item_type": workflow.item_type,
        "item_id": workflow.item_id,
        "employee_id": workflow.employee_id,
        "actor_id": actor_id,
        "status": workflow.status,
        "current_step": workflow.current_step,
        "total_steps": workflow.total_steps,
    }


class ApprovalWorkflowService(BaseService):
    def __init__(self, db, authorizer: Authorizer, notifier: Optional[NotificationSink] = None):
        super().__init__(db)
        self.authorizer = authorizer
        self.notifier = notifier

    # --- creation & reads --------------------------------------------------

    def build(
        self,
        item_type: str,
        item_id: int,
        requester_id: int,
        approval_chain: Optional[Sequence[int]] = None,
        total_steps: Optional[int] = None,
        employee_id: Optional[int] = None,
        item_title: Optional[str] = None,
    ) -> ApprovalWorkflow:
        """Add a new pending workflow to the current transaction."""
        chain = list(approval_chain or [])
        if chain:
            if total_steps is not None and total_steps != len(chain):
                raise InvalidArgumentError("total_steps must match the approval chain length", field="total_steps")
            total_steps = len(chain)
            if len(set(chain)) != len(chain):
                raise InvalidArgumentError("An approver may appear only once in the chain", field="approval_chain")
        if not total_steps or total_steps < 1:
            raise InvalidArgumentError("A workflow needs at least one approval step", field="total_steps")
        if not item_type:
            raise InvalidArgumentError("item_type is required", field="item_type")

        workflow = ApprovalWorkflow(
            item_type=item_type,
            item_id=item_id,
            item_title=item_title,
            requester_id=requester_id,
            employee_id=employee_id if employee_id is not None else requester_id,
            approval_chain=chain,
            total_steps=total_steps,
            current_step=1,
            status=WorkflowStatus.PENDING.value,
            approved_by=[],
        )
        self.db.add(workflow)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # (item_type, item_id) claimed by a concurrent creator
            raise InvalidArgumentError(
                f"A workflow already exists for {item_type} {item_id}", field="item_id"
            ) from exc
        return workflow

    def create(self, item_type: str, item_id: int, requester_id: int, **kwargs) -> ApprovalWorkflow:
        self._ensure_standalone(item_type)
        existing = self.find_for_item(item_type, item_id)
        if existing is not None:
            raise InvalidArgumentError(
                f"A workflow already exists for {item_type} {item_id}", field="item_id"
            )
        workflow = run_atomically(
            self.db,
            lambda db: self.build(item_type, item_id, requester_id, **kwargs),
            description="workflow creation",
        )
        self.log_info("workflow_created", workflow_id=workflow.id, item_type=item_type, item_id=item_id)
        return workflow

    def get(self, workflow_id: int) -> ApprovalWorkflow:
        workflow = self.db.get(ApprovalWorkflow, workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    def find_for_item(self, item_type: str, item_id: int) -> Optional[ApprovalWorkflow]:
        return self.db.execute(
            select(ApprovalWorkflow).where(
                ApprovalWorkflow.item_type == item_type,
                ApprovalWorkflow.item_id == item_id,
            )
        ).scalar_one_or_none()

    def list_workflows(
        self,
        status: Optional[str] = None,
        item_type: Optional[str] = None,
        requester_id: Optional[int] = None,
    ) -> List[ApprovalWorkflow]:
        query = self.db.query(ApprovalWorkflow)
        if status:
            query = query.filter(ApprovalWorkflow.status == status)
        if item_type:
            query = query.filter(ApprovalWorkflow.item_type == item_type)
        if requester_id:
            query = query.filter(ApprovalWorkflow.requester_id == requester_id)
        return query.order_by(ApprovalWorkflow.id.desc()).all()

    def _lock(self, workflow_id: int) -> ApprovalWorkflow:
        workflow = self.db.execute(
            select(ApprovalWorkflow)
            .where(ApprovalWorkflow.id == workflow_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    # --- transitions (in caller's transaction) -------------------------------

    def apply_advance(self, workflow_id: int, approver_id: int) -> ApprovalWorkflow:
        workflow = self._lock(workflow_id)
        if workflow.is_terminal:
            raise AlreadyTerminalError("Workflow", workflow.id, workflow.status)

        named = workflow.current_approver_id
        if named is not None and named != approver_id:
            raise NotAuthorizedError(
                f"Step {workflow.current_step} of workflow {workflow.id} is assigned to another approver"
            )
        if not self.authorizer.can_approve(approver_id, workflow.employee_id):
            raise NotAuthorizedError()
        if any(entry.get("approver_id") == approver_id for entry in workflow.approved_by or []):
            raise NotAuthorizedError(
                f"Approver {approver_id} has already approved a step of workflow {workflow.id}"
            )

        now = datetime.now(timezone.utc)
        # Reassign rather than mutate so the JSON column is flagged dirty
        workflow.approved_by = list(workflow.approved_by or []) + [
            {"approver_id": approver_id, "approved_at": now.isoformat()}
        ]
        workflow.current_step = workflow.current_step + 1
        if workflow.current_step > workflow.total_steps:
            workflow.status = WorkflowStatus.APPROVED.value
            workflow.completed_at = now
        self.db.flush()
        return workflow

    def apply_reject(self, workflow_id: int, rejector_id: int, reason: Optional[str]) -> ApprovalWorkflow:
        if not reason or not reason.strip():
            raise InvalidArgumentError("A rejection reason is required", field="reason")

        workflow = self._lock(workflow_id)
        if workflow.is_terminal:
            raise AlreadyTerminalError("Workflow", workflow.id, workflow.status)
        if not self.authorizer.can_approve(rejector_id, workflow.employee_id):
            raise NotAuthorizedError()

        workflow.status = WorkflowStatus.REJECTED.value
        workflow.rejected_by = rejector_id
        workflow.rejection_reason = reason.strip()
        workflow.completed_at = datetime.now(timezone.utc)
        self.db.flush()
        return workflow

    # --- standalone operations ---------------------------------------------

    def _ensure_standalone(self, item_type: str) -> None:
        if item_type in ORCHESTRATED_ITEM_TYPES:
            raise InvalidStateError(
                f"{item_type} workflows change only through their own decision endpoint",
                details={"item_type": item_type},
            )

    def advance(self, workflow_id: int, approver_id: int) -> ApprovalWorkflow:
        self._ensure_standalone(self.get(workflow_id).item_type)
        workflow = run_atomically(
            self.db,
            lambda db: self.apply_advance(workflow_id, approver_id),
            description="workflow advance",
        )
        self.log_info(
            "workflow_advanced",
            workflow_id=workflow.id,
            step=workflow.current_step,
            status=workflow.status,
        )
        event = "workflow.approved" if workflow.status == WorkflowStatus.APPROVED.value else "workflow.advanced"
        self._emit(event, workflow_event(workflow, approver_id))
        return workflow

    def reject(self, workflow_id: int, rejector_id: int, reason: Optional[str]) -> ApprovalWorkflow:
        self._ensure_standalone(self.get(workflow_id).item_type)
        workflow = run_atomically(
            self.db,
            lambda db: self.apply_reject(workflow_id, rejector_id, reason),
            description="workflow rejection",
        )
        self.log_info("workflow_rejected", workflow_id=workflow.id, rejected_by=rejector_id)
        self._emit("workflow.rejected", {**workflow_event(workflow, rejector_id), "reason": workflow.rejection_reason})
        return workflow

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        dispatch(self.notifier, event_type, payload)
