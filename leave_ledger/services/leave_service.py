"""
Leave Service Layer

Owns the leave request lifecycle and the approval orchestration that ties the
approval workflow to the balance ledger.

Architecture:
- Router -> LeaveApprovalOrchestrator (this module) -> BalanceLedger / ApprovalWorkflowService
- An approval that completes the workflow reserves the ledger and flips the
  request to approved in ONE transaction. A failure anywhere in that unit
  leaves both the balance and the request exactly as they were.
- Notifications go out after the commit and never affect the outcome.
"""
import enum
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from leave_ledger.core.config import settings
from leave_ledger.core.exceptions import (
    AlreadyTerminalError,
    InvalidArgumentError,
    InvalidStateError,
    MissingAttachmentError,
    NotAuthorizedError,
    NotFoundError,
)
from leave_ledger.models.approval_workflow import LEAVE_ITEM_TYPE, ApprovalWorkflow, WorkflowStatus
from leave_ledger.models.leave_balance import LeaveBalance, LeaveCategory
from leave_ledger.models.leave_request import LeaveRequest, LeaveStatus
from leave_ledger.services.base import BaseService
from leave_ledger.services.collaborators import (
    AttachmentStore,
    Authorizer,
    NotificationSink,
    dispatch,
)
from leave_ledger.services.ledger import BalanceLedger, Reservation, coerce_category
from leave_ledger.services.transactions import run_atomically
from leave_ledger.services.workflow import ApprovalWorkflowService


class DecisionOutcome(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class DecisionResult:
    request: LeaveRequest
    workflow: ApprovalWorkflow
    reservation: Optional[Reservation] = None


def count_leave_days(start_date: date, end_date: date) -> int:
    """Inclusive calendar-day count."""
    if end_date < start_date:
        raise InvalidArgumentError("end_date cannot be before start_date", field="end_date")
    return (end_date - start_date).days + 1


class LeaveApprovalOrchestrator(BaseService):
    def __init__(
        self,
        db: Session,
        authorizer: Authorizer,
        attachments: AttachmentStore,
        notifier: Optional[NotificationSink] = None,
    ):
        super().__init__(db)
        self.authorizer = authorizer
        self.attachments = attachments
        self.notifier = notifier
        self.ledger = BalanceLedger(db)
        self.workflows = ApprovalWorkflowService(db, authorizer)

    # --- reads -------------------------------------------------------------

    def get_request(self, request_id: int) -> LeaveRequest:
        request = self.db.get(LeaveRequest, request_id)
        if request is None:
            raise NotFoundError("Leave request", request_id)
        return request

    def list_requests(self, employee_id: Optional[int] = None, status: Optional[str] = None) -> List[LeaveRequest]:
        query = self.db.query(LeaveRequest)
        if employee_id:
            query = query.filter(LeaveRequest.employee_id == employee_id)
        if status:
            query = query.filter(LeaveRequest.status == status)
        return query.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc()).all()

    def workflow_for(self, request_id: int) -> ApprovalWorkflow:
        workflow = self.workflows.find_for_item(LEAVE_ITEM_TYPE, request_id)
        if workflow is None:
            raise NotFoundError("Approval workflow for leave request", request_id)
        return workflow

    def get_balance(self, employee_id: int, year: int) -> LeaveBalance:
        return self.ledger.get_balance(employee_id, year)

    def seed_entitlements(self, employee_id: int, year: int, totals: Dict[str, int], actor_id: int) -> LeaveBalance:
        # Same rule as approvals: an approver of the employee, never the employee
        if not self.authorizer.can_approve(actor_id, employee_id):
            raise NotAuthorizedError(f"User {actor_id} may not set entitlements for employee {employee_id}")
        balance = self.ledger.seed_entitlements(employee_id, year, totals)
        self.log_info("entitlements_seeded", employee_id=employee_id, year=year, actor_id=actor_id)
        return balance

    # --- submission ----------------------------------------------------------

    def submit(
        self,
        employee_id: int,
        requester_id: int,
        category: Union[LeaveCategory, str],
        start_date: date,
        end_date: date,
        covering_employee_id: Optional[int] = None,
        attachment_ref: Optional[str] = None,
        attachment_filename: Optional[str] = None,
        reason: Optional[str] = None,
        approval_chain: Optional[Sequence[int]] = None,
    ) -> LeaveRequest:
        category = coerce_category(category)
        total_days = count_leave_days(start_date, end_date)

        def _submit(db):
            request = LeaveRequest(
                employee_id=employee_id,
                requester_id=requester_id,
                leave_type=category,
                start_date=start_date,
                end_date=end_date,
                total_days=total_days,
                reason=reason,
                covering_employee_id=covering_employee_id,
                attachment_ref=attachment_ref or None,
                attachment_filename=attachment_filename,
                status=LeaveStatus.PENDING.value,
                admin_processed=False,
                bdm_notified=False,
                crm_notified=False,
            )
            db.add(request)
            db.flush()
            self.workflows.build(
                LEAVE_ITEM_TYPE,
                request.id,
                requester_id,
                approval_chain=approval_chain,
                total_steps=None if approval_chain else settings.ledger.leave_approval_steps,
                employee_id=employee_id,
                item_title=f"{category.value} {start_date.isoformat()}..{end_date.isoformat()}",
            )
            return request

        request = run_atomically(self.db, _submit, description="leave submission")
        self.log_info(
            "leave_submitted",
            leave_request_id=request.id,
            employee_id=employee_id,
            category=category.value,
            total_days=total_days,
        )
        self._emit("leave.submitted", request, requester_id)
        return request

    def attach_document(self, request_id: int, attachment_ref: str, filename: Optional[str] = None) -> LeaveRequest:
        if not attachment_ref or not attachment_ref.strip():
            raise InvalidArgumentError("attachment_ref is required", field="attachment_ref")

        def _attach(db):
            request = self._lock_request(request_id)
            if request.is_terminal:
                raise AlreadyTerminalError("Leave request", request.id, request.status)
            request.attachment_ref = attachment_ref.strip()
            request.attachment_filename = filename
            db.flush()
            return request

        return run_atomically(self.db, _attach, description="attachment update")

    # --- decisions -------------------------------------------------------------

    def decide(
        self,
        request_id: int,
        approver_id: int,
        outcome: Union[DecisionOutcome, str],
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        try:
            outcome = DecisionOutcome(outcome)
        except ValueError:
            raise InvalidArgumentError(f"Unknown decision outcome '{outcome}'", field="outcome")

        request = self.get_request(request_id)
        if request.is_terminal:
            raise AlreadyTerminalError("Leave request", request.id, request.status)

        if outcome == DecisionOutcome.REJECT:
            if not reason or not reason.strip():
                raise InvalidArgumentError("A rejection reason is required", field="reason")
            result = run_atomically(
                self.db,
                lambda db: self._apply_reject(request_id, approver_id, reason.strip()),
                description="leave rejection",
            )
        else:
            if not self.authorizer.can_approve(approver_id, request.employee_id):
                raise NotAuthorizedError()
            # Synchronous, outside the unit: fail fast before the ledger is touched
            if request.leave_type == LeaveCategory.SICK and not self.attachments.has_required_attachment(request.id):
                raise MissingAttachmentError(request.id)
            result = run_atomically(
                self.db,
                lambda db: self._apply_approve(request_id, approver_id),
                description="leave approval",
            )

        self._after_decision(result, approver_id)
        return result.request

    def _apply_approve(self, request_id: int, approver_id: int) -> DecisionResult:
        request = self._lock_request(request_id)
        if request.is_terminal:
            raise AlreadyTerminalError("Leave request", request.id, request.status)

        workflow = self.workflows.apply_advance(self.workflow_for(request.id).id, approver_id)
        if workflow.status != WorkflowStatus.APPROVED.value:
            return DecisionResult(request=request, workflow=workflow)

        reservation = self.ledger.apply_reservation(
            request.employee_id, request.year, request.leave_type, request.total_days
        )
        self._mark_approved(request, approver_id)
        return DecisionResult(request=request, workflow=workflow, reservation=reservation)

    def _mark_approved(self, request: LeaveRequest, approver_id: int) -> None:
        request.status = LeaveStatus.APPROVED.value
        request.approver_id = approver_id
        request.decided_at = datetime.now(timezone.utc)
        self.db.flush()

    def _apply_reject(self, request_id: int, rejector_id: int, reason: str) -> DecisionResult:
        request = self._lock_request(request_id)
        if request.is_terminal:
            raise AlreadyTerminalError("Leave request", request.id, request.status)

        workflow = self.workflows.apply_reject(self.workflow_for(request.id).id, rejector_id, reason)
        request.status = LeaveStatus.REJECTED.value
        request.approver_id = rejector_id
        request.decided_at = datetime.now(timezone.utc)
        request.rejection_reason = reason
        self.db.flush()
        return DecisionResult(request=request, workflow=workflow)

    def _after_decision(self, result: DecisionResult, actor_id: int) -> None:
        request = result.request
        if request.status == LeaveStatus.APPROVED.value:
            self.log_info(
                "leave_approved",
                leave_request_id=request.id,
                approver_id=actor_id,
                debits=result.reservation.as_dict(),
            )
            self._emit("leave.approved", request, actor_id, debits=result.reservation.as_dict())
        elif request.status == LeaveStatus.REJECTED.value:
            self.log_info("leave_rejected", leave_request_id=request.id, rejected_by=actor_id)
            self._emit("leave.rejected", request, actor_id, reason=request.rejection_reason)
        else:
            step = result.workflow.current_step - 1
            self.log_info("leave_step_approved", leave_request_id=request.id, approver_id=actor_id, step=step)
            self._emit("leave.step_approved", request, actor_id, step=step)

    # --- administrative post-processing ------------------------------------------

    def process_administratively(
        self,
        request_id: int,
        admin_id: int,
        notify_bdm: bool = True,
        notify_crm: bool = True,
    ) -> LeaveRequest:
        """
        Flag a decided request as handled by administration and mark the
        business-development and client-relations stakeholders as notified.
        Each stakeholder flag is set independently and never cleared, so a
        repeat call leaves the request exactly as the first did.
        """

        def _process(db):
            request = self._lock_request(request_id)
            if not request.is_terminal:
                raise InvalidStateError(
                    f"Leave request {request.id} must be decided before administrative processing",
                    details={"status": request.status},
                )
            changed = False
            if not request.admin_processed:
                request.admin_processed = True
                request.admin_processed_by = admin_id
                request.admin_processed_at = datetime.now(timezone.utc)
                changed = True
            if notify_bdm and not request.bdm_notified:
                request.bdm_notified = True
                changed = True
            if notify_crm and not request.crm_notified:
                request.crm_notified = True
                changed = True
            if changed:
                db.flush()
            return request, changed

        request, changed = run_atomically(self.db, _process, description="administrative processing")
        if changed:
            self.log_info("leave_admin_processed", leave_request_id=request.id, admin_id=admin_id)
            self._emit("leave.admin_processed", request, admin_id)
        return request

    # --- helpers ------------------------------------------------------------------

    def _lock_request(self, request_id: int) -> LeaveRequest:
        request = self.db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise NotFoundError("Leave request", request_id)
        return request

    def _emit(self, event_type: str, request: LeaveRequest, actor_id: Optional[int], **extra: Any) -> None:
        payload = {
            "entity_type": LEAVE_ITEM_TYPE,
            "entity_id": request.id,
            "employee_id": request.employee_id,
            "actor_id": actor_id,
            "leave_type": request.leave_type.value,
            "total_days": request.total_days,
            "year": request.year,
            "status": request.status,
            **extra,
        }
        dispatch(self.notifier, event_type, payload)
