import logging
import pytest
from datetime import timedelta
from sqlalchemy.orm.exc import StaleDataError

from leave_ledger.core.config import settings
from leave_ledger.core.exceptions import (
    AlreadyTerminalError,
    InvalidArgumentError,
    InvalidStateError,
    MissingAttachmentError,
    NotAuthorizedError,
    NotFoundError,
    ReservationConflictError,
)
from leave_ledger.models.approval_workflow import WorkflowStatus
from leave_ledger.models.leave_balance import LeaveBalance, LeaveCategory, LeavePool
from leave_ledger.models.leave_request import LeaveRequest, LeaveStatus
from leave_ledger.services.collaborators import RequestAttachmentStore
from leave_ledger.services.leave_service import LeaveApprovalOrchestrator, count_leave_days
from leave_ledger.services.ledger import BalanceLedger

from tests.conftest import (
    DIRECTOR_ID,
    EMPLOYEE_ID,
    LEAVE_START,
    MANAGER_ID,
    OUTSIDER_ID,
    RecordingSink,
)

YEAR = LEAVE_START.year


def _submit(orchestrator, category=LeaveCategory.CASUAL, days=3, **kwargs):
    return orchestrator.submit(
        employee_id=EMPLOYEE_ID,
        requester_id=EMPLOYEE_ID,
        category=category,
        start_date=LEAVE_START,
        end_date=LEAVE_START + timedelta(days=days - 1),
        **kwargs,
    )


def _committed_state(session_factory, request_id):
    """Re-read the request and balance through a fresh session."""
    with session_factory() as session:
        request = session.get(LeaveRequest, request_id)
        balance = session.query(LeaveBalance).filter_by(employee_id=EMPLOYEE_ID, year=YEAR).one_or_none()
        used = {pool: balance.used(pool) for pool in LeavePool} if balance else None
        return request.status, used


def test_count_leave_days_is_inclusive():
    assert count_leave_days(LEAVE_START, LEAVE_START) == 1
    assert count_leave_days(LEAVE_START, LEAVE_START + timedelta(days=4)) == 5
    with pytest.raises(InvalidArgumentError):
        count_leave_days(LEAVE_START, LEAVE_START - timedelta(days=1))

def test_submit_creates_pending_request_and_workflow(orchestrator, notifier):
    request = _submit(orchestrator, days=4, reason="Family trip", covering_employee_id=2)

    assert request.status == LeaveStatus.PENDING.value
    assert request.total_days == 4
    assert request.covering_employee_id == 2
    workflow = orchestrator.workflow_for(request.id)
    assert workflow.status == WorkflowStatus.PENDING.value
    assert workflow.total_steps == settings.ledger.leave_approval_steps
    assert notifier.types() == ["leave.submitted"]

def test_submit_rejects_inverted_dates_and_unknown_category(orchestrator, db_session):
    with pytest.raises(InvalidArgumentError):
        orchestrator.submit(EMPLOYEE_ID, EMPLOYEE_ID, "casual_leave", LEAVE_START, LEAVE_START - timedelta(days=2))
    with pytest.raises(InvalidArgumentError):
        orchestrator.submit(EMPLOYEE_ID, EMPLOYEE_ID, "gardening_leave", LEAVE_START, LEAVE_START)
    assert db_session.query(LeaveRequest).count() == 0

def test_approval_reserves_the_ledger(orchestrator, notifier):
    request = _submit(orchestrator, days=3)

    request = orchestrator.decide(request.id, MANAGER_ID, "approve")

    assert request.status == LeaveStatus.APPROVED.value
    assert request.approver_id == MANAGER_ID
    assert request.decided_at is not None
    balance = orchestrator.get_balance(EMPLOYEE_ID, YEAR)
    assert balance.casual_paid_used == 3
    assert orchestrator.workflow_for(request.id).status == WorkflowStatus.APPROVED.value

    event_type, payload = notifier.events[-1]
    assert event_type == "leave.approved"
    assert payload["debits"] == {"casual_paid": 3}

def test_approval_overflows_sick_leave(orchestrator, ledger):
    ledger.seed_entitlements(EMPLOYEE_ID, YEAR, {"sick_paid": 10})
    ledger.reserve(EMPLOYEE_ID, YEAR, LeaveCategory.SICK, 8)
    request = _submit(orchestrator, category=LeaveCategory.SICK, days=5, attachment_ref="cert-17.pdf")

    orchestrator.decide(request.id, MANAGER_ID, "approve")

    balance = orchestrator.get_balance(EMPLOYEE_ID, YEAR)
    assert balance.sick_paid_used == 10
    assert balance.sick_unpaid_used == 3

def test_sick_leave_without_attachment_is_refused(orchestrator, session_factory):
    request = _submit(orchestrator, category=LeaveCategory.SICK, days=2)

    with pytest.raises(MissingAttachmentError):
        orchestrator.decide(request.id, MANAGER_ID, "approve")

    status, used = _committed_state(session_factory, request.id)
    assert status == LeaveStatus.PENDING.value
    assert used is None

def test_attachment_added_later_unblocks_approval(orchestrator):
    request = _submit(orchestrator, category=LeaveCategory.SICK, days=2)
    orchestrator.attach_document(request.id, "uploads/cert.pdf", "cert.pdf")

    request = orchestrator.decide(request.id, MANAGER_ID, "approve")
    assert request.status == LeaveStatus.APPROVED.value
    assert request.attachment_filename == "cert.pdf"

def test_attachment_rules(orchestrator):
    request = _submit(orchestrator)
    with pytest.raises(InvalidArgumentError):
        orchestrator.attach_document(request.id, "   ")

    orchestrator.decide(request.id, MANAGER_ID, "approve")
    with pytest.raises(AlreadyTerminalError):
        orchestrator.attach_document(request.id, "late.pdf")

def test_unauthorized_approver_changes_nothing(orchestrator, session_factory):
    request = _submit(orchestrator)
    with pytest.raises(NotAuthorizedError):
        orchestrator.decide(request.id, OUTSIDER_ID, "approve")
    with pytest.raises(NotAuthorizedError):
        orchestrator.decide(request.id, EMPLOYEE_ID, "approve")
    assert _committed_state(session_factory, request.id) == (LeaveStatus.PENDING.value, None)

def test_rejection_requires_reason_and_never_touches_ledger(orchestrator, notifier, session_factory):
    request = _submit(orchestrator)
    with pytest.raises(InvalidArgumentError):
        orchestrator.decide(request.id, MANAGER_ID, "reject", reason="  ")

    request = orchestrator.decide(request.id, MANAGER_ID, "reject", reason="Peak season")

    assert request.status == LeaveStatus.REJECTED.value
    assert request.rejection_reason == "Peak season"
    assert orchestrator.workflow_for(request.id).status == WorkflowStatus.REJECTED.value
    assert _committed_state(session_factory, request.id)[1] is None
    assert notifier.types()[-1] == "leave.rejected"

def test_unknown_outcome_and_request(orchestrator):
    request = _submit(orchestrator)
    with pytest.raises(InvalidArgumentError):
        orchestrator.decide(request.id, MANAGER_ID, "maybe")
    with pytest.raises(NotFoundError):
        orchestrator.decide(9999, MANAGER_ID, "approve")

@pytest.mark.parametrize("first, second", [
    ("approve", "approve"),
    ("approve", "reject"),
    ("reject", "approve"),
])
def test_decided_request_cannot_be_decided_again(orchestrator, first, second):
    request = _submit(orchestrator, days=2)
    orchestrator.decide(request.id, MANAGER_ID, first, reason="no")
    used_before = orchestrator.get_balance(EMPLOYEE_ID, YEAR).casual_paid_used

    with pytest.raises(InvalidStateError):
        orchestrator.decide(request.id, DIRECTOR_ID, second, reason="again")

    assert orchestrator.get_balance(EMPLOYEE_ID, YEAR).casual_paid_used == used_before

def test_intermediate_step_leaves_request_pending(orchestrator, notifier):
    request = _submit(orchestrator, days=2, approval_chain=[MANAGER_ID, DIRECTOR_ID])

    request = orchestrator.decide(request.id, MANAGER_ID, "approve")
    assert request.status == LeaveStatus.PENDING.value
    assert orchestrator.get_balance(EMPLOYEE_ID, YEAR).casual_paid_used == 0
    assert notifier.types()[-1] == "leave.step_approved"

    request = orchestrator.decide(request.id, DIRECTOR_ID, "approve")
    assert request.status == LeaveStatus.APPROVED.value
    assert orchestrator.get_balance(EMPLOYEE_ID, YEAR).casual_paid_used == 2

def test_failure_after_reservation_rolls_everything_back(orchestrator, session_factory, monkeypatch):
    request = _submit(orchestrator, days=3)

    def explode(self, request, approver_id):
        raise RuntimeError("disk full")

    monkeypatch.setattr(LeaveApprovalOrchestrator, "_mark_approved", explode)
    with pytest.raises(RuntimeError):
        orchestrator.decide(request.id, MANAGER_ID, "approve")

    assert _committed_state(session_factory, request.id) == (LeaveStatus.PENDING.value, None)
    with session_factory() as session:
        workflow = LeaveApprovalOrchestrator(session, None, None).workflow_for(request.id)
        assert workflow.status == WorkflowStatus.PENDING.value
        assert workflow.approved_by == []

def test_unresolved_conflict_surfaces_and_leaves_request_pending(orchestrator, session_factory, monkeypatch):
    request = _submit(orchestrator, days=1)
    attempts = []

    def always_stale(self, *args, **kwargs):
        attempts.append(1)
        raise StaleDataError("balance row changed underneath us")

    monkeypatch.setattr(settings.ledger, "max_attempts", 3)
    monkeypatch.setattr(BalanceLedger, "apply_reservation", always_stale)

    with pytest.raises(ReservationConflictError) as excinfo:
        orchestrator.decide(request.id, MANAGER_ID, "approve")

    assert excinfo.value.details["retryable"] is True
    assert len(attempts) == 3
    assert _committed_state(session_factory, request.id) == (LeaveStatus.PENDING.value, None)

def test_failing_notifier_does_not_undo_decision(db_session, authorizer, session_factory):
    orchestrator = LeaveApprovalOrchestrator(
        db_session, authorizer, RequestAttachmentStore(db_session),
        RecordingSink(fail=True),
    )
    request = _submit(orchestrator, days=1)
    orchestrator.decide(request.id, MANAGER_ID, "approve")

    status, used = _committed_state(session_factory, request.id)
    assert status == LeaveStatus.APPROVED.value
    assert used[LeavePool.CASUAL_PAID] == 1

def test_administrative_processing_is_idempotent(orchestrator, notifier):
    request = _submit(orchestrator)
    with pytest.raises(InvalidStateError):
        orchestrator.process_administratively(request.id, DIRECTOR_ID)

    orchestrator.decide(request.id, MANAGER_ID, "approve")
    first = orchestrator.process_administratively(request.id, DIRECTOR_ID)
    snapshot = (first.admin_processed, first.admin_processed_by, first.admin_processed_at,
                first.bdm_notified, first.crm_notified)

    second = orchestrator.process_administratively(request.id, MANAGER_ID)
    assert (second.admin_processed, second.admin_processed_by, second.admin_processed_at,
            second.bdm_notified, second.crm_notified) == snapshot
    assert snapshot[0] is True and snapshot[1] == DIRECTOR_ID
    assert snapshot[3] is True and snapshot[4] is True
    assert notifier.types().count("leave.admin_processed") == 1

def test_list_requests_filters(orchestrator):
    first = _submit(orchestrator, days=1)
    _submit(orchestrator, days=2)
    orchestrator.decide(first.id, MANAGER_ID, "approve")

    assert len(orchestrator.list_requests(employee_id=EMPLOYEE_ID)) == 2
    approved = orchestrator.list_requests(status=LeaveStatus.APPROVED.value)
    assert [r.id for r in approved] == [first.id]
    assert orchestrator.list_requests(employee_id=OUTSIDER_ID) == []

def test_leave_workflow_moves_only_through_decide(orchestrator):
    request = _submit(orchestrator, days=2)
    workflow = orchestrator.workflow_for(request.id)

    with pytest.raises(InvalidStateError):
        orchestrator.workflows.advance(workflow.id, MANAGER_ID)
    with pytest.raises(InvalidStateError):
        orchestrator.workflows.reject(workflow.id, MANAGER_ID, "not now")
    with pytest.raises(InvalidStateError):
        orchestrator.workflows.create(workflow.item_type, request.id + 1, EMPLOYEE_ID, total_steps=1)

    workflow = orchestrator.workflow_for(request.id)
    assert workflow.status == WorkflowStatus.PENDING.value
    assert workflow.approved_by == []
    assert orchestrator.get_request(request.id).status == LeaveStatus.PENDING.value

    request = orchestrator.decide(request.id, MANAGER_ID, "approve")
    assert request.status == LeaveStatus.APPROVED.value
    assert orchestrator.get_balance(EMPLOYEE_ID, YEAR).casual_paid_used == 2

def test_unnamed_steps_need_distinct_approvers(orchestrator, monkeypatch):
    monkeypatch.setattr(settings.ledger, "leave_approval_steps", 2)
    request = _submit(orchestrator, days=2)
    orchestrator.decide(request.id, MANAGER_ID, "approve")

    with pytest.raises(NotAuthorizedError):
        orchestrator.decide(request.id, MANAGER_ID, "approve")
    assert orchestrator.get_request(request.id).status == LeaveStatus.PENDING.value
    assert orchestrator.get_balance(EMPLOYEE_ID, YEAR).casual_paid_used == 0

    request = orchestrator.decide(request.id, DIRECTOR_ID, "approve")
    assert request.status == LeaveStatus.APPROVED.value
    approvers = [entry["approver_id"] for entry in orchestrator.workflow_for(request.id).approved_by]
    assert approvers == [MANAGER_ID, DIRECTOR_ID]

def test_stakeholder_flags_are_set_independently(orchestrator, notifier):
    request = _submit(orchestrator)
    orchestrator.decide(request.id, MANAGER_ID, "approve")

    request = orchestrator.process_administratively(request.id, DIRECTOR_ID, notify_crm=False)
    assert request.admin_processed is True
    assert request.bdm_notified is True
    assert request.crm_notified is False

    request = orchestrator.process_administratively(request.id, DIRECTOR_ID, notify_bdm=False)
    assert request.bdm_notified is True
    assert request.crm_notified is True
    assert notifier.types().count("leave.admin_processed") == 2

def test_seeding_entitlements_requires_an_approver(orchestrator):
    with pytest.raises(NotAuthorizedError):
        orchestrator.seed_entitlements(EMPLOYEE_ID, YEAR, {"sick_paid": 30}, EMPLOYEE_ID)
    with pytest.raises(NotAuthorizedError):
        orchestrator.seed_entitlements(EMPLOYEE_ID, YEAR, {"sick_paid": 30}, OUTSIDER_ID)
    assert orchestrator.get_balance(EMPLOYEE_ID, YEAR).sick_paid_total == settings.ledger.sick_paid_days

    balance = orchestrator.seed_entitlements(EMPLOYEE_ID, YEAR, {"sick_paid": 30}, DIRECTOR_ID)
    assert balance.sick_paid_total == 30

def test_decision_logs_carry_the_leave_request_id(orchestrator, caplog):
    request = _submit(orchestrator)
    with caplog.at_level(logging.INFO, logger="leave_ledger.services.leave_service"):
        orchestrator.decide(request.id, MANAGER_ID, "approve")

    record = next(r for r in caplog.records if r.getMessage() == "leave_approved")
    assert record.leave_request_id == request.id
    assert not hasattr(record, "request_id")
