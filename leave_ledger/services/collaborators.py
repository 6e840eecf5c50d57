"""
Narrow contracts for systems the ledger core consults but does not own,
plus the default implementations wired into the HTTP app.
"""
import logging
from typing import Any, Dict, Iterable, Optional, Protocol

from sqlalchemy.orm import Session, sessionmaker

from leave_ledger.models.leave_request import LeaveRequest
from leave_ledger.services.audit import AuditService
from leave_ledger.services.notification import NotificationService

logger = logging.getLogger(__name__)


class Authorizer(Protocol):
    def can_approve(self, approver_id: int, employee_id: int) -> bool: ...


class AttachmentStore(Protocol):
    def has_required_attachment(self, request_id: int) -> bool: ...


class NotificationSink(Protocol):
    def notify(self, event_type: str, payload: Dict[str, Any]) -> None: ...


class ConfiguredAuthorizer:
    """Approvers come from LEAVE_APPROVER_IDS; nobody approves their own leave."""

    def __init__(self, approver_ids: Iterable[int]):
        self.approver_ids = frozenset(approver_ids)

    def can_approve(self, approver_id: int, employee_id: int) -> bool:
        return approver_id in self.approver_ids and approver_id != employee_id


class RequestAttachmentStore:
    """A request satisfies the certificate rule once it carries an attachment reference."""

    def __init__(self, db: Session):
        self.db = db

    def has_required_attachment(self, request_id: int) -> bool:
        attachment_ref = self.db.query(LeaveRequest.attachment_ref).filter(
            LeaveRequest.id == request_id
        ).scalar()
        return bool(attachment_ref)


# event type -> (notification title, notification type)
_EVENT_TITLES = {
    "leave.submitted": ("Leave Submitted", "info"),
    "leave.step_approved": ("Leave Update", "info"),
    "leave.approved": ("Leave Approved", "success"),
    "leave.rejected": ("Leave Rejected", "error"),
    "leave.admin_processed": ("Leave Processed", "info"),
    "workflow.advanced": ("Approval Update", "info"),
    "workflow.approved": ("Approval Complete", "success"),
    "workflow.rejected": ("Approval Rejected", "error"),
}


class AuditNotificationSink:
    """
    Records each committed transition as an audit entry and a user notification.

    Runs in its own session so a failure here can never touch the decision's
    transaction, which has already committed by the time this is called.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self.session_factory() as db:
            AuditService(db).log_action(
                action=event_type,
                entity_type=payload.get("entity_type", "leave_request"),
                entity_id=payload.get("entity_id"),
                user_id=payload.get("actor_id"),
                details=payload,
            )
            recipient = payload.get("employee_id")
            if recipient is not None:
                title, kind = _EVENT_TITLES.get(event_type, ("Update", "info"))
                NotificationService(db).create_notification(
                    user_id=recipient,
                    event_type=event_type,
                    title=title,
                    message=_describe(event_type, payload),
                    type=kind,
                )
            db.commit()


def _describe(event_type: str, payload: Dict[str, Any]) -> str:
    category = payload.get("leave_type", "leave")
    days: Optional[int] = payload.get("total_days")
    if event_type == "leave.approved":
        return f"Your {category} request for {days} days has been APPROVED."
    if event_type == "leave.rejected":
        return f"Your {category} request has been REJECTED. Reason: {payload.get('reason')}"
    if event_type == "leave.step_approved":
        return f"Your {category} request was approved at step {payload.get('step')} and is pending the next approval."
    if event_type == "leave.submitted":
        return f"Your {category} request for {days} days was submitted."
    return f"{event_type} recorded."


def dispatch(notifier: Optional[NotificationSink], event_type: str, payload: Dict[str, Any]) -> None:
    """Fire-and-forget: a failed notification never undoes a committed transition."""
    if notifier is None:
        return
    try:
        notifier.notify(event_type, payload)
    except Exception as e:
        logger.warning(f"Notification failed for {event_type}: {e}", exc_info=True)
