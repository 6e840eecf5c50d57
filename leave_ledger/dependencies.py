"""
FastAPI dependencies for the ledger core.

Collaborators are resolved here so tests (and deployments) can swap them via
``app.dependency_overrides`` without touching the services.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from leave_ledger.core.config import settings
from leave_ledger.database import SessionLocal, get_db
from leave_ledger.services.collaborators import (
    AttachmentStore,
    Authorizer,
    AuditNotificationSink,
    ConfiguredAuthorizer,
    NotificationSink,
    RequestAttachmentStore,
)
from leave_ledger.services.leave_service import LeaveApprovalOrchestrator
from leave_ledger.services.workflow import ApprovalWorkflowService

logger = logging.getLogger(__name__)


def get_actor_id(x_user_id: Optional[str] = Header(default=None, alias=settings.actor_header)) -> int:
    """
    Identity is established upstream; this only reads the forwarded user id.
    """
    if not x_user_id:
        logger.warning("Request rejected: missing actor header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.actor_header} header",
        )
    try:
        actor_id = int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {settings.actor_header} header",
        )
    if actor_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {settings.actor_header} header",
        )
    return actor_id


def get_authorizer() -> Authorizer:
    return ConfiguredAuthorizer(settings.ledger.approver_ids)


def get_attachment_store(db: Session = Depends(get_db)) -> AttachmentStore:
    return RequestAttachmentStore(db)


def get_notification_sink() -> NotificationSink:
    return AuditNotificationSink(SessionLocal)


def get_orchestrator(
    db: Session = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    attachments: AttachmentStore = Depends(get_attachment_store),
    notifier: NotificationSink = Depends(get_notification_sink),
) -> LeaveApprovalOrchestrator:
    return LeaveApprovalOrchestrator(db, authorizer, attachments, notifier)


def get_workflow_service(
    db: Session = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    notifier: NotificationSink = Depends(get_notification_sink),
) -> ApprovalWorkflowService:
    return ApprovalWorkflowService(db, authorizer, notifier)


__all__ = [
    "get_actor_id",
    "get_authorizer",
    "get_attachment_store",
    "get_notification_sink",
    "get_orchestrator",
    "get_workflow_service",
]
