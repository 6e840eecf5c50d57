from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from leave_ledger.database import get_db
from leave_ledger.dependencies import get_actor_id
from leave_ledger.services.notification import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])

class NotificationResponse(BaseModel):
    id: int
    event_type: str
    title: str
    message: str
    type: str
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

@router.get("/", response_model=List[NotificationResponse])
def get_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    actor_id: int = Depends(get_actor_id)
):
    return NotificationService(db).for_user(actor_id, unread_only=unread_only)
