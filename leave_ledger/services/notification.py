from leave_ledger.models.notification import Notification
from leave_ledger.services.base import BaseService

class NotificationService(BaseService):
    def create_notification(
        self,
        user_id: int,
        event_type: str,
        title: str,
        message: str,
        type: str = "info",
    ) -> Notification:
        """
        Internal utility for creating notifications.
        Flushes only; the caller commits.
        """
        notification = Notification(
            user_id=user_id,
            event_type=event_type,
            title=title,
            message=message,
            type=type,
        )
        self.db.add(notification)
        self.db.flush()
        return notification

    def for_user(self, user_id: int, unread_only: bool = False):
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)  # noqa: E712
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(50).all()
