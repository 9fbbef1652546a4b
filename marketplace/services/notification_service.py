"""
Notification Service

Persistent per-account notifications (payment results, admin actions).
Records are created by other services and only ever mutated by the read
toggle.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketplace.errors import NotFound
from marketplace.models import Notification, utcnow
from marketplace.observability import increment_counter, record_event


class NotificationType:
    PAYMENT_SUCCESS = "payment_success"
    PRODUCT_DELETED = "product_deleted_by_admin"


class NotificationService:
    def __init__(self, db_session: Session, default_limit: int = 20) -> None:
        self.db = db_session
        self.default_limit = default_limit
        self.logger = logging.getLogger(__name__)

    def add_notification(
        self,
        account_id: int,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> Notification:
        """
        Create a notification for ``account_id``.

        With ``commit=False`` the row joins the caller's unit of work so it
        lands atomically with the state change it describes.
        """
        notification = Notification(
            accountID=account_id,
            notification_type=notification_type,
            title=title,
            message=message,
            payload=payload or {},
            read=False,
        )
        self.db.add(notification)
        if commit:
            self.db.commit()
        else:
            self.db.flush()

        increment_counter("notifications_created_total", labels={"type": notification_type})
        record_event(
            "notification_created",
            {"account_id": account_id, "type": notification_type, "notification_id": notification.notificationID},
        )
        self.logger.info(
            "Notification created for account %d: %s",
            account_id,
            title,
        )
        return notification

    def get_notifications(
        self,
        account_id: int,
        unread_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.accountID == account_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        return (
            query.order_by(Notification.created_at.desc(), Notification.notificationID.desc())
            .limit(limit or self.default_limit)
            .all()
        )

    def get_unread_count(self, account_id: int) -> int:
        return (
            self.db.query(Notification)
            .filter(Notification.accountID == account_id, Notification.read.is_(False))
            .count()
        )

    def mark_as_read(self, account_id: int, notification_id: int) -> Notification:
        notification = (
            self.db.query(Notification)
            .filter(Notification.notificationID == notification_id, Notification.accountID == account_id)
            .first()
        )
        # Other accounts' notifications are indistinguishable from missing ones
        if notification is None:
            raise NotFound("Notification not found.")
        if notification.mark_read():
            self.db.commit()
        return notification

    def mark_all_as_read(self, account_id: int) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.accountID == account_id, Notification.read.is_(False))
            .values(read=True, read_at=utcnow())
        )
        self.db.commit()
        return result.rowcount or 0

    @staticmethod
    def to_dict(notification: Notification) -> Dict[str, Any]:
        return {
            "id": notification.notificationID,
            "type": notification.notification_type,
            "title": notification.title,
            "message": notification.message,
            "payload": notification.payload or {},
            "read": bool(notification.read),
            "read_at": notification.read_at.isoformat() if notification.read_at else None,
            "created_at": notification.created_at.isoformat() if notification.created_at else None,
        }
