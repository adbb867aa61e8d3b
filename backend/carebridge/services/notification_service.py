# backend/carebridge/services/notification_service.py
"""
In-app notifications.

Delivery is best effort: a failure to store a notification is logged and
swallowed so it can never undo the business operation that triggered it.
"""

import logging
from typing import Any, Dict, List, Optional

from ..database import SessionFactory, SessionLocal, get_db_session
from ..models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or SessionLocal
        self.logger = logging.getLogger(self.__class__.__name__)

    def notify(self, recipient_id: str, type: str, payload: Dict[str, Any]) -> None:
        if not recipient_id:
            return
        try:
            with get_db_session(self._session_factory) as db:
                db.add(Notification(recipient_id=recipient_id, type=type, payload=payload))
        except Exception as exc:
            self.logger.warning(
                "Failed to store notification",
                extra={"recipient_id": recipient_id, "notification_type": type, "error": str(exc)},
            )

    def list_for_recipient(self, recipient_id: str, limit: int = 50) -> List[Notification]:
        with get_db_session(self._session_factory) as db:
            return (
                db.query(Notification)
                .filter(Notification.recipient_id == recipient_id)
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .limit(limit)
                .all()
            )
