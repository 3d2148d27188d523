"""
Settlement event sink
Writes in-app notifications and audit log rows for consultation and payment
transitions. Best-effort: the settlement decision is already committed when
an event is recorded, so a failure here is logged and never re-raised.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..models_notification import AuditLog, Notification

logger = logging.getLogger(__name__)


class SettlementEventSink:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: str,
        actor_id: Optional[int],
        appointment_id: Optional[int],
        details: Optional[dict] = None,
        notify_user_ids: Iterable[Optional[int]] = (),
        notification_type: str = "appointment",
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> bool:
        """
        Persist an audit row and optional notifications for one event

        Args:
            action: Audit action name, e.g. PAYMENT_CAPTURED
            actor_id: User who triggered the event (None for background jobs)
            appointment_id: Consultation the event belongs to
            details: Extra audit payload
            notify_user_ids: Users that receive an in-app notification
            notification_type: payment, appointment, emergency
            title: Notification title (notifications are skipped without one)
            message: Notification body

        Returns:
            True when the event was stored
        """
        try:
            self.db.add(
                AuditLog(
                    user_id=actor_id,
                    action=action,
                    details={"appointment_id": appointment_id, **(details or {})},
                )
            )
            if title:
                for user_id in {uid for uid in notify_user_ids if uid}:
                    self.db.add(
                        Notification(
                            user_id=user_id,
                            type=notification_type,
                            title=title,
                            message=message or title,
                            related_id=appointment_id,
                        )
                    )
            self.db.commit()
            logger.debug(f"📝 Event {action} recorded for appointment {appointment_id}")
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record event {action} for appointment {appointment_id}: {e}")
            return False
