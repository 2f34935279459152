"""
Notification Sink
Persisted alerts plus best-effort real-time push, addressed by user id and by
an appointment "room". Constructed once at process start and injected into
every component that fans out side effects.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ...models import Notification
from .broadcaster import Broadcaster

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"


class NotificationSink(ABC):
    """Contract the consultation core drives for alerts and live updates"""

    @abstractmethod
    def notify(
        self,
        user_id: Any,
        title: str,
        message: str,
        severity: str = "info",
        appointment_id: Optional[int] = None,
    ) -> None:
        """Persist an alert for the user and push it in real time"""

    @abstractmethod
    def push_to_user(self, user_id: Any, event: str, payload: dict) -> None:
        """Real-time only, no persistence"""

    @abstractmethod
    def broadcast_to_room(self, appointment_id: Any, event: str, payload: dict) -> None:
        """Real-time only, to everyone observing the appointment room"""


class DatabaseNotificationSink(NotificationSink):
    """Stores alerts in the notifications table and pushes through a broadcaster"""

    def __init__(self, session_factory, broadcaster: Broadcaster):
        self.session_factory = session_factory
        self.broadcaster = broadcaster

    def notify(self, user_id, title, message, severity="info", appointment_id=None) -> None:
        db = self.session_factory()
        try:
            notification = Notification(
                user_id=str(user_id),
                title=title,
                message=message,
                severity=severity,
                appointment_id=appointment_id,
                is_read=False,
            )
            db.add(notification)
            db.commit()
            db.refresh(notification)
            payload = {
                "id": notification.id,
                "title": title,
                "message": message,
                "severity": severity,
                "appointmentId": appointment_id,
            }
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to persist notification for user {user_id}: {e}")
            raise
        finally:
            db.close()

        self.push_to_user(user_id, NOTIFICATION_EVENT, payload)

    def push_to_user(self, user_id, event, payload) -> None:
        try:
            self.broadcaster.emit_to_user(str(user_id), event, payload)
        except Exception as e:
            logger.warning(f"⚠️ Real-time push '{event}' to user {user_id} failed: {e}")

    def broadcast_to_room(self, appointment_id, event, payload) -> None:
        try:
            self.broadcaster.emit_to_room(str(appointment_id), event, payload)
        except Exception as e:
            logger.warning(f"⚠️ Room broadcast '{event}' for appointment {appointment_id} failed: {e}")


def notify_quietly(sink: NotificationSink, user_id, title, message, severity="info", appointment_id=None) -> bool:
    """Send one alert; a failure is logged and reported, never raised"""
    try:
        sink.notify(user_id, title, message, severity=severity, appointment_id=appointment_id)
        return True
    except Exception as e:
        logger.error(f"❌ Failed to notify user {user_id} ('{title}'): {e}")
        return False
