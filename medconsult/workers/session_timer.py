"""
Session Timer
Moves live consultations to WAITING_FOR_DOCTOR once their scheduled end has
passed. Sessions the doctor has extended are never expired automatically.
"""

import logging
from datetime import datetime
from typing import Optional

from ..constants import TIMED_SESSION_STATUSES, SessionStatus
from ..domain.appointments.repository import AppointmentRepository
from ..domain.appointments.session_service import SessionService
from ..domain.notifications.chat import ChatCollaborator
from ..domain.notifications.service import NotificationSink
from ..shared.timeutils import local_now, session_end_instant

logger = logging.getLogger(__name__)


def run_session_timer_tick(
    session_factory,
    notifications: NotificationSink,
    chat: Optional[ChatCollaborator] = None,
    now: Optional[datetime] = None,
) -> dict:
    """One scan of in-progress sessions; each appointment is handled on its own"""
    logger.debug("🔄 Checking in-progress sessions...")
    now = now or local_now()
    summary = {"checked": 0, "expired": 0, "failed": 0}

    db = session_factory()
    try:
        appointments = AppointmentRepository.list_in_session(db, TIMED_SESSION_STATUSES)
        service = SessionService(db, notifications, chat)

        for appointment in appointments:
            appointment_id = appointment.id
            summary["checked"] += 1
            try:
                if appointment.session_status != SessionStatus.ACTIVE.value:
                    continue

                end = session_end_instant(appointment.appointment_date, appointment.appointment_time)
                if end is None:
                    logger.warning(
                        f"⚠️ Appointment {appointment.id} has an unparseable time range '{appointment.appointment_time}'"
                    )
                    continue

                if now > end and service.expire_session(appointment_id):
                    summary["expired"] += 1
                    logger.info(f"⏰ Session of appointment {appointment_id} reached its end time")

            except Exception as e:
                db.rollback()
                summary["failed"] += 1
                logger.error(f"❌ Error checking session of appointment {appointment_id}: {e}")

        if summary["expired"] or summary["failed"]:
            logger.info(f"✅ Session timer tick: {summary}")
    finally:
        db.close()

    return summary
