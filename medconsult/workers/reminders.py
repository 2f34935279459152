"""
Appointment Reminders and Unpaid Booking Cleanup

Reminders: "starting soon" about five minutes ahead and "ready now" at start
time, each sent at most once per appointment.
Cleanup: unpaid pending bookings older than the grace window are deleted and
their slots freed.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..config import UNPAID_BOOKING_GRACE_MINUTES
from ..constants import REMINDER_EVENT
from ..database import UnitOfWork
from ..domain.appointments.repository import AppointmentRepository
from ..domain.appointments.service import release_appointment_slots
from ..domain.notifications.service import NotificationSink, notify_quietly
from ..models import Appointment
from ..shared.timeutils import local_now, minutes_between, session_start_instant, utcnow

logger = logging.getLogger(__name__)

# Minutes until start
STARTING_SOON_WINDOW = (4, 6)  # (low, high]
READY_NOW_WINDOW = (-2, 0)  # [low, high]


def run_reminder_tick(session_factory, notifications: NotificationSink, now: Optional[datetime] = None) -> dict:
    """Scan today's confirmed appointments and emit due reminders"""
    logger.debug("🔄 Checking appointment reminders...")
    now = now or local_now()
    summary = {"checked": 0, "starting_soon": 0, "ready_now": 0, "failed": 0}

    db = session_factory()
    try:
        appointments = AppointmentRepository.list_due_for_reminder(db, now.date())

        for appointment in appointments:
            appointment_id = appointment.id
            summary["checked"] += 1
            try:
                start = session_start_instant(appointment.appointment_date, appointment.appointment_time)
                if start is None:
                    continue
                minutes_until = minutes_between(start, now)

                if (
                    STARTING_SOON_WINDOW[0] < minutes_until <= STARTING_SOON_WINDOW[1]
                    and not appointment.reminder_sent
                ):
                    _send(db, notifications, appointment, "reminder_sent", "Appointment Starting Soon",
                          f"Your appointment {appointment.custom_id} starts in {round(minutes_until)} minutes "
                          f"({appointment.appointment_time})", "starting_soon")
                    summary["starting_soon"] += 1

                elif (
                    READY_NOW_WINDOW[0] <= minutes_until <= READY_NOW_WINDOW[1]
                    and not appointment.start_notification_sent
                ):
                    _send(db, notifications, appointment, "start_notification_sent", "Appointment Ready",
                          f"Your appointment {appointment.custom_id} is starting now. Please join the consultation",
                          "ready_now")
                    summary["ready_now"] += 1

            except Exception as e:
                db.rollback()
                summary["failed"] += 1
                logger.error(f"❌ Error sending reminder for appointment {appointment_id}: {e}")

        if summary["starting_soon"] or summary["ready_now"] or summary["failed"]:
            logger.info(f"✅ Reminder tick: {summary}")
    finally:
        db.close()

    return summary


def _send(db, notifications: NotificationSink, appointment: Appointment, flag: str, title: str, message: str, kind: str):
    """Mark the flag sticky first; alerts go out once the flag is committed"""
    payload = {
        "appointmentId": appointment.id,
        "type": kind,
        "appointmentTime": appointment.appointment_time,
        "message": message,
    }
    recipients = (appointment.patient_id, appointment.doctor.user_id)

    with UnitOfWork(db) as uow:
        AppointmentRepository.update(db, appointment, **{flag: True})
        for user_id in recipients:
            uow.after_commit(notify_quietly, notifications, user_id, title, message, "info", appointment.id)
            uow.after_commit(notifications.push_to_user, user_id, REMINDER_EVENT, dict(payload))

    logger.info(f"🔔 {title} sent for appointment {appointment.id}")


def run_cleanup_tick(session_factory, now: Optional[datetime] = None) -> dict:
    """Delete unpaid pending bookings older than the grace window and free their slots"""
    logger.debug("🔄 Cleaning up abandoned unpaid bookings...")
    cutoff = (now or utcnow()) - timedelta(minutes=UNPAID_BOOKING_GRACE_MINUTES)
    summary = {"deleted": 0, "failed": 0}

    db = session_factory()
    try:
        appointments = AppointmentRepository.list_abandoned_unpaid(db, cutoff)
        if not appointments:
            return summary

        for appointment in appointments:
            appointment_id = appointment.id
            try:
                with UnitOfWork(db):
                    release_appointment_slots(db, appointment)
                    AppointmentRepository.delete(db, appointment)
                summary["deleted"] += 1
                logger.info(f"🗑️ Deleted abandoned booking {appointment_id} and released its slot")
            except Exception as e:
                summary["failed"] += 1
                logger.error(f"❌ Error cleaning up appointment {appointment_id}: {e}")

        logger.info(f"✅ Cleanup tick: {summary}")
    finally:
        db.close()

    return summary
