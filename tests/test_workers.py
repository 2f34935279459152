from datetime import timedelta

import pytest

from medconsult.constants import REMINDER_EVENT, SESSION_STATUS_EVENT
from medconsult.domain.appointments.schemas import RescheduleRequest
from medconsult.domain.appointments.session_service import SessionService
from medconsult.models import Appointment
from medconsult.shared.timeutils import local_instant, utcnow
from medconsult.workers.reminders import run_cleanup_tick, run_reminder_tick
from medconsult.workers.session_timer import run_session_timer_tick

from .conftest import book, confirmed_booking, doctor_actor, pay, patient_actor, slot_for


@pytest.fixture
def live_session(appointment_service, session_service, db, schedule, patient, doctor, booking_day):
    appointment = confirmed_booking(appointment_service, db, patient, doctor, booking_day)
    session_service.update_session_status(appointment.id, doctor_actor(doctor), "ACTIVE")
    return appointment


# --- Session timer ---------------------------------------------------------


def test_timer_moves_overdue_session_to_waiting(session_factory, notifications, chat, db, live_session, booking_day):
    result = run_session_timer_tick(session_factory, notifications, chat, now=local_instant(booking_day, "10:31"))

    assert result == {"checked": 1, "expired": 1, "failed": 0}
    db.expire_all()
    assert db.get(Appointment, live_session.id).session_status == "WAITING_FOR_DOCTOR"
    assert notifications.broadcasts[-1] == (
        str(live_session.id),
        SESSION_STATUS_EVENT,
        {
            "appointmentId": live_session.id,
            "status": "WAITING_FOR_DOCTOR",
            "appointmentStatus": "confirmed",
            "extensionCount": 0,
        },
    )
    assert chat.notices[-1][1].startswith("Consultation time is over")

    again = run_session_timer_tick(session_factory, notifications, chat, now=local_instant(booking_day, "10:32"))
    assert again == {"checked": 0, "expired": 0, "failed": 0}


def test_timer_leaves_running_session_alone(session_factory, notifications, db, live_session, booking_day):
    result = run_session_timer_tick(session_factory, notifications, now=local_instant(booking_day, "10:29"))

    assert result == {"checked": 1, "expired": 0, "failed": 0}
    db.expire_all()
    assert db.get(Appointment, live_session.id).session_status == "ACTIVE"


def test_timer_never_expires_extended_session(
    session_factory, session_service, notifications, db, live_session, doctor, booking_day
):
    session_service.update_session_status(live_session.id, doctor_actor(doctor), "WAITING_FOR_DOCTOR")
    session_service.update_session_status(live_session.id, doctor_actor(doctor), "CONTINUED_BY_DOCTOR")

    result = run_session_timer_tick(session_factory, notifications, now=local_instant(booking_day, "11:30"))

    assert result == {"checked": 1, "expired": 0, "failed": 0}
    db.expire_all()
    assert db.get(Appointment, live_session.id).session_status == "CONTINUED_BY_DOCTOR"


def test_timer_failure_does_not_stop_the_scan(
    monkeypatch, appointment_service, session_service, session_factory, notifications, db,
    live_session, other_patient, doctor, booking_day,
):
    second = confirmed_booking(appointment_service, db, other_patient, doctor, booking_day, "11:00", "11:30")
    session_service.update_session_status(second.id, doctor_actor(doctor), "ACTIVE")

    original = SessionService.expire_session

    def flaky(self, appointment_id):
        if appointment_id == live_session.id:
            raise RuntimeError("database hiccup")
        return original(self, appointment_id)

    monkeypatch.setattr(SessionService, "expire_session", flaky)

    result = run_session_timer_tick(session_factory, notifications, now=local_instant(booking_day, "11:31"))

    assert result == {"checked": 2, "expired": 1, "failed": 1}
    db.expire_all()
    assert db.get(Appointment, second.id).session_status == "WAITING_FOR_DOCTOR"
    assert db.get(Appointment, live_session.id).session_status == "ACTIVE"


# --- Reminders -------------------------------------------------------------


def test_starting_soon_reminder_is_sent_once(
    appointment_service, session_factory, notifications, db, schedule, patient, doctor, booking_day
):
    appointment = confirmed_booking(appointment_service, db, patient, doctor, booking_day)
    notifications.notified.clear()
    now = local_instant(booking_day, "09:55")

    result = run_reminder_tick(session_factory, notifications, now=now)

    assert result == {"checked": 1, "starting_soon": 1, "ready_now": 0, "failed": 0}
    assert notifications.titles_for(patient.id) == ["Appointment Starting Soon"]
    assert notifications.titles_for(doctor.user_id) == ["Appointment Starting Soon"]
    reminder_pushes = [p for p in notifications.pushed if p[1] == REMINDER_EVENT]
    assert {p[0] for p in reminder_pushes} == {str(patient.id), str(doctor.user_id)}
    assert reminder_pushes[0][2]["type"] == "starting_soon"

    again = run_reminder_tick(session_factory, notifications, now=now + timedelta(seconds=30))
    assert again["starting_soon"] == 0
    assert len(notifications.notified) == 2

    db.expire_all()
    row = db.get(Appointment, appointment.id)
    assert row.reminder_sent is True
    assert row.start_notification_sent is False


def test_ready_now_reminder_at_start_time(
    appointment_service, session_factory, notifications, db, schedule, patient, doctor, booking_day
):
    confirmed_booking(appointment_service, db, patient, doctor, booking_day)
    notifications.notified.clear()

    result = run_reminder_tick(session_factory, notifications, now=local_instant(booking_day, "10:01"))
    assert result["ready_now"] == 1
    assert notifications.titles_for(patient.id) == ["Appointment Ready"]

    result = run_reminder_tick(session_factory, notifications, now=local_instant(booking_day, "10:02"))
    assert result == {"checked": 1, "starting_soon": 0, "ready_now": 0, "failed": 0}
    assert len(notifications.notified) == 2


def test_reminders_skip_unconfirmed_and_out_of_window(
    appointment_service, session_factory, notifications, db, schedule, patient, doctor, booking_day
):
    book(appointment_service, db, patient, doctor, booking_day)
    notifications.notified.clear()

    assert run_reminder_tick(session_factory, notifications, now=local_instant(booking_day, "09:55"))["checked"] == 0
    assert notifications.notified == []


def test_reminder_windows_are_half_open(
    appointment_service, session_factory, notifications, db, schedule, patient, doctor, booking_day
):
    confirmed_booking(appointment_service, db, patient, doctor, booking_day)
    notifications.notified.clear()

    for clock in ("09:50", "09:56", "10:03"):
        result = run_reminder_tick(session_factory, notifications, now=local_instant(booking_day, clock))
        assert result["starting_soon"] == 0 and result["ready_now"] == 0
    assert notifications.notified == []


def test_rescheduled_appointment_is_reminded_again(
    appointment_service, session_factory, notifications, db, schedule, patient, doctor, booking_day
):
    appointment = confirmed_booking(appointment_service, db, patient, doctor, booking_day)
    run_reminder_tick(session_factory, notifications, now=local_instant(booking_day, "09:55"))

    appointment_service.reschedule_appointment(
        appointment.id,
        doctor_actor(doctor),
        RescheduleRequest(date=booking_day, time="11:00-11:30", slotId=slot_for(db, doctor, booking_day, "11:00").slot_code),
    )
    appointment_service.accept_reschedule(appointment.id, patient_actor(patient))
    notifications.notified.clear()

    result = run_reminder_tick(session_factory, notifications, now=local_instant(booking_day, "10:55"))
    assert result["starting_soon"] == 1


# --- Unpaid booking cleanup ------------------------------------------------


def test_cleanup_deletes_abandoned_bookings(appointment_service, session_factory, db, schedule, patient, doctor, booking_day):
    appointment = book(appointment_service, db, patient, doctor, booking_day)

    assert run_cleanup_tick(session_factory, now=utcnow() + timedelta(minutes=2)) == {"deleted": 0, "failed": 0}

    result = run_cleanup_tick(session_factory, now=utcnow() + timedelta(minutes=6))

    assert result == {"deleted": 1, "failed": 0}
    db.expire_all()
    assert db.query(Appointment).filter(Appointment.id == appointment.id).first() is None
    assert slot_for(db, doctor, booking_day).booked is False


def test_cleanup_keeps_paid_bookings(appointment_service, session_factory, db, schedule, patient, doctor, booking_day):
    appointment = book(appointment_service, db, patient, doctor, booking_day)
    pay(appointment_service, appointment, patient)

    assert run_cleanup_tick(session_factory, now=utcnow() + timedelta(minutes=30)) == {"deleted": 0, "failed": 0}
    db.expire_all()
    assert db.get(Appointment, appointment.id) is not None
    assert slot_for(db, doctor, booking_day).booked is True
