from datetime import timedelta

import pytest

from medconsult.constants import POST_CHAT_EVENT, SESSION_STATUS_EVENT
from medconsult.errors import BadRequestError, ForbiddenError
from medconsult.models import Appointment
from medconsult.shared.timeutils import utcnow

from .conftest import admin_actor, book, confirmed_booking, doctor_actor, patient_actor, slot_for


@pytest.fixture
def consultation(appointment_service, db, schedule, patient, doctor, booking_day):
    return confirmed_booking(appointment_service, db, patient, doctor, booking_day)


def test_doctor_starts_session(session_service, notifications, chat, db, consultation, patient, doctor):
    state = session_service.update_session_status(consultation.id, doctor_actor(doctor), "ACTIVE")

    assert state.status == "ACTIVE"
    assert state.session_start_time is not None
    assert state.can_extend is False
    assert state.is_expired is False
    assert state.time_remaining_ms > 0
    assert chat.notices == [(consultation.id, "Consultation started")]

    pushed_to = {user_id for user_id, event, _ in notifications.pushed if event == SESSION_STATUS_EVENT}
    assert pushed_to == {str(patient.id), str(doctor.user_id)}
    assert notifications.broadcasts[-1][0] == str(consultation.id)
    assert notifications.broadcasts[-1][2]["status"] == "ACTIVE"


def test_restarting_active_session_keeps_start_time(session_service, chat, db, consultation, doctor):
    first = session_service.update_session_status(consultation.id, doctor_actor(doctor), "ACTIVE")
    second = session_service.update_session_status(consultation.id, doctor_actor(doctor), "ACTIVE")

    assert second.session_start_time == first.session_start_time
    assert len(chat.notices) == 1


def test_patient_may_only_signal_time_over(session_service, db, consultation, patient, doctor):
    with pytest.raises(ForbiddenError):
        session_service.update_session_status(consultation.id, patient_actor(patient), "ACTIVE")

    session_service.update_session_status(consultation.id, doctor_actor(doctor), "ACTIVE")
    state = session_service.update_session_status(consultation.id, patient_actor(patient), "WAITING_FOR_DOCTOR")
    assert state.status == "WAITING_FOR_DOCTOR"
    assert state.can_extend is True

    with pytest.raises(ForbiddenError):
        session_service.update_session_status(consultation.id, patient_actor(patient), "ENDED")


def test_doctor_extends_waiting_session(session_service, chat, db, consultation, doctor):
    actor = doctor_actor(doctor)
    session_service.update_session_status(consultation.id, actor, "ACTIVE")

    with pytest.raises(BadRequestError):
        session_service.update_session_status(consultation.id, actor, "CONTINUED_BY_DOCTOR")

    session_service.update_session_status(consultation.id, actor, "WAITING_FOR_DOCTOR")
    state = session_service.update_session_status(consultation.id, actor, "CONTINUED_BY_DOCTOR")
    assert state.status == "CONTINUED_BY_DOCTOR"
    assert state.extension_count == 1

    session_service.update_session_status(consultation.id, actor, "WAITING_FOR_DOCTOR")
    state = session_service.update_session_status(consultation.id, actor, "CONTINUED_BY_DOCTOR")
    assert state.extension_count == 2
    assert chat.notices[-1][1] == "Doctor extended the consultation"


def test_ending_session_completes_appointment(session_service, chat, db, consultation, doctor, booking_day):
    actor = doctor_actor(doctor)
    session_service.update_session_status(consultation.id, actor, "ACTIVE")

    state = session_service.update_session_status(consultation.id, actor, "ENDED")

    assert state.status == "ENDED"
    assert state.session_end_time is not None
    assert chat.notices[-1] == (consultation.id, "Consultation ended")
    db.expire_all()
    row = db.get(Appointment, consultation.id)
    assert row.status == "completed"
    assert row.session_duration == 0
    assert slot_for(db, doctor, booking_day).booked is False

    with pytest.raises(BadRequestError):
        session_service.update_session_status(consultation.id, actor, "ACTIVE")
    with pytest.raises(BadRequestError):
        session_service.update_session_status(consultation.id, actor, "ENDED")


def test_session_requires_confirmed_appointment(
    session_service, appointment_service, db, schedule, patient, doctor, booking_day
):
    pending = book(appointment_service, db, patient, doctor, booking_day)

    with pytest.raises(BadRequestError):
        session_service.update_session_status(pending.id, doctor_actor(doctor), "ACTIVE")


def test_session_input_and_access_checks(session_service, db, consultation, other_patient, doctor):
    with pytest.raises(BadRequestError):
        session_service.update_session_status(consultation.id, doctor_actor(doctor), "PAUSED")
    with pytest.raises(ForbiddenError):
        session_service.update_session_status(consultation.id, patient_actor(other_patient), "WAITING_FOR_DOCTOR")
    with pytest.raises(BadRequestError):
        session_service.update_session_status(consultation.id, doctor_actor(doctor), "WAITING_FOR_DOCTOR")
    with pytest.raises(ForbiddenError):
        session_service.get_session_state(consultation.id, patient_actor(other_patient))

    state = session_service.get_session_state(consultation.id, admin_actor())
    assert state.status is None
    assert state.extension_count == 0


def test_expire_session_only_touches_active(session_service, notifications, db, consultation, doctor):
    assert session_service.expire_session(consultation.id) is False

    session_service.update_session_status(consultation.id, doctor_actor(doctor), "ACTIVE")
    assert session_service.expire_session(consultation.id) is True
    assert session_service.expire_session(consultation.id) is False

    db.expire_all()
    assert db.get(Appointment, consultation.id).session_status == "WAITING_FOR_DOCTOR"
    assert notifications.broadcasts[-1][2]["status"] == "WAITING_FOR_DOCTOR"


# --- Post-consultation chat ------------------------------------------------


def test_post_consultation_chat_window(session_service, notifications, chat, db, consultation, patient, doctor):
    actor = doctor_actor(doctor)
    with pytest.raises(BadRequestError):
        session_service.enable_post_consultation_chat(consultation.id, actor)

    session_service.update_session_status(consultation.id, actor, "ACTIVE")
    session_service.update_session_status(consultation.id, actor, "ENDED")
    state = session_service.enable_post_consultation_chat(consultation.id, actor)

    assert state["isActive"] is True
    assert state["testNeeded"] is True
    db.expire_all()
    row = db.get(Appointment, consultation.id)
    assert timedelta(hours=23) < row.post_chat_expires_at - utcnow() <= timedelta(hours=24)
    assert "Follow-up Chat Enabled" in notifications.titles_for(patient.id)
    assert any(event == POST_CHAT_EVENT for _, event, _ in notifications.broadcasts)
    assert "follow-up chat" in chat.notices[-1][1]

    closed = session_service.disable_post_consultation_chat(consultation.id, actor)
    assert closed["isActive"] is False
    assert closed["testNeeded"] is False


def test_only_the_doctor_opens_post_consultation_chat(session_service, db, consultation, patient, doctor):
    session_service.update_session_status(consultation.id, doctor_actor(doctor), "ACTIVE")
    session_service.update_session_status(consultation.id, doctor_actor(doctor), "ENDED")

    with pytest.raises(ForbiddenError):
        session_service.enable_post_consultation_chat(consultation.id, patient_actor(patient))
    with pytest.raises(ForbiddenError):
        session_service.disable_post_consultation_chat(consultation.id, patient_actor(patient))
