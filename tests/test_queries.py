from datetime import timedelta

import pytest

from medconsult.constants import Role
from medconsult.domain.appointments.mapper import doctor_ref, patient_ref, to_response
from medconsult.domain.appointments.schemas import Actor, NoteCreate
from medconsult.errors import BadRequestError, ForbiddenError, NotFoundError
from medconsult.models import Appointment
from medconsult.shared.refs import Reference, Resolved, ref_id

from .conftest import admin_actor, book, confirmed_booking, doctor_actor, make_doctor, patient_actor


def test_notes_on_confirmed_appointment(appointment_service, db, schedule, patient, doctor, booking_day):
    appointment = confirmed_booking(appointment_service, db, patient, doctor, booking_day)
    actor = doctor_actor(doctor)

    appointment_service.add_note(appointment.id, actor, NoteCreate(title="  Viral fever  "))
    updated = appointment_service.add_note(
        appointment.id,
        actor,
        NoteCreate(title="Paracetamol", category="medicine", dosage="500mg", frequency="TDS", duration="3 days"),
    )

    assert [n["title"] for n in updated.notes] == ["Viral fever", "Paracetamol"]
    assert updated.notes[0]["category"] == "observation"
    assert updated.notes[1]["dosage"] == "500mg"

    remaining = appointment_service.delete_note(appointment.id, actor, updated.notes[0]["id"])
    assert [n["title"] for n in remaining.notes] == ["Paracetamol"]

    with pytest.raises(NotFoundError):
        appointment_service.delete_note(appointment.id, actor, "missing")


def test_notes_need_a_confirmed_appointment_and_its_doctor(
    appointment_service, db, schedule, patient, doctor, booking_day
):
    appointment = book(appointment_service, db, patient, doctor, booking_day)

    with pytest.raises(BadRequestError):
        appointment_service.add_note(appointment.id, doctor_actor(doctor), NoteCreate(title="Too early"))
    with pytest.raises(ForbiddenError):
        appointment_service.add_note(appointment.id, patient_actor(patient), NoteCreate(title="Not mine"))
    with pytest.raises(ValueError):
        NoteCreate(title="   ")


def test_get_appointment_access(appointment_service, db, schedule, patient, other_patient, doctor, booking_day):
    appointment = book(appointment_service, db, patient, doctor, booking_day)

    by_code = appointment_service.get_appointment(appointment.customId, patient_actor(patient))
    assert by_code.id == appointment.id
    assert by_code.patientName == "Priya Patient"
    assert by_code.doctorName == "Dev Doctor"

    assert appointment_service.get_appointment(appointment.id, doctor_actor(doctor)).id == appointment.id
    assert appointment_service.get_appointment(str(appointment.id), admin_actor()).id == appointment.id

    with pytest.raises(ForbiddenError):
        appointment_service.get_appointment(appointment.id, patient_actor(other_patient))
    with pytest.raises(NotFoundError):
        appointment_service.get_appointment("APP000000", patient_actor(patient))
    with pytest.raises(NotFoundError):
        appointment_service.get_appointment("not-an-id", patient_actor(patient))


def test_listings_are_paginated_and_scoped(
    appointment_service, db, schedule, patient, other_patient, doctor, booking_day
):
    first = book(appointment_service, db, patient, doctor, booking_day)
    book(appointment_service, db, patient, doctor, booking_day, "11:00", "11:30")
    book(appointment_service, db, other_patient, doctor, booking_day + timedelta(days=1))
    appointment_service.cancel_appointment(first.id, patient_actor(patient))

    mine = appointment_service.list_my_appointments(patient_actor(patient), limit=1)
    assert (mine.total, mine.page, mine.limit, mine.total_pages) == (2, 1, 1, 2)
    assert len(mine.appointments) == 1

    cancelled = appointment_service.list_my_appointments(patient_actor(patient), status="cancelled")
    assert [a.id for a in cancelled.appointments] == [first.id]

    doctor_view = appointment_service.list_my_appointments(doctor_actor(doctor))
    assert doctor_view.total == 3
    assert doctor_view.appointments[0].appointmentDate == booking_day + timedelta(days=1)

    requests = appointment_service.list_doctor_requests(doctor_actor(doctor))
    assert requests.total == 2
    assert all(a.status == "pending" for a in requests.appointments)

    everything = appointment_service.list_all_appointments(admin_actor(), limit=500)
    assert everything.total == 3
    assert everything.limit == 100


def test_listing_permissions(appointment_service, db, patient):
    with pytest.raises(ForbiddenError):
        appointment_service.list_all_appointments(patient_actor(patient))
    with pytest.raises(ForbiddenError):
        appointment_service.list_my_appointments(admin_actor())
    with pytest.raises(ForbiddenError):
        appointment_service.list_doctor_requests(patient_actor(patient))
    with pytest.raises(NotFoundError):
        appointment_service.list_doctor_requests(Actor(user_id=patient.id, role=Role.DOCTOR))


def test_empty_listing(appointment_service, db):
    doctor = make_doctor(db, "Quiet Doctor", "quiet@example.com")

    page = appointment_service.list_doctor_requests(doctor_actor(doctor))
    assert (page.total, page.total_pages, page.appointments) == (0, 0, [])


def test_refs_follow_what_is_loaded(appointment_service, db, schedule, patient, doctor, booking_day):
    appointment = book(appointment_service, db, patient, doctor, booking_day)
    patient_id = patient.id
    db.expunge_all()

    bare = db.query(Appointment).filter(Appointment.id == appointment.id).one()
    assert isinstance(patient_ref(bare), Reference)
    assert isinstance(doctor_ref(bare), Reference)
    response = to_response(bare)
    assert response.patientId == str(patient_id)
    assert response.patientName is None

    assert bare.patient.id == patient_id
    assert isinstance(patient_ref(bare), Resolved)
    assert ref_id(patient_ref(bare)) == str(patient_id)
    assert ref_id(None) is None
