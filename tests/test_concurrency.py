import threading
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from medconsult.constants import Role
from medconsult.database import Base
from medconsult.domain.appointments.schemas import AppointmentCreate
from medconsult.domain.appointments.service import AppointmentService
from medconsult.domain.ledger.service import WalletLedger
from medconsult.domain.schedules.schemas import ScheduleCreate
from medconsult.domain.schedules.service import ScheduleService
from medconsult.errors import BadRequestError, ConflictError
from medconsult.models import Appointment, User
from medconsult.shared.timeutils import utcnow

from .conftest import RecordingNotifications, make_doctor, slot_for, weekly_template

CONTENDERS = 6


@pytest.fixture
def shared_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clinic(shared_factory, booking_day):
    session = shared_factory()
    doctor = make_doctor(session, "Rana Racer", "rana@example.com")
    ScheduleService(session).create_schedule(doctor.id, ScheduleCreate(weeklySchedule=weekly_template()))
    patients = []
    for i in range(CONTENDERS):
        user = User(name=f"Patient {i}", email=f"patient{i}@example.com", role=Role.PATIENT.value)
        session.add(user)
        patients.append(user)
    session.commit()
    slot_code = slot_for(session, doctor, booking_day).slot_code
    yield session, doctor, [p.id for p in patients], slot_code
    session.close()


def _race(shared_factory, attempts):
    """Run each attempt in its own thread and session, all released together"""
    barrier = threading.Barrier(len(attempts))
    outcomes = [None] * len(attempts)
    notifications = RecordingNotifications()

    def run(index, attempt):
        session = shared_factory()
        service = AppointmentService(session, WalletLedger(notifications), notifications)
        try:
            barrier.wait()
            attempt(service)
            outcomes[index] = "ok"
        except (ConflictError, BadRequestError) as e:
            outcomes[index] = type(e).__name__
        except Exception as e:
            outcomes[index] = repr(e)
        finally:
            session.close()

    threads = [threading.Thread(target=run, args=(i, a)) for i, a in enumerate(attempts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def _booking(doctor_id, day, slot_code):
    return AppointmentCreate(
        doctorId=doctor_id, appointmentType="video", date=day, time="10:00-10:30", slotId=slot_code
    )


def test_concurrent_bookings_of_one_slot_have_one_winner(shared_factory, clinic, booking_day):
    session, doctor, patient_ids, slot_code = clinic
    request = _booking(doctor.id, booking_day, slot_code)
    attempts = [
        lambda service, patient_id=patient_id: service.create_appointment(patient_id, request)
        for patient_id in patient_ids
    ]

    outcomes = _race(shared_factory, attempts)

    assert outcomes.count("ok") == 1, outcomes
    assert all(o in ("ok", "ConflictError", "BadRequestError") for o in outcomes), outcomes
    session.expire_all()
    assert session.query(Appointment).count() == 1
    assert slot_for(session, doctor, booking_day).booked is True


def test_concurrent_recheckouts_take_the_lock_once(shared_factory, clinic, booking_day):
    session, doctor, patient_ids, slot_code = clinic
    patient_id = patient_ids[0]
    request = _booking(doctor.id, booking_day, slot_code)
    notifications = RecordingNotifications()
    first = AppointmentService(session, WalletLedger(notifications), notifications).create_appointment(patient_id, request)

    row = session.get(Appointment, first.id)
    row.checkout_lock_until = utcnow() - timedelta(seconds=1)
    session.commit()

    attempts = [lambda service: service.create_appointment(patient_id, request) for _ in range(CONTENDERS)]

    outcomes = _race(shared_factory, attempts)

    assert outcomes.count("ok") == 1, outcomes
    assert outcomes.count("ConflictError") == CONTENDERS - 1, outcomes
    session.expire_all()
    assert session.query(Appointment).count() == 1
    assert session.get(Appointment, first.id).checkout_lock_until > utcnow()
