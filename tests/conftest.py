import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ.setdefault("RUN_BACKGROUND_TASKS", "false")

from datetime import date, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from medconsult import models  # noqa: E402,F401
from medconsult.constants import Role  # noqa: E402
from medconsult.database import Base  # noqa: E402
from medconsult.domain.appointments.schemas import Actor, AppointmentCreate, PaymentRecord  # noqa: E402
from medconsult.domain.appointments.service import AppointmentService  # noqa: E402
from medconsult.domain.appointments.session_service import SessionService  # noqa: E402
from medconsult.domain.ledger.service import WalletLedger  # noqa: E402
from medconsult.domain.notifications.chat import ChatCollaborator  # noqa: E402
from medconsult.domain.notifications.service import NotificationSink  # noqa: E402
from medconsult.domain.schedules.schemas import ScheduleCreate  # noqa: E402
from medconsult.domain.schedules.service import ScheduleService  # noqa: E402
from medconsult.models import Doctor, ScheduleSlot, User  # noqa: E402
from medconsult.shared.timeutils import WEEKDAYS, weekday_name  # noqa: E402

DEFAULT_SLOTS = [("10:00", "10:30"), ("11:00", "11:30")]


class RecordingNotifications(NotificationSink):
    def __init__(self):
        self.notified = []
        self.pushed = []
        self.broadcasts = []

    def notify(self, user_id, title, message, severity="info", appointment_id=None):
        self.notified.append(
            {"user_id": str(user_id), "title": title, "message": message, "severity": severity, "appointment_id": appointment_id}
        )

    def push_to_user(self, user_id, event, payload):
        self.pushed.append((str(user_id), event, payload))

    def broadcast_to_room(self, appointment_id, event, payload):
        self.broadcasts.append((str(appointment_id), event, payload))

    def titles_for(self, user_id) -> list[str]:
        return [n["title"] for n in self.notified if n["user_id"] == str(user_id)]


class RecordingChat(ChatCollaborator):
    def __init__(self):
        self.notices = []

    def post_system_notice(self, appointment_id, text):
        self.notices.append((appointment_id, text))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def chat():
    return RecordingChat()


@pytest.fixture
def ledger(notifications):
    return WalletLedger(notifications)


@pytest.fixture
def appointment_service(db, ledger, notifications, chat):
    return AppointmentService(db, ledger, notifications, chat)


@pytest.fixture
def session_service(db, notifications, chat):
    return SessionService(db, notifications, chat)


@pytest.fixture
def schedule_service(db):
    return ScheduleService(db)


@pytest.fixture
def patient(db):
    user = User(name="Priya Patient", email="priya@example.com", role=Role.PATIENT.value)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_patient(db):
    user = User(name="Omar Other", email="omar@example.com", role=Role.PATIENT.value)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def doctor(db):
    return make_doctor(db, "Dev Doctor", "dev@example.com")


@pytest.fixture
def schedule(schedule_service, doctor):
    return schedule_service.create_schedule(doctor.id, ScheduleCreate(weeklySchedule=weekly_template()))


@pytest.fixture
def booking_day() -> date:
    return date.today() + timedelta(days=7)


def make_doctor(db, name, email, video_fee=500.0, chat_fee=300.0, is_active=True) -> Doctor:
    user = User(name=name, email=email, role=Role.DOCTOR.value)
    db.add(user)
    db.flush()
    doctor = Doctor(user_id=user.id, video_fee=video_fee, chat_fee=chat_fee, is_active=is_active)
    db.add(doctor)
    db.commit()
    return doctor


def weekly_template(slots=DEFAULT_SLOTS, enabled_days=WEEKDAYS) -> list[dict]:
    return [
        {
            "day": day,
            "enabled": day in enabled_days,
            "slots": [{"startTime": s, "endTime": e} for s, e in slots] if day in enabled_days else [],
        }
        for day in WEEKDAYS
    ]


def slot_for(db, doctor, day, start="10:00") -> ScheduleSlot:
    return (
        db.query(ScheduleSlot)
        .filter(
            ScheduleSlot.doctor_id == doctor.id,
            ScheduleSlot.weekday == weekday_name(day),
            ScheduleSlot.start_time == start,
        )
        .one()
    )


def patient_actor(user) -> Actor:
    return Actor(user_id=user.id, role=Role.PATIENT)


def doctor_actor(doctor) -> Actor:
    return Actor(user_id=doctor.user_id, role=Role.DOCTOR)


def admin_actor() -> Actor:
    return Actor(user_id=999, role=Role.ADMIN)


def book(service, db, patient, doctor, day, start="10:00", end="10:30", appointment_type="video"):
    slot = slot_for(db, doctor, day, start)
    return service.create_appointment(
        patient.id,
        AppointmentCreate(
            doctorId=doctor.id,
            appointmentType=appointment_type,
            date=day,
            time=f"{start}-{end}",
            slotId=slot.slot_code,
            reason="Persistent cough",
        ),
    )


def pay(service, appointment, patient, payment_id="pay_test_001"):
    return service.record_payment(
        appointment.id, patient_actor(patient), PaymentRecord(paymentId=payment_id, paymentMethod="upi")
    )


def confirmed_booking(service, db, patient, doctor, day, start="10:00", end="10:30"):
    appointment = book(service, db, patient, doctor, day, start, end)
    pay(service, appointment, patient)
    return service.approve_appointment(appointment.id, doctor_actor(doctor))
