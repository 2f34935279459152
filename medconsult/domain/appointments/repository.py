"""Appointment repository - Database operations for appointments"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ...constants import (
    BLOCKING_STATUSES,
    CAPACITY_STATUSES,
    AppointmentStatus,
    PaymentStatus,
)
from ...models import Appointment, Doctor, User
from ...shared.ids import is_code
from ...shared.timeutils import day_start, utcnow


class AppointmentRepository:
    """Repository for appointment database operations. Writes flush; the caller's unit of work commits."""

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        return db.query(Doctor).options(joinedload(Doctor.user)).filter(Doctor.id == doctor_id).first()

    @staticmethod
    def get_doctor_by_user_id(db: Session, user_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.user_id == user_id).first()

    @staticmethod
    def get_by_id(db: Session, appointment_id) -> Optional[Appointment]:
        """Lookup by numeric id or by APP short code"""
        query = db.query(Appointment).options(
            joinedload(Appointment.patient), joinedload(Appointment.doctor).joinedload(Doctor.user)
        )
        if isinstance(appointment_id, str) and is_code(appointment_id, "APP"):
            return query.filter(Appointment.custom_id == appointment_id).first()
        try:
            return query.filter(Appointment.id == int(appointment_id)).first()
        except (TypeError, ValueError):
            return None

    @staticmethod
    def find_reusable_pending(
        db: Session, patient_id: int, doctor_id: int, slot_id: str, appointment_date: datetime, window_hours: int
    ) -> Optional[Appointment]:
        """Pending booking of the same patient, doctor and slot around the requested date"""
        window = timedelta(hours=window_hours)
        return (
            db.query(Appointment)
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.doctor_id == doctor_id,
                Appointment.slot_id == slot_id,
                Appointment.status == AppointmentStatus.PENDING.value,
                Appointment.appointment_date >= appointment_date - window,
                Appointment.appointment_date <= appointment_date + window,
            )
            .order_by(Appointment.created_at.desc())
            .first()
        )

    @staticmethod
    def claim_checkout_lock(db: Session, appointment: Appointment, lock_until: datetime) -> bool:
        """
        Compare-and-swap on the checkout lock.

        The row only takes the new lock while it is still an unpaid pending
        booking whose previous lock is absent or expired, so of two concurrent
        re-checkouts only one sees a modified row.
        """
        now = utcnow()
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment.id,
                Appointment.status == AppointmentStatus.PENDING.value,
                Appointment.payment_status == PaymentStatus.PENDING.value,
                or_(Appointment.checkout_lock_until.is_(None), Appointment.checkout_lock_until <= now),
            )
            .update({Appointment.checkout_lock_until: lock_until}, synchronize_session=False)
        )
        db.expire(appointment, ["checkout_lock_until"])
        return updated > 0

    @staticmethod
    def create(db: Session, **data) -> Appointment:
        data.setdefault("created_at", utcnow())
        data.setdefault("updated_at", data["created_at"])
        appointment = Appointment(**data)
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def update(db: Session, appointment: Appointment, **updates) -> Appointment:
        """Apply updates; unlike a partial patch, None values are written too"""
        for key, value in updates.items():
            if hasattr(appointment, key):
                setattr(appointment, key, value)
        appointment.updated_at = utcnow()
        db.flush()
        return appointment

    @staticmethod
    def delete(db: Session, appointment: Appointment) -> None:
        db.delete(appointment)
        db.flush()

    @staticmethod
    def count_active_for_slot(
        db: Session, doctor_id: int, day, slot_code: str, start_time: str, end_time: str
    ) -> int:
        """Active bookings of one slot on one date, matched by slot id or by time range"""
        time_ranges = [f"{start_time}-{end_time}", f"{start_time} - {end_time}"]
        return (
            db.query(Appointment)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == day_start(day),
                Appointment.status.in_(CAPACITY_STATUSES),
                or_(Appointment.slot_id == slot_code, Appointment.appointment_time.in_(time_ranges)),
            )
            .count()
        )

    @staticmethod
    def has_blocking_on_date(db: Session, doctor_id: int, day) -> bool:
        return (
            db.query(Appointment.id)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == day_start(day),
                Appointment.status.in_(BLOCKING_STATUSES),
            )
            .first()
            is not None
        )

    @staticmethod
    def paginate(db: Session, filters: list, page: int, limit: int) -> tuple[list[Appointment], int]:
        query = db.query(Appointment).options(
            joinedload(Appointment.patient), joinedload(Appointment.doctor).joinedload(Doctor.user)
        )
        for condition in filters:
            query = query.filter(condition)

        total = query.count()
        items = (
            query.order_by(Appointment.appointment_date.desc(), Appointment.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def list_in_session(db: Session, session_statuses: list[str]) -> list[Appointment]:
        """Confirmed appointments whose live session is in one of the given states"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.status == AppointmentStatus.CONFIRMED.value,
                Appointment.session_status.in_(session_statuses),
            )
            .all()
        )

    @staticmethod
    def list_due_for_reminder(db: Session, day) -> list[Appointment]:
        """Confirmed appointments on the day that still owe at least one reminder"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.status == AppointmentStatus.CONFIRMED.value,
                Appointment.appointment_date == day_start(day),
                or_(Appointment.reminder_sent.is_(False), Appointment.start_notification_sent.is_(False)),
            )
            .all()
        )

    @staticmethod
    def list_abandoned_unpaid(db: Session, created_before: datetime) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.status == AppointmentStatus.PENDING.value,
                Appointment.payment_status == PaymentStatus.PENDING.value,
                Appointment.created_at < created_before,
            )
            .all()
        )
