from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .shared.ids import generate_appointment_code


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="patient")  # patient, doctor, admin
    created_at = Column(DateTime, server_default=func.now())

    doctor_profile = relationship("Doctor", back_populates="user", uselist=False)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    specialty = Column(String(255), nullable=True)
    video_fee = Column(Float, nullable=True)
    chat_fee = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="doctor_profile")
    schedule = relationship("DoctorSchedule", back_populates="doctor", uselist=False)


class DoctorSchedule(Base):
    __tablename__ = "doctor_schedules"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), unique=True, nullable=False, index=True)
    default_slot_duration = Column(Integer, default=30, nullable=False)  # minutes
    buffer_time = Column(Integer, default=5, nullable=False)  # minutes
    max_patients_per_slot = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor", back_populates="schedule")
    days = relationship(
        "ScheduleDay",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ScheduleDay.position",
    )
    blocked_dates = relationship(
        "BlockedDate",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="BlockedDate.date",
    )


class ScheduleDay(Base):
    __tablename__ = "schedule_days"
    __table_args__ = (UniqueConstraint("schedule_id", "day", name="uq_schedule_day"),)

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("doctor_schedules.id"), nullable=False, index=True)
    day = Column(String(10), nullable=False)  # Monday..Sunday
    position = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, default=False, nullable=False)

    schedule = relationship("DoctorSchedule", back_populates="days")
    slots = relationship(
        "ScheduleSlot",
        back_populates="day",
        cascade="all, delete-orphan",
        order_by="ScheduleSlot.position",
    )


class ScheduleSlot(Base):
    __tablename__ = "schedule_slots"

    id = Column(Integer, primary_key=True, index=True)
    day_id = Column(Integer, ForeignKey("schedule_days.id"), nullable=False, index=True)
    # Denormalized so the slot allocator can match-and-set without joins
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    weekday = Column(String(10), nullable=False)
    slot_code = Column(String(20), unique=True, index=True, nullable=False)  # SLO + 6 digits
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    booked = Column(Boolean, default=False, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    day = relationship("ScheduleDay", back_populates="slots")


class BlockedDate(Base):
    __tablename__ = "blocked_dates"
    __table_args__ = (UniqueConstraint("schedule_id", "date", name="uq_blocked_date"),)

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("doctor_schedules.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    reason = Column(String(500), nullable=True)
    slots = Column(JSON, default=list, nullable=False)  # slot start times; empty = whole day

    schedule = relationship("DoctorSchedule", back_populates="blocked_dates")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    custom_id = Column(
        String(20), unique=True, index=True, nullable=False, default=generate_appointment_code
    )  # APP + 6 digits
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    appointment_type = Column(String(10), nullable=False)  # video, chat
    appointment_date = Column(DateTime, nullable=False, index=True)  # local midnight of the day
    appointment_time = Column(String(20), nullable=False)  # "HH:MM-HH:MM"
    slot_id = Column(String(20), nullable=True)  # soft reference to ScheduleSlot.slot_code
    reason = Column(Text, nullable=True)

    status = Column(String(30), default="pending", nullable=False, index=True)
    payment_status = Column(String(20), default="pending", nullable=False)
    payment_id = Column(String(255), nullable=True)
    payment_method = Column(String(20), nullable=True)  # card, upi, wallet, netbanking

    consultation_fees = Column(Float, nullable=False)
    admin_commission = Column(Float, nullable=False, default=0)
    doctor_earnings = Column(Float, nullable=False, default=0)

    cancelled_by = Column(String(20), nullable=True)  # patient, doctor, admin
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Reschedule proposal awaiting the patient's answer
    reschedule_count = Column(Integer, default=0, nullable=False)
    reschedule_date = Column(DateTime, nullable=True)
    reschedule_time = Column(String(20), nullable=True)
    reschedule_slot_id = Column(String(20), nullable=True)
    reschedule_reason = Column(Text, nullable=True)
    reschedule_reject_reason = Column(Text, nullable=True)

    # Live consultation
    session_status = Column(String(30), nullable=True, index=True)  # None until first started
    session_start_time = Column(DateTime, nullable=True)
    session_end_time = Column(DateTime, nullable=True)
    session_duration = Column(Integer, nullable=True)  # minutes
    extension_count = Column(Integer, default=0, nullable=False)
    test_needed = Column(Boolean, default=False, nullable=False)
    post_chat_active = Column(Boolean, default=False, nullable=False)
    post_chat_expires_at = Column(DateTime, nullable=True)
    post_chat_enabled_at = Column(DateTime, nullable=True)
    notes = Column(JSON, default=list, nullable=False)
    prescription_url = Column(String(500), nullable=True)

    reminder_sent = Column(Boolean, default=False, nullable=False)  # "starting soon"
    start_notification_sent = Column(Boolean, default=False, nullable=False)  # "ready now"

    # Advisory marker against duplicate concurrent payment attempts; expired = absent
    checkout_lock_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("Doctor", foreign_keys=[doctor_id])


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), unique=True, index=True, nullable=False)  # user id or platform
    balance = Column(Float, default=0, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), index=True, nullable=False)
    appointment_id = Column(Integer, nullable=True, index=True)
    amount = Column(Float, nullable=False)  # signed: credits positive, debits negative
    category = Column(String(30), nullable=False)
    memo = Column(String(500), nullable=True)
    status = Column(String(20), default="completed", nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    severity = Column(String(20), default="info", nullable=False)  # success, error, warning, info
    appointment_id = Column(Integer, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class ChatNotice(Base):
    __tablename__ = "chat_notices"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, index=True, nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
