"""
Appointment Service
Booking, payment capture, approval, rejection, cancellation, rescheduling,
completion and clinical notes. Every mutating operation runs in one
UnitOfWork: slot flips, appointment writes and ledger entries commit or roll
back together, and notifications go out only after the commit.
"""

import logging
import math
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...config import (
    CHECKOUT_LOCK_TTL_SECONDS,
    MAX_RESCHEDULE,
    PLATFORM_ACCOUNT_ID,
    REUSE_WINDOW_HOURS,
)
from ...constants import (
    RESCHEDULABLE_STATUSES,
    TERMINAL_STATUSES,
    AppointmentStatus,
    AppointmentType,
    LedgerCategory,
    PaymentStatus,
    Role,
    SessionStatus,
)
from ...database import UnitOfWork
from ...errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from ...models import Appointment, Doctor
from ...shared.timeutils import (
    day_start,
    format_time_range,
    is_valid_time_range,
    split_time_range,
    utcnow,
)
from ..ledger.service import LedgerService
from ..notifications.chat import ChatCollaborator
from ..notifications.service import NotificationSink, notify_quietly
from ..schedules.repository import ScheduleRepository
from .mapper import to_response
from .refunds import plan_refund, split_fee
from .repository import AppointmentRepository
from .schemas import (
    Actor,
    AppointmentCreate,
    AppointmentPage,
    AppointmentResponse,
    NoteCreate,
    PaymentRecord,
    RescheduleRequest,
)

logger = logging.getLogger(__name__)

NOTE_STATUSES = {AppointmentStatus.CONFIRMED.value, AppointmentStatus.COMPLETED.value}


def normalize_time_range(value: str) -> str:
    """'10:00 - 10:30' -> '10:00-10:30'; BadRequest when malformed"""
    if not value or not is_valid_time_range(value):
        raise BadRequestError(f"Invalid time range: {value}. Use HH:MM-HH:MM")
    start, end = split_time_range(value)
    return format_time_range(start, end)


class AppointmentService:
    """Service layer for the appointment lifecycle"""

    def __init__(
        self,
        db: Session,
        ledger: LedgerService,
        notifications: NotificationSink,
        chat: Optional[ChatCollaborator] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.notifications = notifications
        self.chat = chat
        self.repo = AppointmentRepository()
        self.schedules = ScheduleRepository()

    # --- Booking --------------------------------------------------------

    def create_appointment(self, patient_id: int, data: AppointmentCreate) -> AppointmentResponse:
        logger.info(f"📥 Booking request: patient {patient_id} -> doctor {data.doctorId} on {data.date} {data.time}")

        patient = self.repo.get_user(self.db, patient_id)
        if not patient:
            raise NotFoundError("Patient not found")
        doctor = self.repo.get_doctor(self.db, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found")
        if not doctor.is_active:
            raise BadRequestError("Doctor is not available for appointments")

        fee = doctor.video_fee if data.appointmentType == AppointmentType.VIDEO else doctor.chat_fee
        if not fee or fee <= 0:
            raise BadRequestError(f"Doctor has not set a {data.appointmentType.value} consultation fee")

        time_range = normalize_time_range(data.time)
        start_time, _ = split_time_range(time_range)
        appointment_date = day_start(data.date)
        split = split_fee(fee)
        terms = {
            "appointment_type": data.appointmentType.value,
            "consultation_fees": split.fee,
            "admin_commission": split.admin_commission,
            "doctor_earnings": split.doctor_earnings,
            "appointment_time": time_range,
            "appointment_date": appointment_date,
        }

        with UnitOfWork(self.db) as uow:
            if data.slotId:
                slot = self.schedules.find_slot(self.db, doctor.id, data.slotId, data.date, start_time)
                if slot is None:
                    raise BadRequestError("Selected slot does not exist")

                if slot.booked:
                    appointment = self._reuse_pending(patient.id, doctor.id, slot.slot_code, appointment_date, terms)
                    logger.info(f"🔄 Reusing pending appointment {appointment.custom_id} for patient {patient.id}")
                    return to_response(appointment)

                if not self.schedules.try_book_slot(self.db, doctor.id, slot.slot_code, data.date, start_time):
                    logger.warning(f"⚠️ Slot {slot.slot_code} was taken concurrently")
                    raise ConflictError("This slot was just booked by someone else. Please pick another slot")
                slot_code = slot.slot_code
            else:
                slot_code = None

            appointment = self.repo.create(
                self.db,
                patient_id=patient.id,
                doctor_id=doctor.id,
                slot_id=slot_code,
                reason=data.reason,
                status=AppointmentStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                checkout_lock_until=self._new_checkout_lock(),
                **terms,
            )
            uow.after_commit(
                notify_quietly,
                self.notifications,
                doctor.user_id,
                "New Appointment Request",
                f"{patient.name} requested a {data.appointmentType.value} consultation on "
                f"{data.date.isoformat()} at {time_range}",
                "info",
                appointment.id,
            )

        logger.info(f"✅ Appointment {appointment.custom_id} created (fee {split.fee:.2f})")
        return to_response(appointment)

    def _reuse_pending(self, patient_id, doctor_id, slot_code, appointment_date, terms) -> Appointment:
        """Idempotent re-checkout of the patient's own unpaid booking of this slot"""
        existing = self.repo.find_reusable_pending(
            self.db, patient_id, doctor_id, slot_code, appointment_date, REUSE_WINDOW_HOURS
        )
        if not existing:
            raise BadRequestError("Selected slot is already booked")
        if existing.payment_status != PaymentStatus.PENDING.value:
            raise BadRequestError("Selected slot is already booked")
        if not self.repo.claim_checkout_lock(self.db, existing, self._new_checkout_lock()):
            logger.warning(f"⚠️ Checkout lock for appointment {existing.custom_id} is held")
            raise ConflictError("A payment for this appointment is already in progress. Please wait")

        return self.repo.update(self.db, existing, **terms)

    @staticmethod
    def _new_checkout_lock():
        return utcnow() + timedelta(seconds=CHECKOUT_LOCK_TTL_SECONDS)

    # --- Payment --------------------------------------------------------

    def record_payment(self, appointment_id, actor: Actor, data: PaymentRecord) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_patient(appointment, actor)

        if appointment.status != AppointmentStatus.PENDING.value:
            raise BadRequestError("Only pending appointments can be paid")
        if appointment.payment_status != PaymentStatus.PENDING.value:
            raise BadRequestError(f"Payment is already {appointment.payment_status}")

        doctor = appointment.doctor
        with UnitOfWork(self.db) as uow:
            self.ledger.credit(
                uow,
                doctor.user_id,
                appointment.doctor_earnings,
                f"Consultation fee for appointment {appointment.custom_id}",
                appointment.id,
                LedgerCategory.CONSULTATION_FEE.value,
            )
            self.ledger.credit(
                uow,
                PLATFORM_ACCOUNT_ID,
                appointment.admin_commission,
                f"Platform commission for appointment {appointment.custom_id}",
                appointment.id,
                LedgerCategory.CONSULTATION_FEE.value,
            )
            self.repo.update(
                self.db,
                appointment,
                payment_status=PaymentStatus.PAID.value,
                payment_id=data.paymentId,
                payment_method=data.paymentMethod,
                checkout_lock_until=None,
            )
            uow.after_commit(
                notify_quietly,
                self.notifications,
                doctor.user_id,
                "Payment Received",
                f"Payment received for appointment {appointment.custom_id}. Please review the request",
                "success",
                appointment.id,
            )

        logger.info(f"💳 Payment {data.paymentId} recorded for appointment {appointment.custom_id}")
        return to_response(appointment)

    def mark_payment_failed(self, appointment_id, actor: Actor) -> AppointmentResponse:
        """Failed checkout: payment -> failed, booking cancelled by the system, slot freed"""
        appointment = self._get(appointment_id)
        self._require_party(appointment, actor)

        if appointment.payment_status != PaymentStatus.PENDING.value:
            raise BadRequestError(f"Payment is already {appointment.payment_status}")

        with UnitOfWork(self.db):
            self._release_held_slots(appointment)
            self.repo.update(
                self.db,
                appointment,
                payment_status=PaymentStatus.FAILED.value,
                status=AppointmentStatus.CANCELLED.value,
                cancelled_by="system",
                cancellation_reason="Payment failed",
                cancelled_at=utcnow(),
                checkout_lock_until=None,
            )

        logger.warning(f"⚠️ Payment failed for appointment {appointment.custom_id}; slot released")
        return to_response(appointment)

    # --- Doctor decisions -----------------------------------------------

    def approve_appointment(self, appointment_id, actor: Actor) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_doctor(appointment, actor)

        if appointment.status != AppointmentStatus.PENDING.value:
            raise BadRequestError("Only pending appointments can be approved")
        if appointment.payment_status != PaymentStatus.PAID.value:
            raise BadRequestError("Appointment cannot be approved before payment is completed")

        with UnitOfWork(self.db) as uow:
            # The slot stays booked through completion
            self.repo.update(self.db, appointment, status=AppointmentStatus.CONFIRMED.value)
            uow.after_commit(
                notify_quietly,
                self.notifications,
                appointment.patient_id,
                "Appointment Confirmed",
                f"Your appointment {appointment.custom_id} on {appointment.appointment_date.date().isoformat()} "
                f"at {appointment.appointment_time} has been confirmed",
                "success",
                appointment.id,
            )

        logger.info(f"✅ Appointment {appointment.custom_id} approved")
        return to_response(appointment)

    def reject_appointment(self, appointment_id, actor: Actor, reason: Optional[str] = None) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_doctor(appointment, actor)

        if appointment.status != AppointmentStatus.PENDING.value:
            raise BadRequestError("Only pending appointments can be rejected")

        with UnitOfWork(self.db) as uow:
            refunded = self._refund(uow, appointment, Role.DOCTOR.value)
            self._release_held_slots(appointment)
            self.repo.update(
                self.db,
                appointment,
                status=AppointmentStatus.REJECTED.value,
                rejection_reason=reason,
                payment_status=PaymentStatus.REFUNDED.value if refunded else appointment.payment_status,
                checkout_lock_until=None,
            )
            message = f"Your appointment {appointment.custom_id} was rejected by the doctor"
            if reason:
                message += f". Reason: {reason}"
            if refunded:
                message += ". The full fee has been refunded to your wallet"
            uow.after_commit(
                notify_quietly, self.notifications, appointment.patient_id,
                "Appointment Rejected", message, "error", appointment.id,
            )

        logger.info(f"🚫 Appointment {appointment.custom_id} rejected")
        return to_response(appointment)

    def complete_appointment(self, appointment_id, actor: Actor) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_doctor(appointment, actor)

        if appointment.status != AppointmentStatus.CONFIRMED.value:
            raise BadRequestError("Only confirmed appointments can be completed")

        with UnitOfWork(self.db) as uow:
            complete_in_place(self.db, appointment)
            uow.after_commit(
                notify_quietly, self.notifications, appointment.patient_id,
                "Consultation Completed",
                f"Your consultation {appointment.custom_id} has been completed",
                "success", appointment.id,
            )

        logger.info(f"✅ Appointment {appointment.custom_id} completed")
        return to_response(appointment)

    # --- Cancellation ---------------------------------------------------

    def cancel_appointment(self, appointment_id, actor: Actor, reason: Optional[str] = None) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        if appointment.status in TERMINAL_STATUSES:
            raise BadRequestError(f"Appointment is already {appointment.status}")

        if actor.role == Role.ADMIN:
            cancelled_by = Role.ADMIN.value
        elif self._is_patient(appointment, actor):
            cancelled_by = Role.PATIENT.value
        elif self._is_doctor(appointment, actor):
            cancelled_by = Role.DOCTOR.value
        else:
            raise ForbiddenError("You do not have access to this appointment")

        with UnitOfWork(self.db) as uow:
            refunded = self._refund(uow, appointment, cancelled_by)
            self._release_held_slots(appointment)
            self.repo.update(
                self.db,
                appointment,
                status=AppointmentStatus.CANCELLED.value,
                cancelled_by=cancelled_by,
                cancellation_reason=reason,
                cancelled_at=utcnow(),
                payment_status=PaymentStatus.REFUNDED.value if refunded else appointment.payment_status,
                checkout_lock_until=None,
                **self._cleared_proposal(),
            )

            message = f"Appointment {appointment.custom_id} was cancelled by the {cancelled_by}"
            if reason:
                message += f". Reason: {reason}"
            if cancelled_by != Role.PATIENT.value:
                uow.after_commit(
                    notify_quietly, self.notifications, appointment.patient_id,
                    "Appointment Cancelled", message, "warning", appointment.id,
                )
            if cancelled_by != Role.DOCTOR.value:
                uow.after_commit(
                    notify_quietly, self.notifications, appointment.doctor.user_id,
                    "Appointment Cancelled", message, "warning", appointment.id,
                )

        logger.info(f"🚫 Appointment {appointment.custom_id} cancelled by {cancelled_by}")
        return to_response(appointment)

    def _refund(self, uow: UnitOfWork, appointment: Appointment, cancelled_by: str) -> bool:
        """Ledger side of a cancellation or rejection; no-op unless the appointment was paid"""
        if appointment.payment_status != PaymentStatus.PAID.value:
            return False

        plan = plan_refund(
            appointment.consultation_fees,
            appointment.admin_commission,
            appointment.doctor_earnings,
            cancelled_by,
        )
        doctor_account = appointment.doctor.user_id

        if plan.full_refund:
            balance = self.ledger.balance(self.db, str(doctor_account))
            if balance < plan.doctor_debit:
                logger.warning(
                    f"⚠️ Cancellation of {appointment.custom_id} blocked: doctor balance {balance:.2f} "
                    f"< {plan.doctor_debit:.2f}"
                )
                raise BadRequestError(
                    "Doctor wallet balance is insufficient to refund this appointment. Please contact support"
                )

        memo = f"{'Refund' if plan.full_refund else 'Partial refund'} for appointment {appointment.custom_id}"
        self.ledger.credit(
            uow, appointment.patient_id, plan.patient_refund, memo, appointment.id, LedgerCategory.REFUND.value
        )
        self.ledger.debit(
            uow, doctor_account, plan.doctor_debit,
            f"Earnings reversal for appointment {appointment.custom_id}",
            appointment.id, LedgerCategory.REVERSAL.value,
        )
        self.ledger.debit(
            uow, PLATFORM_ACCOUNT_ID, plan.platform_debit,
            f"Commission reversal for appointment {appointment.custom_id}",
            appointment.id, LedgerCategory.REVERSAL.value,
        )
        logger.info(
            f"💸 Refund plan for {appointment.custom_id}: patient +{plan.patient_refund:.2f}, "
            f"doctor -{plan.doctor_debit:.2f}, platform -{plan.platform_debit:.2f}"
        )
        return True

    # --- Rescheduling ---------------------------------------------------

    def reschedule_appointment(self, appointment_id, actor: Actor, data: RescheduleRequest) -> AppointmentResponse:
        """
        Doctor: propose a new date/time/slot for the patient to accept.
        Patient: move the booking straight away; it goes back to pending.
        """
        appointment = self._get(appointment_id)
        if self._is_doctor(appointment, actor):
            proposer = Role.DOCTOR.value
        elif self._is_patient(appointment, actor):
            proposer = Role.PATIENT.value
        else:
            raise ForbiddenError("You do not have access to this appointment")

        if appointment.status not in RESCHEDULABLE_STATUSES:
            raise BadRequestError(f"Cannot reschedule an appointment that is {appointment.status}")
        if (appointment.reschedule_count or 0) >= MAX_RESCHEDULE:
            raise BadRequestError(f"Maximum reschedule limit ({MAX_RESCHEDULE}) reached")

        time_range = normalize_time_range(data.time)
        start_time, _ = split_time_range(time_range)
        new_date = day_start(data.date)

        with UnitOfWork(self.db) as uow:
            # A newer request supersedes an open proposal
            if appointment.reschedule_slot_id and appointment.reschedule_slot_id != appointment.slot_id:
                self.schedules.release_slot(
                    self.db, appointment.doctor_id, appointment.reschedule_slot_id,
                    appointment.reschedule_date, split_time_range(appointment.reschedule_time or "")[0],
                )

            new_slot_code = self._book_new_slot(appointment, data, start_time)

            if proposer == Role.DOCTOR.value:
                self.repo.update(
                    self.db,
                    appointment,
                    status=AppointmentStatus.RESCHEDULE_REQUESTED.value,
                    reschedule_date=new_date,
                    reschedule_time=time_range,
                    reschedule_slot_id=new_slot_code,
                    reschedule_reason=data.reason,
                    reschedule_reject_reason=None,
                )
                uow.after_commit(
                    notify_quietly, self.notifications, appointment.patient_id,
                    "Reschedule Requested",
                    f"The doctor proposed moving appointment {appointment.custom_id} to "
                    f"{data.date.isoformat()} at {time_range}",
                    "info", appointment.id,
                )
            else:
                if new_slot_code != appointment.slot_id:
                    self._release_current_slot(appointment)
                self.repo.update(
                    self.db,
                    appointment,
                    status=AppointmentStatus.PENDING.value,
                    appointment_date=new_date,
                    appointment_time=time_range,
                    slot_id=new_slot_code,
                    reschedule_count=(appointment.reschedule_count or 0) + 1,
                    reminder_sent=False,
                    start_notification_sent=False,
                    **self._cleared_proposal(),
                )
                uow.after_commit(
                    notify_quietly, self.notifications, appointment.doctor.user_id,
                    "Appointment Rescheduled",
                    f"Appointment {appointment.custom_id} was moved by the patient to "
                    f"{data.date.isoformat()} at {time_range}",
                    "info", appointment.id,
                )

        logger.info(f"🔄 Appointment {appointment.custom_id} rescheduled by {proposer} to {data.date} {time_range}")
        return to_response(appointment)

    def _book_new_slot(self, appointment: Appointment, data: RescheduleRequest, start_time: str) -> Optional[str]:
        if not data.slotId:
            return None
        slot = self.schedules.find_slot(self.db, appointment.doctor_id, data.slotId, data.date, start_time)
        if slot is None:
            raise BadRequestError("Selected slot does not exist")
        if slot.slot_code == appointment.slot_id:
            # Same weekly slot on another date; the booking already holds it
            return slot.slot_code
        if not self.schedules.try_book_slot(self.db, appointment.doctor_id, slot.slot_code, data.date, start_time):
            raise BadRequestError("Selected slot is not available")
        return slot.slot_code

    def accept_reschedule(self, appointment_id, actor: Actor) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_patient(appointment, actor)

        if appointment.status != AppointmentStatus.RESCHEDULE_REQUESTED.value:
            raise BadRequestError("There is no reschedule request to accept")
        if (appointment.reschedule_count or 0) >= MAX_RESCHEDULE:
            raise BadRequestError(f"Maximum reschedule limit ({MAX_RESCHEDULE}) reached")

        # Unpaid bookings go back to the approval queue instead of skipping payment
        status = (
            AppointmentStatus.CONFIRMED.value
            if appointment.payment_status == PaymentStatus.PAID.value
            else AppointmentStatus.PENDING.value
        )

        with UnitOfWork(self.db) as uow:
            if appointment.slot_id != appointment.reschedule_slot_id:
                self._release_current_slot(appointment)
            self.repo.update(
                self.db,
                appointment,
                status=status,
                appointment_date=appointment.reschedule_date,
                appointment_time=appointment.reschedule_time,
                slot_id=appointment.reschedule_slot_id,
                reschedule_count=(appointment.reschedule_count or 0) + 1,
                reminder_sent=False,
                start_notification_sent=False,
                **self._cleared_proposal(),
            )
            uow.after_commit(
                notify_quietly, self.notifications, appointment.doctor.user_id,
                "Reschedule Accepted",
                f"The patient accepted the new time for appointment {appointment.custom_id}",
                "success", appointment.id,
            )

        logger.info(f"✅ Reschedule accepted for {appointment.custom_id}")
        return to_response(appointment)

    def reject_reschedule(self, appointment_id, actor: Actor, reason: Optional[str] = None) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_patient(appointment, actor)

        if appointment.status != AppointmentStatus.RESCHEDULE_REQUESTED.value:
            raise BadRequestError("There is no reschedule request to reject")

        with UnitOfWork(self.db) as uow:
            if appointment.reschedule_slot_id and appointment.reschedule_slot_id != appointment.slot_id:
                self.schedules.release_slot(
                    self.db, appointment.doctor_id, appointment.reschedule_slot_id,
                    appointment.reschedule_date, split_time_range(appointment.reschedule_time or "")[0],
                )
            self.repo.update(
                self.db,
                appointment,
                status=AppointmentStatus.PENDING.value,
                reschedule_reject_reason=reason,
                **self._cleared_proposal(),
            )
            uow.after_commit(
                notify_quietly, self.notifications, appointment.doctor.user_id,
                "Reschedule Declined",
                f"The patient declined the new time for appointment {appointment.custom_id}"
                + (f". Reason: {reason}" if reason else ""),
                "warning", appointment.id,
            )

        logger.info(f"↩️ Reschedule rejected for {appointment.custom_id}")
        return to_response(appointment)

    @staticmethod
    def _cleared_proposal() -> dict:
        return {
            "reschedule_date": None,
            "reschedule_time": None,
            "reschedule_slot_id": None,
            "reschedule_reason": None,
        }

    # --- Clinical notes -------------------------------------------------

    def add_note(self, appointment_id, actor: Actor, data: NoteCreate) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_doctor(appointment, actor)
        if appointment.status not in NOTE_STATUSES:
            raise BadRequestError("Notes can only be added to confirmed or completed appointments")

        note = {
            "id": uuid.uuid4().hex,
            "title": data.title,
            "description": data.description,
            "category": data.category.value,
            "dosage": data.dosage,
            "frequency": data.frequency,
            "duration": data.duration,
            "created_at": utcnow().isoformat(),
        }
        with UnitOfWork(self.db):
            # New list so the JSON column registers the change
            self.repo.update(self.db, appointment, notes=list(appointment.notes or []) + [note])

        logger.info(f"📝 Note added to {appointment.custom_id}")
        return to_response(appointment)

    def delete_note(self, appointment_id, actor: Actor, note_id: str) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_doctor(appointment, actor)

        notes = list(appointment.notes or [])
        remaining = [n for n in notes if n.get("id") != note_id]
        if len(remaining) == len(notes):
            raise NotFoundError("Note not found")

        with UnitOfWork(self.db):
            self.repo.update(self.db, appointment, notes=remaining)

        logger.info(f"🗑️ Note {note_id} removed from {appointment.custom_id}")
        return to_response(appointment)

    # --- Queries --------------------------------------------------------

    def get_appointment(self, appointment_id, actor: Actor) -> AppointmentResponse:
        appointment = self._get(appointment_id)
        self._require_party(appointment, actor)
        return to_response(appointment)

    def list_my_appointments(
        self, actor: Actor, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> AppointmentPage:
        if actor.role == Role.PATIENT:
            filters = [Appointment.patient_id == actor.user_id]
        elif actor.role == Role.DOCTOR:
            filters = [Appointment.doctor_id == self._doctor_for_user(actor).id]
        else:
            raise ForbiddenError("Invalid role for this listing")

        if status:
            filters.append(Appointment.status == status)
        return self._page(filters, page, limit)

    def list_doctor_requests(self, actor: Actor, page: int = 1, limit: int = 10) -> AppointmentPage:
        """Pending requests waiting for the doctor's decision"""
        doctor = self._doctor_for_user(actor)
        filters = [
            Appointment.doctor_id == doctor.id,
            Appointment.status == AppointmentStatus.PENDING.value,
        ]
        return self._page(filters, page, limit)

    def list_all_appointments(
        self, actor: Actor, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> AppointmentPage:
        if actor.role != Role.ADMIN:
            raise ForbiddenError("Only admins can list all appointments")
        filters = [Appointment.status == status] if status else []
        return self._page(filters, page, limit)

    def _page(self, filters: list, page: int, limit: int) -> AppointmentPage:
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 10), 1), 100)
        items, total = self.repo.paginate(self.db, filters, page, limit)
        return AppointmentPage(
            appointments=[to_response(a) for a in items],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    # --- Helpers --------------------------------------------------------

    def _get(self, appointment_id) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def _doctor_for_user(self, actor: Actor) -> Doctor:
        if actor.role != Role.DOCTOR:
            raise ForbiddenError("Only doctors can perform this action")
        doctor = self.repo.get_doctor_by_user_id(self.db, actor.user_id)
        if not doctor:
            raise NotFoundError("Doctor not found")
        return doctor

    @staticmethod
    def _is_patient(appointment: Appointment, actor: Actor) -> bool:
        return actor.role == Role.PATIENT and appointment.patient_id == actor.user_id

    @staticmethod
    def _is_doctor(appointment: Appointment, actor: Actor) -> bool:
        return actor.role == Role.DOCTOR and appointment.doctor.user_id == actor.user_id

    def _require_patient(self, appointment: Appointment, actor: Actor) -> None:
        if not self._is_patient(appointment, actor):
            raise ForbiddenError("Only the patient of this appointment can perform this action")

    def _require_doctor(self, appointment: Appointment, actor: Actor) -> None:
        if not self._is_doctor(appointment, actor):
            raise ForbiddenError("Only the doctor of this appointment can perform this action")

    def _require_party(self, appointment: Appointment, actor: Actor) -> None:
        if actor.role == Role.ADMIN:
            return
        if not (self._is_patient(appointment, actor) or self._is_doctor(appointment, actor)):
            raise ForbiddenError("You do not have access to this appointment")

    def _release_current_slot(self, appointment: Appointment) -> None:
        if appointment.slot_id:
            start_time, _ = split_time_range(appointment.appointment_time)
            self.schedules.release_slot(
                self.db, appointment.doctor_id, appointment.slot_id, appointment.appointment_date, start_time
            )

    def _release_held_slots(self, appointment: Appointment) -> None:
        """Release the booked slot and any slot held by an open reschedule proposal"""
        release_appointment_slots(self.db, appointment)


def release_appointment_slots(db: Session, appointment: Appointment) -> None:
    start_time, _ = split_time_range(appointment.appointment_time)
    if appointment.slot_id:
        ScheduleRepository.release_slot(
            db, appointment.doctor_id, appointment.slot_id, appointment.appointment_date, start_time
        )
    if appointment.reschedule_slot_id and appointment.reschedule_slot_id != appointment.slot_id:
        ScheduleRepository.release_slot(
            db,
            appointment.doctor_id,
            appointment.reschedule_slot_id,
            appointment.reschedule_date,
            split_time_range(appointment.reschedule_time or "")[0],
        )


def complete_in_place(db: Session, appointment: Appointment) -> None:
    """Completed status, session ENDED with its end stamp, slot released"""
    now = utcnow()
    duration = None
    if appointment.session_start_time:
        duration = max(int((now - appointment.session_start_time).total_seconds() // 60), 0)

    release_appointment_slots(db, appointment)
    AppointmentRepository.update(
        db,
        appointment,
        status=AppointmentStatus.COMPLETED.value,
        session_status=SessionStatus.ENDED.value,
        session_end_time=now,
        session_duration=duration,
    )
