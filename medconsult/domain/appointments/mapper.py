"""Appointment row -> response model"""

from typing import Optional

from sqlalchemy import inspect

from ...models import Appointment
from ...shared.refs import Ref, Reference, Resolved, ref_id
from .schemas import AppointmentResponse, RescheduleProposal, SessionInfo


def patient_ref(appointment: Appointment) -> Ref:
    if "patient" in inspect(appointment).unloaded:
        return Reference(appointment.patient_id)
    return Resolved(appointment.patient) if appointment.patient is not None else Reference(appointment.patient_id)


def doctor_ref(appointment: Appointment) -> Ref:
    if "doctor" in inspect(appointment).unloaded:
        return Reference(appointment.doctor_id)
    return Resolved(appointment.doctor) if appointment.doctor is not None else Reference(appointment.doctor_id)


def _display_name(ref: Ref) -> Optional[str]:
    if not isinstance(ref, Resolved):
        return None
    entity = ref.entity
    # Doctor rows carry their name on the linked user
    user = getattr(entity, "user", None)
    return getattr(user, "name", None) or getattr(entity, "name", None)


def to_response(appointment: Appointment) -> AppointmentResponse:
    patient = patient_ref(appointment)
    doctor = doctor_ref(appointment)

    reschedule = None
    if appointment.reschedule_date or appointment.reschedule_time:
        reschedule = RescheduleProposal(
            date=appointment.reschedule_date,
            time=appointment.reschedule_time,
            slotId=appointment.reschedule_slot_id,
            reason=appointment.reschedule_reason,
        )

    return AppointmentResponse(
        id=appointment.id,
        customId=appointment.custom_id,
        patientId=ref_id(patient),
        patientName=_display_name(patient),
        doctorId=ref_id(doctor),
        doctorName=_display_name(doctor),
        appointmentType=appointment.appointment_type,
        appointmentDate=appointment.appointment_date,
        appointmentTime=appointment.appointment_time,
        slotId=appointment.slot_id,
        reason=appointment.reason,
        status=appointment.status,
        paymentStatus=appointment.payment_status,
        paymentId=appointment.payment_id,
        paymentMethod=appointment.payment_method,
        consultationFees=appointment.consultation_fees,
        adminCommission=appointment.admin_commission,
        doctorEarnings=appointment.doctor_earnings,
        cancelledBy=appointment.cancelled_by,
        cancellationReason=appointment.cancellation_reason,
        rejectionReason=appointment.rejection_reason,
        rescheduleCount=appointment.reschedule_count or 0,
        reschedule=reschedule,
        session=SessionInfo(
            status=appointment.session_status,
            startTime=appointment.session_start_time,
            endTime=appointment.session_end_time,
            duration=appointment.session_duration,
            extensionCount=appointment.extension_count or 0,
            testNeeded=bool(appointment.test_needed),
            postChatActive=bool(appointment.post_chat_active),
            postChatExpiresAt=appointment.post_chat_expires_at,
        ),
        notes=list(appointment.notes or []),
        checkoutLockUntil=appointment.checkout_lock_until,
        createdAt=appointment.created_at,
        updatedAt=appointment.updated_at,
    )
