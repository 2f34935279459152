"""
Session Service
Live consultation state machine and the post-consultation chat window.

Only the doctor drives the session; the patient may only signal that time is
over (WAITING_FOR_DOCTOR). Once ENDED, the session can no longer change.
Every change is pushed to both parties and to the appointment room after the
commit.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...config import POST_CONSULTATION_WINDOW_HOURS
from ...constants import (
    POST_CHAT_EVENT,
    SESSION_STATUS_EVENT,
    SESSION_TRANSITIONS,
    AppointmentStatus,
    Role,
    SessionStatus,
)
from ...database import UnitOfWork
from ...errors import BadRequestError, ForbiddenError, NotFoundError
from ...models import Appointment
from ...shared.timeutils import local_now, session_end_instant, utcnow
from ..notifications.chat import ChatCollaborator
from ..notifications.service import NotificationSink, notify_quietly
from .repository import AppointmentRepository
from .schemas import Actor, SessionStateResponse
from .service import complete_in_place

logger = logging.getLogger(__name__)

SESSION_NOTICES = {
    SessionStatus.ACTIVE: "Consultation started",
    SessionStatus.WAITING_FOR_DOCTOR: "Consultation time is over. Waiting for the doctor to continue or end the session",
    SessionStatus.CONTINUED_BY_DOCTOR: "Doctor extended the consultation",
    SessionStatus.ENDED: "Consultation ended",
}


class SessionService:
    def __init__(
        self,
        db: Session,
        notifications: NotificationSink,
        chat: Optional[ChatCollaborator] = None,
    ):
        self.db = db
        self.notifications = notifications
        self.chat = chat
        self.repo = AppointmentRepository()

    def update_session_status(self, appointment_id, actor: Actor, status) -> SessionStateResponse:
        try:
            target = SessionStatus(status)
        except ValueError:
            raise BadRequestError(f"Invalid session status: {status}")

        appointment = self._get(appointment_id)
        is_doctor = actor.role == Role.DOCTOR and appointment.doctor.user_id == actor.user_id
        is_patient = actor.role == Role.PATIENT and appointment.patient_id == actor.user_id
        if not (is_doctor or is_patient):
            raise ForbiddenError("You do not have access to this appointment")

        current = SessionStatus(appointment.session_status) if appointment.session_status else None
        if current == SessionStatus.ENDED:
            raise BadRequestError("Session has already ended")
        if not is_doctor and target != SessionStatus.WAITING_FOR_DOCTOR:
            raise ForbiddenError("Only the doctor can change the session to this status")
        if appointment.status != AppointmentStatus.CONFIRMED.value:
            raise BadRequestError("Session can only run for confirmed appointments")
        if target not in SESSION_TRANSITIONS[current]:
            raise BadRequestError(
                f"Invalid session transition from {current.value if current else 'NOT_STARTED'} to {target.value}"
            )

        with UnitOfWork(self.db) as uow:
            notice = self._apply(appointment, current, target)
            self._fan_out(uow, appointment, notice)

        logger.info(f"🩺 Session of {appointment.custom_id}: {current.value if current else '-'} -> {target.value}")
        return self.session_state(appointment)

    def _apply(self, appointment: Appointment, current: Optional[SessionStatus], target: SessionStatus) -> Optional[str]:
        """Write the transition; returns the chat notice to post, if any"""
        if target == SessionStatus.ENDED:
            complete_in_place(self.db, appointment)
            return SESSION_NOTICES[target]

        updates = {"session_status": target.value}
        notice = SESSION_NOTICES[target]
        if target == SessionStatus.ACTIVE:
            if appointment.session_start_time is not None:
                notice = None
            else:
                updates["session_start_time"] = utcnow()
        elif target == SessionStatus.CONTINUED_BY_DOCTOR:
            updates["extension_count"] = (appointment.extension_count or 0) + 1

        self.repo.update(self.db, appointment, **updates)
        return notice

    def expire_session(self, appointment_id) -> bool:
        """Automatic ACTIVE -> WAITING_FOR_DOCTOR once the scheduled end has passed"""
        appointment = self._get(appointment_id)
        if appointment.session_status != SessionStatus.ACTIVE.value:
            return False

        with UnitOfWork(self.db) as uow:
            self.repo.update(self.db, appointment, session_status=SessionStatus.WAITING_FOR_DOCTOR.value)
            self._fan_out(uow, appointment, SESSION_NOTICES[SessionStatus.WAITING_FOR_DOCTOR])
        return True

    def get_session_state(self, appointment_id, actor: Actor) -> SessionStateResponse:
        appointment = self._get(appointment_id)
        if actor.role != Role.ADMIN and not (
            appointment.patient_id == actor.user_id or appointment.doctor.user_id == actor.user_id
        ):
            raise ForbiddenError("You do not have access to this appointment")
        return self.session_state(appointment)

    @staticmethod
    def session_state(appointment: Appointment) -> SessionStateResponse:
        end = session_end_instant(appointment.appointment_date, appointment.appointment_time)
        remaining_ms = 0
        is_expired = False
        if end is not None:
            remaining = end - local_now()
            remaining_ms = max(int(remaining.total_seconds() * 1000), 0)
            is_expired = remaining.total_seconds() <= 0

        return SessionStateResponse(
            status=appointment.session_status,
            time_remaining_ms=remaining_ms,
            can_extend=appointment.session_status == SessionStatus.WAITING_FOR_DOCTOR.value,
            is_expired=is_expired,
            extension_count=appointment.extension_count or 0,
            session_start_time=appointment.session_start_time,
            session_end_time=appointment.session_end_time,
            test_needed=bool(appointment.test_needed),
        )

    # --- Post-consultation chat -----------------------------------------

    def enable_post_consultation_chat(self, appointment_id, actor: Actor) -> dict:
        appointment = self._get(appointment_id)
        self._require_doctor(appointment, actor)
        if appointment.status != AppointmentStatus.COMPLETED.value:
            raise BadRequestError("Post-consultation chat is only available for completed appointments")

        now = utcnow()
        expires_at = now + timedelta(hours=POST_CONSULTATION_WINDOW_HOURS)
        with UnitOfWork(self.db) as uow:
            self.repo.update(
                self.db,
                appointment,
                post_chat_active=True,
                post_chat_enabled_at=now,
                post_chat_expires_at=expires_at,
                test_needed=True,
            )
            self._fan_out_post_chat(
                uow,
                appointment,
                f"The doctor has opened a follow-up chat for the next {POST_CONSULTATION_WINDOW_HOURS} hours. "
                "You can share your test results here",
            )
            uow.after_commit(
                notify_quietly, self.notifications, appointment.patient_id,
                "Follow-up Chat Enabled",
                f"You can message your doctor about appointment {appointment.custom_id} "
                f"for the next {POST_CONSULTATION_WINDOW_HOURS} hours",
                "info", appointment.id,
            )

        logger.info(f"💬 Post-consultation chat enabled for {appointment.custom_id} until {expires_at.isoformat()}")
        return post_chat_state(appointment)

    def disable_post_consultation_chat(self, appointment_id, actor: Actor) -> dict:
        appointment = self._get(appointment_id)
        self._require_doctor(appointment, actor)

        with UnitOfWork(self.db) as uow:
            self.repo.update(
                self.db,
                appointment,
                post_chat_active=False,
                post_chat_expires_at=utcnow(),
                test_needed=False,
            )
            self._fan_out_post_chat(uow, appointment, "The doctor has closed the follow-up chat")

        logger.info(f"💬 Post-consultation chat disabled for {appointment.custom_id}")
        return post_chat_state(appointment)

    # --- Helpers --------------------------------------------------------

    def _get(self, appointment_id) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    @staticmethod
    def _require_doctor(appointment: Appointment, actor: Actor) -> None:
        if actor.role != Role.DOCTOR or appointment.doctor.user_id != actor.user_id:
            raise ForbiddenError("Only the doctor of this appointment can perform this action")

    def _fan_out(self, uow: UnitOfWork, appointment: Appointment, notice: Optional[str]) -> None:
        payload = {
            "appointmentId": appointment.id,
            "status": appointment.session_status,
            "appointmentStatus": appointment.status,
            "extensionCount": appointment.extension_count or 0,
        }
        self._queue_push(uow, appointment, SESSION_STATUS_EVENT, payload, notice)

    def _fan_out_post_chat(self, uow: UnitOfWork, appointment: Appointment, notice: str) -> None:
        self._queue_push(uow, appointment, POST_CHAT_EVENT, post_chat_state(appointment), notice)

    def _queue_push(self, uow: UnitOfWork, appointment: Appointment, event: str, payload: dict, notice: Optional[str]):
        if notice and self.chat is not None:
            uow.after_commit(self.chat.post_system_notice, appointment.id, notice)
        for user_id in (appointment.patient_id, appointment.doctor.user_id):
            uow.after_commit(self.notifications.push_to_user, user_id, event, dict(payload))
        uow.after_commit(self.notifications.broadcast_to_room, appointment.id, event, dict(payload))


def post_chat_state(appointment: Appointment) -> dict:
    """Window is open while flagged active and not past its expiry"""
    expires_at = appointment.post_chat_expires_at
    is_open = bool(appointment.post_chat_active) and expires_at is not None and expires_at > utcnow()
    return {
        "appointmentId": appointment.id,
        "isActive": is_open,
        "expiresAt": expires_at.isoformat() if expires_at else None,
        "testNeeded": bool(appointment.test_needed),
    }
