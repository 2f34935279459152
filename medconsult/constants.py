from enum import Enum


class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class AppointmentType(str, Enum):
    VIDEO = "video"
    CHAT = "chat"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    UPCOMING = "upcoming"  # legacy alias of confirmed still present in older records
    RESCHEDULE_REQUESTED = "reschedule_requested"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    WAITING_FOR_DOCTOR = "WAITING_FOR_DOCTOR"
    CONTINUED_BY_DOCTOR = "CONTINUED_BY_DOCTOR"
    ENDED = "ENDED"


class NoteCategory(str, Enum):
    OBSERVATION = "observation"
    DIAGNOSIS = "diagnosis"
    MEDICINE = "medicine"
    LAB_TEST = "lab_test"


class LedgerCategory(str, Enum):
    CONSULTATION_FEE = "consultation_fee"
    REFUND = "refund"
    REVERSAL = "reversal"


# Statuses that hold a slot / count against slot capacity
TERMINAL_STATUSES = {
    AppointmentStatus.COMPLETED.value,
    AppointmentStatus.REJECTED.value,
    AppointmentStatus.CANCELLED.value,
}
CAPACITY_STATUSES = [
    AppointmentStatus.PENDING.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.UPCOMING.value,
]
BLOCKING_STATUSES = CAPACITY_STATUSES + [AppointmentStatus.RESCHEDULE_REQUESTED.value]
RESCHEDULABLE_STATUSES = BLOCKING_STATUSES

# Session machine: allowed target states from each state (None = not started yet)
SESSION_TRANSITIONS = {
    None: {SessionStatus.ACTIVE},
    SessionStatus.ACTIVE: {SessionStatus.ACTIVE, SessionStatus.WAITING_FOR_DOCTOR, SessionStatus.ENDED},
    SessionStatus.WAITING_FOR_DOCTOR: {SessionStatus.CONTINUED_BY_DOCTOR, SessionStatus.ENDED},
    SessionStatus.CONTINUED_BY_DOCTOR: {SessionStatus.WAITING_FOR_DOCTOR, SessionStatus.ENDED},
    SessionStatus.ENDED: set(),
}

# Timer scans sessions in these states; only ACTIVE is ever auto-expired
TIMED_SESSION_STATUSES = [SessionStatus.ACTIVE.value, SessionStatus.CONTINUED_BY_DOCTOR.value]

# Event names pushed over the real-time channel
SESSION_STATUS_EVENT = "session-status-updated"
POST_CHAT_EVENT = "post-consultation-chat-updated"
REMINDER_EVENT = "appointment-reminder"
