"""Appointment domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...constants import AppointmentType, NoteCategory, Role
from ...shared.schemas import CalendarDate


class Actor(BaseModel):
    """Authenticated caller of an orchestrator operation"""

    user_id: int
    role: Role


class AppointmentCreate(BaseModel):
    doctorId: int
    appointmentType: AppointmentType
    date: CalendarDate
    time: str  # "HH:MM-HH:MM"
    slotId: Optional[str] = None
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    date: CalendarDate
    time: str
    slotId: Optional[str] = None
    reason: Optional[str] = None


class PaymentRecord(BaseModel):
    paymentId: str
    paymentMethod: Optional[str] = None


class NoteCreate(BaseModel):
    title: str
    description: Optional[str] = None
    category: NoteCategory = NoteCategory.OBSERVATION
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Note title is required")
        return v.strip()


class RescheduleProposal(BaseModel):
    date: Optional[CalendarDate] = None
    time: Optional[str] = None
    slotId: Optional[str] = None
    reason: Optional[str] = None


class SessionInfo(BaseModel):
    status: Optional[str] = None
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    duration: Optional[int] = None
    extensionCount: int = 0
    testNeeded: bool = False
    postChatActive: bool = False
    postChatExpiresAt: Optional[datetime] = None


class AppointmentResponse(BaseModel):
    id: int
    customId: str
    patientId: str
    patientName: Optional[str] = None
    doctorId: str
    doctorName: Optional[str] = None
    appointmentType: str
    appointmentDate: CalendarDate
    appointmentTime: str
    slotId: Optional[str] = None
    reason: Optional[str] = None
    status: str
    paymentStatus: str
    paymentId: Optional[str] = None
    paymentMethod: Optional[str] = None
    consultationFees: float
    adminCommission: float
    doctorEarnings: float
    cancelledBy: Optional[str] = None
    cancellationReason: Optional[str] = None
    rejectionReason: Optional[str] = None
    rescheduleCount: int = 0
    reschedule: Optional[RescheduleProposal] = None
    session: SessionInfo
    notes: list[dict] = []
    checkoutLockUntil: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class SessionStateResponse(BaseModel):
    status: Optional[str] = None
    time_remaining_ms: int
    can_extend: bool
    is_expired: bool
    extension_count: int
    session_start_time: Optional[datetime] = None
    session_end_time: Optional[datetime] = None
    test_needed: bool


class AppointmentPage(BaseModel):
    appointments: list[AppointmentResponse]
    total: int
    page: int
    limit: int
    total_pages: int
