"""Schedule domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ...shared.schemas import CalendarDate


class TimeSlotIn(BaseModel):
    slotId: Optional[str] = None  # preserved when present, generated when absent
    startTime: str
    endTime: str
    enabled: bool = True
    booked: Optional[bool] = None


class DayScheduleIn(BaseModel):
    day: str
    enabled: bool = False
    slots: list[TimeSlotIn] = []


class ScheduleCreate(BaseModel):
    weeklySchedule: list[DayScheduleIn]
    defaultSlotDuration: Optional[int] = None
    bufferTime: Optional[int] = None
    maxPatientsPerSlot: Optional[int] = None


class ScheduleUpdate(BaseModel):
    weeklySchedule: Optional[list[DayScheduleIn]] = None
    defaultSlotDuration: Optional[int] = None
    bufferTime: Optional[int] = None
    maxPatientsPerSlot: Optional[int] = None
    isActive: Optional[bool] = None


class BlockDateRequest(BaseModel):
    date: CalendarDate
    reason: Optional[str] = None
    slots: Optional[list[str]] = None  # start times; omitted or empty = whole day


class RecurringSlotsRequest(BaseModel):
    days: list[str]
    startTime: str
    endTime: str
    skipOverlappingDays: bool = True


class TimeSlotResponse(BaseModel):
    slotId: str
    startTime: str
    endTime: str
    enabled: bool
    booked: bool


class DayScheduleResponse(BaseModel):
    day: str
    enabled: bool
    slots: list[TimeSlotResponse]


class BlockedDateResponse(BaseModel):
    date: CalendarDate
    reason: Optional[str] = None
    slots: list[str] = []


class ScheduleResponse(BaseModel):
    id: int
    doctorId: int
    weeklySchedule: list[DayScheduleResponse]
    blockedDates: list[BlockedDateResponse]
    defaultSlotDuration: int
    bufferTime: int
    maxPatientsPerSlot: int
    isActive: bool
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AvailableSlotResponse(BaseModel):
    date: CalendarDate
    startTime: str
    endTime: str
    isAvailable: bool
    bookedCount: int
    maxPatients: int
    slotId: str


class RecurringSlotsResponse(BaseModel):
    success: bool
    overlappingDays: list[str]
    nonOverlappingDays: list[str]
    message: str
