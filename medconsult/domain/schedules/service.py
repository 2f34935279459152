"""Schedule service - Business logic for doctor availability"""

import logging

from sqlalchemy.orm import Session

from ...config import (
    DEFAULT_BUFFER_TIME_MINUTES,
    DEFAULT_MAX_PATIENTS_PER_SLOT,
    DEFAULT_SLOT_DURATION_MINUTES,
    MAX_SLOTS_PER_DAY,
)
from ...database import UnitOfWork
from ...errors import BadRequestError, ConflictError, NotFoundError
from ...models import DoctorSchedule
from ...shared.timeutils import WEEKDAYS, local_now, to_calendar_date, weekday_name
from ..appointments.repository import AppointmentRepository
from .repository import ScheduleRepository
from .schemas import (
    AvailableSlotResponse,
    BlockDateRequest,
    BlockedDateResponse,
    DayScheduleResponse,
    RecurringSlotsRequest,
    RecurringSlotsResponse,
    ScheduleCreate,
    ScheduleResponse,
    ScheduleUpdate,
    TimeSlotResponse,
)
from .validators import ScheduleValidator, ranges_overlap

logger = logging.getLogger(__name__)


class ScheduleService:
    """Service layer for doctor schedule business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ScheduleRepository()
        self.appointments = AppointmentRepository()

    def create_schedule(self, doctor_id: int, data: ScheduleCreate) -> ScheduleResponse:
        logger.info(f"📥 Creating schedule for doctor_id: {doctor_id}")

        if not self.repo.get_doctor(self.db, doctor_id):
            raise NotFoundError("Doctor not found")
        if self.repo.exists_for_doctor(self.db, doctor_id):
            raise ConflictError("Schedule already exists for this doctor")

        ScheduleValidator.validate_create(data)

        with UnitOfWork(self.db):
            schedule = self.repo.create_schedule(
                self.db,
                doctor_id,
                [d.model_dump() for d in data.weeklySchedule],
                default_slot_duration=data.defaultSlotDuration or DEFAULT_SLOT_DURATION_MINUTES,
                buffer_time=data.bufferTime if data.bufferTime is not None else DEFAULT_BUFFER_TIME_MINUTES,
                max_patients_per_slot=data.maxPatientsPerSlot or DEFAULT_MAX_PATIENTS_PER_SLOT,
                is_active=True,
            )

        logger.info(f"✅ Schedule {schedule.id} created for doctor {doctor_id}")
        return self._to_response(self._get_schedule(doctor_id))

    def get_schedule_by_doctor(self, doctor_id: int) -> ScheduleResponse:
        return self._to_response(self._get_schedule(doctor_id))

    def update_schedule(self, doctor_id: int, data: ScheduleUpdate) -> ScheduleResponse:
        schedule = self._get_schedule(doctor_id)
        ScheduleValidator.validate_update(data)

        with UnitOfWork(self.db):
            if data.weeklySchedule is not None:
                self.repo.replace_weekly_schedule(
                    self.db, schedule, [d.model_dump() for d in data.weeklySchedule]
                )
            self.repo.update_schedule(
                self.db,
                schedule,
                default_slot_duration=data.defaultSlotDuration,
                buffer_time=data.bufferTime,
                max_patients_per_slot=data.maxPatientsPerSlot,
                is_active=data.isActive,
            )

        logger.info(f"✅ Schedule updated for doctor {doctor_id}")
        return self._to_response(self._get_schedule(doctor_id))

    def delete_schedule(self, doctor_id: int) -> dict:
        """Soft delete: the schedule is deactivated, never removed"""
        schedule = self._get_schedule(doctor_id)
        with UnitOfWork(self.db):
            self.repo.update_schedule(self.db, schedule, is_active=False)
        logger.info(f"🗑️ Schedule deactivated for doctor {doctor_id}")
        return {"message": "Schedule deactivated successfully"}

    def block_date(self, doctor_id: int, data: BlockDateRequest) -> ScheduleResponse:
        schedule = self._get_schedule(doctor_id)
        ScheduleValidator.validate_block_date(data, local_now().date())

        if self.appointments.has_blocking_on_date(self.db, doctor_id, data.date):
            raise ConflictError(
                "Cannot block this date: there are active appointments. Cancel or reschedule them first"
            )

        with UnitOfWork(self.db):
            self.repo.upsert_blocked_date(self.db, schedule, data.date, data.reason, data.slots or [])

        scope = "full day" if not data.slots else f"slots {', '.join(data.slots)}"
        logger.info(f"🚫 Doctor {doctor_id} blocked {data.date.isoformat()} ({scope})")
        return self._to_response(self._get_schedule(doctor_id))

    def unblock_date(self, doctor_id: int, day) -> ScheduleResponse:
        schedule = self._get_schedule(doctor_id)
        try:
            day = to_calendar_date(day)
        except ValueError:
            raise BadRequestError("Invalid date format")

        blocked = self.repo.get_blocked_date(self.db, schedule.id, day)
        if not blocked:
            raise NotFoundError("Blocked date not found")

        with UnitOfWork(self.db):
            self.repo.delete_blocked_date(self.db, blocked)

        logger.info(f"✅ Doctor {doctor_id} unblocked {day.isoformat()}")
        return self._to_response(self._get_schedule(doctor_id))

    def get_available_slots(self, doctor_id: int, day) -> list[AvailableSlotResponse]:
        """Bookable view of one calendar date"""
        try:
            day = to_calendar_date(day)
        except ValueError:
            raise BadRequestError("Invalid date format")

        schedule = self.repo.get_by_doctor_id(self.db, doctor_id)
        if not schedule or not schedule.is_active:
            return []

        template = next((d for d in schedule.days if d.day == weekday_name(day)), None)
        if template is None or not template.enabled:
            return []

        blocked = next((b for b in schedule.blocked_dates if b.date == day), None)
        if blocked is not None and not blocked.slots:
            return []
        blocked_starts = set(blocked.slots) if blocked is not None else set()

        available = []
        for slot in template.slots:
            if not slot.enabled or slot.start_time in blocked_starts:
                continue

            booked_count = self.appointments.count_active_for_slot(
                self.db, doctor_id, day, slot.slot_code, slot.start_time, slot.end_time
            )
            available.append(
                AvailableSlotResponse(
                    date=day,
                    startTime=slot.start_time,
                    endTime=slot.end_time,
                    isAvailable=not slot.booked and booked_count < schedule.max_patients_per_slot,
                    bookedCount=booked_count,
                    maxPatients=schedule.max_patients_per_slot,
                    slotId=slot.slot_code,
                )
            )
        return available

    def add_recurring_slots(self, doctor_id: int, data: RecurringSlotsRequest) -> RecurringSlotsResponse:
        """Add one slot to several weekdays at once; overlapping days are skipped, or rejected when skipping is off"""
        schedule = self._get_schedule(doctor_id)
        ScheduleValidator.validate_time_slot(data.startTime, data.endTime)

        overlapping_days, open_days = [], []
        days = {d.day: d for d in schedule.days}
        for name in data.days:
            if name not in WEEKDAYS:
                raise BadRequestError(f"Invalid day: {name}")

            day = days.get(name)
            existing = [s for s in day.slots if s.enabled] if day is not None and day.enabled else []
            clash = any(ranges_overlap((data.startTime, data.endTime), (s.start_time, s.end_time)) for s in existing)
            full = day is not None and len(day.slots) >= MAX_SLOTS_PER_DAY
            if clash or full:
                overlapping_days.append(name)
            else:
                open_days.append(name)

        if overlapping_days and not data.skipOverlappingDays:
            raise BadRequestError(f"Slot {data.startTime}-{data.endTime} overlaps existing slots on: {', '.join(overlapping_days)}")

        if open_days:
            weekly = self._weekly_as_dicts(schedule)
            for entry in weekly:
                if entry["day"] in open_days:
                    entry["enabled"] = True
                    entry["slots"].append(
                        {"slotId": None, "startTime": data.startTime, "endTime": data.endTime, "enabled": True}
                    )
            with UnitOfWork(self.db):
                self.repo.replace_weekly_schedule(self.db, schedule, weekly)
            logger.info(f"✅ Recurring slot {data.startTime}-{data.endTime} added to {len(open_days)} day(s) for doctor {doctor_id}")

        if overlapping_days:
            message = (
                f"Found overlapping slots on {len(overlapping_days)} day(s). "
                f"Slots added to {len(open_days)} day(s)."
            )
        else:
            message = f"Recurring slots added to {len(open_days)} day(s)."

        return RecurringSlotsResponse(
            success=True, overlappingDays=overlapping_days, nonOverlappingDays=open_days, message=message
        )

    def delete_recurring_slot(self, doctor_id: int, day: str, slot_id: str) -> ScheduleResponse:
        schedule = self._get_schedule(doctor_id)
        return self._remove_slots(schedule, lambda d, s: d == day and s["slotId"] == slot_id)

    def delete_recurring_slots_by_time(self, doctor_id: int, start_time: str, end_time: str) -> ScheduleResponse:
        schedule = self._get_schedule(doctor_id)
        return self._remove_slots(
            schedule, lambda d, s: s["startTime"] == start_time and s["endTime"] == end_time
        )

    def _remove_slots(self, schedule: DoctorSchedule, matches) -> ScheduleResponse:
        """Drop matching slots; a day left without slots is disabled"""
        weekly = self._weekly_as_dicts(schedule)
        removed = 0
        for entry in weekly:
            remaining = [s for s in entry["slots"] if not matches(entry["day"], s)]
            removed += len(entry["slots"]) - len(remaining)
            entry["slots"] = remaining
            if not remaining:
                entry["enabled"] = False

        with UnitOfWork(self.db):
            self.repo.replace_weekly_schedule(self.db, schedule, weekly)

        logger.info(f"🗑️ Removed {removed} recurring slot(s) for doctor {schedule.doctor_id}")
        return self._to_response(self._get_schedule(schedule.doctor_id))

    def _get_schedule(self, doctor_id: int) -> DoctorSchedule:
        schedule = self.repo.get_by_doctor_id(self.db, doctor_id)
        if not schedule:
            raise NotFoundError("Schedule not found")
        return schedule

    @staticmethod
    def _weekly_as_dicts(schedule: DoctorSchedule) -> list[dict]:
        return [
            {
                "day": day.day,
                "enabled": day.enabled,
                "slots": [
                    {
                        "slotId": s.slot_code,
                        "startTime": s.start_time,
                        "endTime": s.end_time,
                        "enabled": s.enabled,
                    }
                    for s in day.slots
                ],
            }
            for day in schedule.days
        ]

    @staticmethod
    def _to_response(schedule: DoctorSchedule) -> ScheduleResponse:
        return ScheduleResponse(
            id=schedule.id,
            doctorId=schedule.doctor_id,
            weeklySchedule=[
                DayScheduleResponse(
                    day=day.day,
                    enabled=day.enabled,
                    slots=[
                        TimeSlotResponse(
                            slotId=s.slot_code,
                            startTime=s.start_time,
                            endTime=s.end_time,
                            enabled=s.enabled,
                            booked=s.booked,
                        )
                        for s in day.slots
                    ],
                )
                for day in schedule.days
            ],
            blockedDates=[
                BlockedDateResponse(date=b.date, reason=b.reason, slots=list(b.slots or []))
                for b in schedule.blocked_dates
            ],
            defaultSlotDuration=schedule.default_slot_duration,
            bufferTime=schedule.buffer_time,
            maxPatientsPerSlot=schedule.max_patients_per_slot,
            isActive=schedule.is_active,
            createdAt=schedule.created_at,
            updatedAt=schedule.updated_at,
        )
