"""Weekly template and blocking rules"""

from datetime import date
from typing import Optional

from ...config import BLOCK_REASON_MAX_LENGTH, MAX_SLOTS_PER_DAY, MIN_SLOT_MINUTES
from ...errors import BadRequestError
from ...shared.timeutils import WEEKDAYS, is_valid_time, time_to_minutes
from .schemas import BlockDateRequest, DayScheduleIn, ScheduleCreate, ScheduleUpdate

SLOT_DURATION_RANGE = (15, 120)
BUFFER_TIME_RANGE = (0, 30)
MAX_PATIENTS_RANGE = (1, 10)


class ScheduleValidator:
    @staticmethod
    def validate_create(data: ScheduleCreate) -> None:
        ScheduleValidator.validate_weekly_schedule(data.weeklySchedule)
        ScheduleValidator.validate_tunables(
            data.defaultSlotDuration, data.bufferTime, data.maxPatientsPerSlot
        )

    @staticmethod
    def validate_update(data: ScheduleUpdate) -> None:
        if data.weeklySchedule is not None:
            ScheduleValidator.validate_weekly_schedule(data.weeklySchedule)
        ScheduleValidator.validate_tunables(
            data.defaultSlotDuration, data.bufferTime, data.maxPatientsPerSlot
        )

    @staticmethod
    def validate_weekly_schedule(weekly: list[DayScheduleIn]) -> None:
        if len(weekly) != 7:
            raise BadRequestError("Weekly schedule must contain all 7 days")

        seen = set()
        for day in weekly:
            if day.day not in WEEKDAYS:
                raise BadRequestError(f"Invalid day: {day.day}")
            if day.day in seen:
                raise BadRequestError(f"Duplicate day found: {day.day}")
            seen.add(day.day)

            if not day.enabled:
                continue

            if not day.slots:
                raise BadRequestError(f"At least one slot is required when day {day.day} is enabled")
            if len(day.slots) > MAX_SLOTS_PER_DAY:
                raise BadRequestError(
                    f"Slot limit exceeded: max {MAX_SLOTS_PER_DAY} slots per day allowed"
                )

            for slot in day.slots:
                ScheduleValidator.validate_time_slot(slot.startTime, slot.endTime)
            ScheduleValidator.validate_no_overlap([(s.startTime, s.endTime) for s in day.slots])

    @staticmethod
    def validate_time_slot(start: str, end: str) -> None:
        if not is_valid_time(start):
            raise BadRequestError(f"Invalid start time format: {start}. Use HH:MM format")
        if not is_valid_time(end):
            raise BadRequestError(f"Invalid end time format: {end}. Use HH:MM format")

        start_minutes = time_to_minutes(start)
        end_minutes = time_to_minutes(end)
        if start_minutes >= end_minutes:
            raise BadRequestError(f"Start time ({start}) must be before end time ({end})")
        if end_minutes - start_minutes < MIN_SLOT_MINUTES:
            raise BadRequestError(
                f"Slot duration must be at least {MIN_SLOT_MINUTES} minutes ({start} - {end})"
            )

    @staticmethod
    def validate_no_overlap(ranges: list[tuple[str, str]]) -> None:
        for i in range(len(ranges)):
            for j in range(i + 1, len(ranges)):
                if ranges_overlap(ranges[i], ranges[j]):
                    raise BadRequestError(
                        f"Overlapping slots detected: {ranges[i][0]}-{ranges[i][1]} "
                        f"and {ranges[j][0]}-{ranges[j][1]}"
                    )

    @staticmethod
    def validate_tunables(
        slot_duration: Optional[int], buffer_time: Optional[int], max_patients: Optional[int]
    ) -> None:
        if slot_duration is not None and not (
            SLOT_DURATION_RANGE[0] <= slot_duration <= SLOT_DURATION_RANGE[1]
        ):
            raise BadRequestError("Default slot duration must be between 15 and 120 minutes")
        if buffer_time is not None and not (BUFFER_TIME_RANGE[0] <= buffer_time <= BUFFER_TIME_RANGE[1]):
            raise BadRequestError("Buffer time must be between 0 and 30 minutes")
        if max_patients is not None and not (MAX_PATIENTS_RANGE[0] <= max_patients <= MAX_PATIENTS_RANGE[1]):
            raise BadRequestError("Max patients per slot must be between 1 and 10")

    @staticmethod
    def validate_block_date(data: BlockDateRequest, today: date) -> None:
        if data.date < today:
            raise BadRequestError("Cannot block dates in the past")
        if data.reason and len(data.reason) > BLOCK_REASON_MAX_LENGTH:
            raise BadRequestError(f"Reason cannot exceed {BLOCK_REASON_MAX_LENGTH} characters")
        for start in data.slots or []:
            if not is_valid_time(start):
                raise BadRequestError(f"Invalid slot start time: {start}")


def ranges_overlap(first: tuple[str, str], second: tuple[str, str]) -> bool:
    start1, end1 = time_to_minutes(first[0]), time_to_minutes(first[1])
    start2, end2 = time_to_minutes(second[0]), time_to_minutes(second[1])
    return start1 < end2 and start2 < end1
