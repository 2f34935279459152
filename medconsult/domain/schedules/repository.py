"""Schedule repository - Database operations for doctor schedules and slots"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import BlockedDate, Doctor, DoctorSchedule, ScheduleDay, ScheduleSlot
from ...shared.ids import generate_slot_code
from ...shared.timeutils import WEEKDAYS, weekday_name

logger = logging.getLogger(__name__)


class ScheduleRepository:
    """Repository for schedule database operations. Writes flush; the caller's unit of work commits."""

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.id == doctor_id).first()

    @staticmethod
    def get_by_doctor_id(db: Session, doctor_id: int) -> Optional[DoctorSchedule]:
        return (
            db.query(DoctorSchedule)
            .options(
                selectinload(DoctorSchedule.days).selectinload(ScheduleDay.slots),
                selectinload(DoctorSchedule.blocked_dates),
            )
            .filter(DoctorSchedule.doctor_id == doctor_id)
            .first()
        )

    @staticmethod
    def exists_for_doctor(db: Session, doctor_id: int) -> bool:
        return db.query(DoctorSchedule.id).filter(DoctorSchedule.doctor_id == doctor_id).first() is not None

    @staticmethod
    def create_schedule(db: Session, doctor_id: int, weekly: list[dict], **tunables) -> DoctorSchedule:
        """
        Create a schedule with its 7 days.

        ``weekly`` items are dicts: {"day", "enabled", "slots": [{"slotId", "startTime", "endTime", "enabled"}]}
        """
        schedule = DoctorSchedule(doctor_id=doctor_id, **tunables)
        db.add(schedule)
        db.flush()

        ScheduleRepository.replace_weekly_schedule(db, schedule, weekly)
        return schedule

    @staticmethod
    def replace_weekly_schedule(db: Session, schedule: DoctorSchedule, weekly: list[dict]) -> DoctorSchedule:
        """
        Rewrite the weekly template in place.

        Slots matched by their short code keep that code (and their booked
        flag); slots without a code get a fresh one; slots no longer listed
        for a day are removed.
        """
        days_by_name = {d.day: d for d in schedule.days}
        order = {name: i for i, name in enumerate(WEEKDAYS)}
        codes_in_use = {s.slot_code for d in schedule.days for s in d.slots}

        for entry in weekly:
            day = days_by_name.get(entry["day"])
            if day is None:
                day = ScheduleDay(day=entry["day"], position=order[entry["day"]])
                schedule.days.append(day)
                days_by_name[entry["day"]] = day
            day.enabled = bool(entry.get("enabled"))

            existing = {s.slot_code: s for s in day.slots}
            kept = []
            for position, slot_data in enumerate(entry.get("slots") or []):
                code = slot_data.get("slotId")
                slot = existing.pop(code, None) if code else None
                if slot is None:
                    # A code owned by another day stays with that day
                    if not code or code in codes_in_use:
                        code = generate_slot_code()
                    codes_in_use.add(code)
                    slot = ScheduleSlot(
                        doctor_id=schedule.doctor_id,
                        weekday=entry["day"],
                        slot_code=code,
                        booked=bool(slot_data.get("booked") or False),
                    )
                slot.start_time = slot_data["startTime"]
                slot.end_time = slot_data["endTime"]
                slot.enabled = slot_data.get("enabled", True)
                slot.position = position
                kept.append(slot)

            # Removing from the collection deletes the orphans
            day.slots = kept

        db.flush()
        return schedule

    @staticmethod
    def update_schedule(db: Session, schedule: DoctorSchedule, **updates) -> DoctorSchedule:
        for key, value in updates.items():
            if value is not None and hasattr(schedule, key):
                setattr(schedule, key, value)
        db.flush()
        return schedule

    # --- Slot allocator -------------------------------------------------

    @staticmethod
    def find_slot(
        db: Session,
        doctor_id: int,
        slot_code: Optional[str],
        appointment_date=None,
        start_time: Optional[str] = None,
    ) -> Optional[ScheduleSlot]:
        """Slot by short code, else by (weekday of the date, start time)"""
        if slot_code:
            slot = (
                db.query(ScheduleSlot)
                .filter(ScheduleSlot.doctor_id == doctor_id, ScheduleSlot.slot_code == slot_code)
                .first()
            )
            if slot:
                return slot

        if appointment_date is None or not start_time:
            return None

        return (
            db.query(ScheduleSlot)
            .filter(
                ScheduleSlot.doctor_id == doctor_id,
                ScheduleSlot.weekday == weekday_name(appointment_date),
                ScheduleSlot.start_time == start_time,
            )
            .first()
        )

    @staticmethod
    def set_slot_booked(
        db: Session,
        doctor_id: int,
        slot_code: Optional[str],
        booked: bool,
        appointment_date=None,
        start_time: Optional[str] = None,
    ) -> bool:
        """
        Compare-and-swap on the booked flag.

        The write is conditioned on the flag still holding the opposite value,
        so of two concurrent bookings only one sees a modified row. Returns
        True when this call changed the flag.
        """
        slot = ScheduleRepository.find_slot(db, doctor_id, slot_code, appointment_date, start_time)
        if slot is None:
            return False

        updated = (
            db.query(ScheduleSlot)
            .filter(ScheduleSlot.id == slot.id, ScheduleSlot.booked == (not booked))
            .update({ScheduleSlot.booked: booked}, synchronize_session=False)
        )
        db.expire(slot, ["booked"])
        return updated > 0

    @staticmethod
    def try_book_slot(db: Session, doctor_id: int, slot_code: Optional[str], appointment_date=None, start_time=None) -> bool:
        return ScheduleRepository.set_slot_booked(db, doctor_id, slot_code, True, appointment_date, start_time)

    @staticmethod
    def release_slot(db: Session, doctor_id: int, slot_code: Optional[str], appointment_date=None, start_time=None) -> bool:
        released = ScheduleRepository.set_slot_booked(db, doctor_id, slot_code, False, appointment_date, start_time)
        if not released:
            logger.debug(f"Slot {slot_code} for doctor {doctor_id} was not booked or not found")
        return released

    # --- Blocked dates --------------------------------------------------

    @staticmethod
    def get_blocked_date(db: Session, schedule_id: int, day: date) -> Optional[BlockedDate]:
        return (
            db.query(BlockedDate)
            .filter(BlockedDate.schedule_id == schedule_id, BlockedDate.date == day)
            .first()
        )

    @staticmethod
    def upsert_blocked_date(
        db: Session, schedule: DoctorSchedule, day: date, reason: Optional[str], slots: list[str]
    ) -> BlockedDate:
        """A second block on the same date merges into the first"""
        blocked = ScheduleRepository.get_blocked_date(db, schedule.id, day)
        if blocked is None:
            blocked = BlockedDate(date=day, reason=reason, slots=list(slots))
            schedule.blocked_dates.append(blocked)
        else:
            if reason:
                blocked.reason = reason
            if not blocked.slots or not slots:
                # Either block covers the whole day
                blocked.slots = []
            else:
                blocked.slots = sorted(set(blocked.slots) | set(slots))
        db.flush()
        return blocked

    @staticmethod
    def delete_blocked_date(db: Session, blocked: BlockedDate) -> None:
        db.delete(blocked)
        db.flush()
