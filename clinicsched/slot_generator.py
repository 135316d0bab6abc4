from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from clinicsched.calendar import Calendar
from clinicsched.domain import InvalidConfigError, Slot

logger = logging.getLogger(__name__)

WEEKDAYS = (0, 1, 2, 3, 4)


@dataclass(frozen=True)
class WorkingHours:
    """Daily working window of a doctor.

    ``working_days`` uses ``date.weekday()`` numbers (Monday is 0). Slots that
    intersect the optional break are not generated.
    """

    start: time
    end: time
    break_start: time | None = None
    break_end: time | None = None
    working_days: tuple[int, ...] = WEEKDAYS

    def validate(self) -> None:
        if self.start >= self.end:
            raise InvalidConfigError(
                f"Working hours start ({self.start:%H:%M}) must be before end ({self.end:%H:%M})"
            )
        if (self.break_start is None) != (self.break_end is None):
            raise InvalidConfigError("Break needs both a start and an end")
        if self.break_start is not None and self.break_end is not None:
            if self.break_start >= self.break_end:
                raise InvalidConfigError("Break start must be before break end")
            if self.break_start < self.start or self.break_end > self.end:
                raise InvalidConfigError("Break must lie inside working hours")
        bad_days = [d for d in self.working_days if d not in range(7)]
        if bad_days:
            raise InvalidConfigError(f"Invalid working days: {bad_days}. Expected 0 (Monday) .. 6 (Sunday)")

    def in_break(self, start: datetime, end: datetime) -> bool:
        if self.break_start is None or self.break_end is None:
            return False
        return start.time() < self.break_end and end.time() > self.break_start


def slot_id_for(start: datetime) -> str:
    return start.strftime("%Y%m%d-%H%M")


def generate(
    start_date: date,
    end_date: date,
    working_hours: WorkingHours,
    slot_duration: timedelta,
) -> list[Slot]:
    if slot_duration <= timedelta(0):
        raise InvalidConfigError("Slot duration must be positive")
    working_hours.validate()
    if start_date > end_date:
        raise InvalidConfigError(f"Start date {start_date} is after end date {end_date}")

    slots: list[Slot] = []
    day = start_date
    while day <= end_date:
        if day.weekday() in working_hours.working_days:
            current = datetime.combine(day, working_hours.start)
            day_end = datetime.combine(day, working_hours.end)
            # A trailing remainder shorter than one slot is dropped.
            while current + slot_duration <= day_end:
                slot_end = current + slot_duration
                if not working_hours.in_break(current, slot_end):
                    slots.append(Slot(slot_id=slot_id_for(current), start=current, duration=slot_duration))
                current = slot_end
        day += timedelta(days=1)

    return slots


def generate_into(
    calendar: Calendar,
    start_date: date,
    end_date: date,
    working_hours: WorkingHours,
    slot_duration: timedelta | None = None,
) -> list[Slot]:
    """Generate slots and add them to ``calendar``.

    Uses the calendar's own slot duration unless one is given. Fails with
    ``OverlapError`` on the first slot that collides with an existing one;
    slots added before that stay in the calendar.
    """
    slots = generate(start_date, end_date, working_hours, slot_duration or calendar.slot_duration)
    calendar.add_slots(slots)
    logger.info(
        "Generated %d slots for %s (%s .. %s)",
        len(slots),
        calendar.doctor_name,
        start_date.isoformat(),
        end_date.isoformat(),
    )
    return slots
