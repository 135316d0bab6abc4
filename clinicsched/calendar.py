from __future__ import annotations

import bisect
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Iterator

from clinicsched.domain import (
    InvalidConfigError,
    NotFoundError,
    OverlapError,
    Slot,
    SlotNotFreeError,
    SlotStatus,
)


class SlotRange:
    """Slots with ``start <= slot.start <= end``, in start order.

    Nothing is materialised up front and every iteration walks the calendar
    index again, so the same range can be iterated more than once.
    """

    def __init__(self, calendar: Calendar, start: datetime, end: datetime):
        self._calendar = calendar
        self._start = start
        self._end = end

    def __iter__(self) -> Iterator[Slot]:
        starts = self._calendar._starts
        lo = bisect.bisect_left(starts, self._start)
        hi = bisect.bisect_right(starts, self._end)
        for i in range(lo, hi):
            yield self._calendar._by_start[starts[i]]

    def __len__(self) -> int:
        starts = self._calendar._starts
        return max(0, bisect.bisect_right(starts, self._end) - bisect.bisect_left(starts, self._start))


class Calendar:
    """All slots of one doctor, indexed by start time."""

    def __init__(self, doctor_name: str, slot_duration: timedelta, doctor_id: str | None = None):
        if not doctor_name or not doctor_name.strip():
            raise InvalidConfigError("Doctor name cannot be empty")
        if slot_duration <= timedelta(0):
            raise InvalidConfigError("Slot duration must be positive")

        self.doctor_name = doctor_name
        self.doctor_id = doctor_id or uuid.uuid4().hex[:8]
        self.slot_duration = slot_duration

        self._starts: list[datetime] = []
        self._by_start: dict[datetime, Slot] = {}
        self._by_id: dict[str, Slot] = {}

    def __len__(self) -> int:
        return len(self._starts)

    def __iter__(self) -> Iterator[Slot]:
        return (self._by_start[s] for s in list(self._starts))

    def __repr__(self) -> str:
        booked = sum(1 for s in self._by_id.values() if not s.is_free)
        return f"Calendar({self.doctor_name!r}, slots={len(self)}, confirmed={booked})"

    def add_slot(self, slot: Slot) -> None:
        if slot.slot_id in self._by_id:
            raise OverlapError(f"Slot id already present: {slot.slot_id}")

        # Slots never overlap each other, so only the neighbours can collide.
        i = bisect.bisect_left(self._starts, slot.start)
        neighbours = []
        if i > 0:
            neighbours.append(self._by_start[self._starts[i - 1]])
        if i < len(self._starts):
            neighbours.append(self._by_start[self._starts[i]])
        for existing in neighbours:
            if slot.overlaps(existing):
                raise OverlapError(
                    "Time slot overlaps with existing slot: "
                    f"{existing.start:%Y-%m-%d %H:%M} - {existing.end:%Y-%m-%d %H:%M}"
                )

        self._starts.insert(i, slot.start)
        self._by_start[slot.start] = slot
        self._by_id[slot.slot_id] = slot

    def add_slots(self, slots: Iterable[Slot]) -> None:
        for slot in slots:
            self.add_slot(slot)

    def get(self, slot_id: str) -> Slot:
        try:
            return self._by_id[slot_id]
        except KeyError:
            raise NotFoundError(f"Unknown slot: {slot_id}") from None

    def find_slot_at(self, ts: datetime) -> Slot | None:
        i = bisect.bisect_right(self._starts, ts) - 1
        if i < 0:
            return None
        slot = self._by_start[self._starts[i]]
        return slot if slot.contains(ts) else None

    def slots_in_range(self, start: datetime, end: datetime) -> SlotRange:
        return SlotRange(self, start, end)

    def free_slots(self) -> list[Slot]:
        return [s for s in self if s.is_free]

    def confirmed_slots(self) -> list[Slot]:
        return [s for s in self if not s.is_free]

    def mark_confirmed(self, slot_id: str, occupant: str) -> Slot:
        slot = self.get(slot_id)
        if not slot.is_free:
            raise SlotNotFreeError(f"Slot {slot_id} is already confirmed for {slot.occupant}")
        slot.status = SlotStatus.CONFIRMED
        slot.occupant = occupant
        return slot

    def mark_free(self, slot_id: str) -> Slot:
        slot = self.get(slot_id)
        if slot.is_free:
            raise SlotNotFreeError(f"Slot {slot_id} is already free")
        slot.status = SlotStatus.FREE
        slot.occupant = None
        return slot

    def snapshot(self) -> list[Slot]:
        """Detached copies of every slot, for persistence."""
        return [replace(s) for s in self]

    @classmethod
    def from_snapshot(
        cls,
        doctor_name: str,
        slot_duration: timedelta,
        slots: Iterable[Slot],
        doctor_id: str | None = None,
    ) -> Calendar:
        calendar = cls(doctor_name, slot_duration, doctor_id=doctor_id)
        calendar.add_slots(replace(s) for s in slots)
        return calendar
