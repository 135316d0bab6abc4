from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Union


class SchedulingError(RuntimeError):
    """Base class for every error raised by the scheduling core."""


class InvalidConfigError(SchedulingError):
    """Bad generation parameters, settings or request fields."""


class OverlapError(SchedulingError):
    """A slot insertion conflicts with a slot already in the calendar."""


class SlotNotFreeError(SchedulingError):
    """A slot is not in the state the requested transition needs."""


class NotFoundError(SchedulingError):
    """A calendar, slot or booking that an operation refers to does not exist."""


class EmptyQueueError(SchedulingError):
    """The request queue has nothing left.

    This is the normal end of a drain loop, not a failure.
    """


class RequestStateError(SchedulingError):
    """A request was submitted or scheduled outside of its Pending state."""


class Priority(enum.IntEnum):
    # Lower value is dequeued first.
    EMERGENCY = 0
    URGENT = 1
    ROUTINE = 2

    @classmethod
    def parse(cls, value: str) -> Priority:
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise InvalidConfigError(
                f"Invalid priority: {value!r}. Must be one of: emergency, urgent, routine"
            ) from None

    @property
    def label(self) -> str:
        return self.name.capitalize()


class SlotStatus(str, enum.Enum):
    FREE = "free"
    CONFIRMED = "confirmed"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    WITHDRAWN = "withdrawn"


class RejectionReason(str, enum.Enum):
    NO_AVAILABLE_SLOT = "NoAvailableSlot"


@dataclass
class Slot:
    """One bookable unit of time on a doctor's calendar.

    The range is half-open: ``[start, end)``. ``occupant`` holds the id of the
    request that booked the slot and is set only while the slot is Confirmed.
    """

    slot_id: str
    start: datetime
    duration: timedelta
    status: SlotStatus = SlotStatus.FREE
    occupant: str | None = None

    def __post_init__(self) -> None:
        if self.duration <= timedelta(0):
            raise InvalidConfigError(f"Slot {self.slot_id} must have a positive duration")
        if (self.status is SlotStatus.CONFIRMED) != (self.occupant is not None):
            raise InvalidConfigError(
                f"Slot {self.slot_id}: a confirmed slot needs exactly one occupant, a free slot none"
            )

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def is_free(self) -> bool:
        return self.status is SlotStatus.FREE

    def overlaps(self, other: Slot) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end


@dataclass
class AppointmentRequest:
    """A patient's wish for an appointment.

    ``request_id`` and ``sequence`` are filled in by the request queue on
    submission. ``flexibility`` is the largest allowed distance between the
    booked slot start and ``desired_start``, inclusive on both sides.
    """

    patient_name: str
    desired_start: datetime
    priority: Priority
    flexibility: timedelta = timedelta(0)
    request_id: str | None = None
    sequence: int | None = None
    status: RequestStatus = RequestStatus.PENDING
    reason: str = ""
    patient_contact: str = ""
    doctor_id: str | None = None

    def __post_init__(self) -> None:
        if not self.patient_name or not self.patient_name.strip():
            raise InvalidConfigError("Patient name cannot be empty")
        if self.flexibility < timedelta(0):
            raise InvalidConfigError("Flexibility cannot be negative")

    def sort_key(self) -> tuple[int, int]:
        if self.sequence is None:
            raise RequestStateError(f"Request {self.request_id} has not been submitted")
        return (int(self.priority), self.sequence)


@dataclass(frozen=True)
class Confirmed:
    request_id: str
    slot_id: str
    start: datetime
    offset_applied: timedelta = timedelta(0)


@dataclass(frozen=True)
class Rejected:
    request_id: str
    reason: RejectionReason = RejectionReason.NO_AVAILABLE_SLOT


Outcome = Union[Confirmed, Rejected]
