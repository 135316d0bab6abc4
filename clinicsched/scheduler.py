from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from clinicsched.calendar import Calendar
from clinicsched.domain import (
    AppointmentRequest,
    Confirmed,
    InvalidConfigError,
    NotFoundError,
    Outcome,
    Rejected,
    RejectionReason,
    RequestStateError,
    RequestStatus,
    Slot,
)

logger = logging.getLogger(__name__)


def find_free_slot(calendar: Calendar, desired_start: datetime, flexibility: timedelta) -> Slot | None:
    """Nearest free slot to ``desired_start`` within ``flexibility``.

    The slot containing ``desired_start`` is tried first. After that every
    free slot starting inside ``[desired_start - flexibility, desired_start +
    flexibility]`` is a candidate; the smallest distance wins and on a tie the
    earlier slot does.
    """
    exact = calendar.find_slot_at(desired_start)
    if exact is not None and exact.is_free:
        return exact

    best = None
    best_key = None
    for slot in calendar.slots_in_range(desired_start - flexibility, desired_start + flexibility):
        if not slot.is_free:
            continue
        offset = slot.start - desired_start
        key = (abs(offset), offset)
        if best_key is None or key < best_key:
            best, best_key = slot, key
    return best


class Scheduler:
    """Books requests into a calendar and keeps track of who holds which slot.

    The slot side of the booking lives on ``Slot.occupant``; the request side
    is the ``request_id -> slot_id`` map kept here. Both are only changed
    together, by this class.
    """

    def __init__(self) -> None:
        self._requests: dict[str, AppointmentRequest] = {}
        self._slot_by_request: dict[str, str] = {}

    def schedule(self, request: AppointmentRequest, calendar: Calendar | None) -> Outcome:
        calendar = self._check_calendar(request, calendar)
        if request.request_id is None:
            raise RequestStateError("Request has no id; submit it to a queue first")
        if request.status is not RequestStatus.PENDING:
            raise RequestStateError(f"Request {request.request_id} is {request.status.value}, not pending")
        if request.request_id in self._requests:
            raise RequestStateError(f"Request id {request.request_id} was already scheduled")

        self._requests[request.request_id] = request

        slot = find_free_slot(calendar, request.desired_start, request.flexibility)
        if slot is None:
            request.status = RequestStatus.REJECTED
            logger.info(
                "Rejected %s (%s, %s): no free slot within %s of %s",
                request.request_id,
                request.priority.label,
                request.patient_name,
                request.flexibility,
                f"{request.desired_start:%Y-%m-%d %H:%M}",
            )
            return Rejected(request_id=request.request_id, reason=RejectionReason.NO_AVAILABLE_SLOT)

        return self._book(request, slot, calendar)

    def cancel(self, request_id: str, calendar: Calendar | None) -> Slot:
        """Free the slot held by a confirmed request.

        A second cancel of the same request fails with ``NotFoundError``.
        """
        if calendar is None:
            raise NotFoundError("No calendar to cancel against")
        request, slot = self._confirmed_booking(request_id, calendar)

        calendar.mark_free(slot.slot_id)
        del self._slot_by_request[request_id]
        request.status = RequestStatus.CANCELLED
        logger.info("Cancelled %s (%s), slot %s is free again", request_id, request.patient_name, slot.slot_id)
        return slot

    def reschedule(
        self,
        request_id: str,
        new_desired_start: datetime,
        flexibility: timedelta,
        calendar: Calendar | None,
    ) -> Outcome:
        """Move a confirmed request to the free slot nearest ``new_desired_start``.

        When nothing fits, the current booking is kept and ``Rejected`` is
        returned.
        """
        if calendar is None:
            raise NotFoundError("No calendar to reschedule against")
        if flexibility < timedelta(0):
            raise InvalidConfigError("Flexibility cannot be negative")
        request, old_slot = self._confirmed_booking(request_id, calendar)

        new_slot = find_free_slot(calendar, new_desired_start, flexibility)
        if new_slot is None:
            logger.info("Reschedule of %s rejected, keeping slot %s", request_id, old_slot.slot_id)
            return Rejected(request_id=request_id, reason=RejectionReason.NO_AVAILABLE_SLOT)

        calendar.mark_free(old_slot.slot_id)
        del self._slot_by_request[request_id]
        request.desired_start = new_desired_start
        request.flexibility = flexibility
        logger.info("Rescheduling %s from slot %s", request_id, old_slot.slot_id)
        return self._book(request, new_slot, calendar)

    def get_request(self, request_id: str) -> AppointmentRequest:
        try:
            return self._requests[request_id]
        except KeyError:
            raise NotFoundError(f"Unknown request: {request_id}") from None

    def slot_id_for(self, request_id: str) -> str | None:
        return self._slot_by_request.get(request_id)

    def requests(self) -> list[AppointmentRequest]:
        return list(self._requests.values())

    def confirmed_requests(self) -> list[AppointmentRequest]:
        return [r for r in self._requests.values() if r.status is RequestStatus.CONFIRMED]

    @classmethod
    def restore(cls, requests: Iterable[AppointmentRequest], calendar: Calendar) -> Scheduler:
        """Rebuild the request side of the bookings from saved records."""
        scheduler = cls()
        occupants = {slot.occupant: slot.slot_id for slot in calendar.confirmed_slots()}

        for request in requests:
            if request.request_id is None:
                raise InvalidConfigError("Restored requests must carry an id")
            if request.status is RequestStatus.PENDING:
                raise InvalidConfigError(f"Request {request.request_id} is still pending")
            scheduler._requests[request.request_id] = request
            if request.status is RequestStatus.CONFIRMED:
                slot_id = occupants.pop(request.request_id, None)
                if slot_id is None:
                    raise InvalidConfigError(f"Confirmed request {request.request_id} holds no slot")
                scheduler._slot_by_request[request.request_id] = slot_id

        if occupants:
            raise InvalidConfigError(
                "Slots are held by requests that are not confirmed: " + ", ".join(sorted(occupants))
            )
        return scheduler

    def _book(self, request: AppointmentRequest, slot: Slot, calendar: Calendar) -> Confirmed:
        calendar.mark_confirmed(slot.slot_id, request.request_id)
        self._slot_by_request[request.request_id] = slot.slot_id
        request.status = RequestStatus.CONFIRMED

        offset = slot.start - request.desired_start
        if offset:
            logger.debug("Fallback for %s moved it by %s", request.request_id, offset)
        logger.info(
            "Confirmed %s (%s, %s) at %s",
            request.request_id,
            request.priority.label,
            request.patient_name,
            f"{slot.start:%Y-%m-%d %H:%M}",
        )
        return Confirmed(
            request_id=request.request_id,
            slot_id=slot.slot_id,
            start=slot.start,
            offset_applied=offset,
        )

    def _confirmed_booking(self, request_id: str, calendar: Calendar) -> tuple[AppointmentRequest, Slot]:
        request = self._requests.get(request_id)
        slot_id = self._slot_by_request.get(request_id)
        if request is None or slot_id is None or request.status is not RequestStatus.CONFIRMED:
            raise NotFoundError(f"Request {request_id} is not currently confirmed")

        slot = calendar.get(slot_id)
        if slot.occupant != request_id:
            raise NotFoundError(f"Slot {slot_id} in {calendar.doctor_name}'s calendar is not held by {request_id}")
        return request, slot

    @staticmethod
    def _check_calendar(request: AppointmentRequest, calendar: Calendar | None) -> Calendar:
        if calendar is None:
            raise NotFoundError("No calendar to schedule against")
        if request.doctor_id is not None and request.doctor_id != calendar.doctor_id:
            raise NotFoundError(
                f"Request {request.request_id} is for calendar {request.doctor_id}, not {calendar.doctor_id}"
            )
        return calendar
