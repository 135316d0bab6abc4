from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from clinicsched.calendar import Calendar
from clinicsched.domain import (
    AppointmentRequest,
    Confirmed,
    InvalidConfigError,
    NotFoundError,
    Priority,
    Rejected,
    RejectionReason,
    RequestStateError,
    RequestStatus,
    Slot,
)
from clinicsched.scheduler import Scheduler, find_free_slot

HALF_HOUR = timedelta(minutes=30)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 10, 20, hour, minute)


def _calendar(*starts: datetime) -> Calendar:
    calendar = Calendar("Dr. Test", HALF_HOUR, doctor_id="doc-1")
    for start in starts:
        calendar.add_slot(Slot(slot_id=f"{start:%H%M}", start=start, duration=HALF_HOUR))
    return calendar


def _request(
    request_id: str,
    desired: datetime,
    flexibility_minutes: int = 0,
    priority: Priority = Priority.ROUTINE,
    doctor_id: str | None = None,
) -> AppointmentRequest:
    return AppointmentRequest(
        request_id=request_id,
        patient_name=f"patient {request_id}",
        desired_start=desired,
        priority=priority,
        flexibility=timedelta(minutes=flexibility_minutes),
        doctor_id=doctor_id,
    )


def _assert_bookings_consistent(scheduler: Scheduler, calendar: Calendar) -> None:
    for slot in calendar.confirmed_slots():
        request = scheduler.get_request(slot.occupant)
        assert request.status is RequestStatus.CONFIRMED
        assert scheduler.slot_id_for(slot.occupant) == slot.slot_id
    for request in scheduler.confirmed_requests():
        slot = calendar.get(scheduler.slot_id_for(request.request_id))
        assert slot.occupant == request.request_id


def test_exact_then_fallback_then_rejection() -> None:
    calendar = _calendar(at(9), at(9, 30))
    scheduler = Scheduler()

    first = scheduler.schedule(_request("r1", at(9), 0, Priority.EMERGENCY), calendar)
    assert first == Confirmed(request_id="r1", slot_id="0900", start=at(9), offset_applied=timedelta(0))

    second = scheduler.schedule(_request("r2", at(9), 30, Priority.ROUTINE), calendar)
    assert isinstance(second, Confirmed)
    assert second.slot_id == "0930"
    assert second.offset_applied == timedelta(minutes=30)

    third_request = _request("r3", at(9), 0, Priority.URGENT)
    third = scheduler.schedule(third_request, calendar)
    assert third == Rejected(request_id="r3", reason=RejectionReason.NO_AVAILABLE_SLOT)
    assert third_request.status is RequestStatus.REJECTED

    _assert_bookings_consistent(scheduler, calendar)


def test_fallback_prefers_earlier_slot_on_tie() -> None:
    calendar = _calendar(at(8, 30), at(9), at(9, 30))
    calendar.mark_confirmed("0900", "someone")

    slot = find_free_slot(calendar, at(9), timedelta(minutes=30))
    assert slot.slot_id == "0830"


def test_fallback_prefers_nearer_slot() -> None:
    calendar = _calendar(at(8), at(8, 30), at(9), at(9, 30))
    calendar.mark_confirmed("0900", "someone")
    calendar.mark_confirmed("0830", "someone-else")

    outcome = Scheduler().schedule(_request("r1", at(9), 60), calendar)
    assert outcome.slot_id == "0930"
    assert outcome.offset_applied == timedelta(minutes=30)


def test_fallback_goes_past_first_step() -> None:
    calendar = _calendar(at(8), at(8, 30), at(9), at(9, 30))
    for slot_id in ("0830", "0900", "0930"):
        calendar.mark_confirmed(slot_id, slot_id)

    outcome = Scheduler().schedule(_request("r1", at(9), 60), calendar)
    assert outcome.slot_id == "0800"
    assert outcome.offset_applied == timedelta(minutes=-60)


def test_fallback_stays_inside_flexibility_window() -> None:
    calendar = _calendar(at(9), at(9, 30))
    calendar.mark_confirmed("0900", "someone")

    outcome = Scheduler().schedule(_request("r1", at(9), 29), calendar)
    assert isinstance(outcome, Rejected)
    assert calendar.get("0930").is_free


def test_exact_lookup_matches_slot_containing_desired_time() -> None:
    calendar = _calendar(at(9))
    outcome = Scheduler().schedule(_request("r1", at(9, 10)), calendar)
    assert outcome.slot_id == "0900"
    assert outcome.offset_applied == timedelta(minutes=-10)


def test_fallback_finds_slot_for_off_grid_time() -> None:
    calendar = _calendar(at(9), at(9, 30))
    calendar.mark_confirmed("0900", "someone")

    outcome = Scheduler().schedule(_request("r1", at(9, 10), 20), calendar)
    assert isinstance(outcome, Confirmed)
    assert outcome.slot_id == "0930"
    assert outcome.offset_applied == timedelta(minutes=20)


def test_off_grid_fallback_picks_nearest_side() -> None:
    calendar = _calendar(at(8, 30), at(9), at(9, 30))
    calendar.mark_confirmed("0900", "someone")

    # 08:30 is 40 minutes away, 09:30 only 20.
    slot = find_free_slot(calendar, at(9, 10), timedelta(minutes=40))
    assert slot.slot_id == "0930"


def test_duplicate_request_id_is_not_scheduled_twice() -> None:
    calendar = _calendar(at(9), at(9, 30))
    scheduler = Scheduler()
    scheduler.schedule(_request("r1", at(9)), calendar)

    with pytest.raises(RequestStateError):
        scheduler.schedule(_request("r1", at(9, 30)), calendar)

    assert calendar.get("0930").is_free
    assert scheduler.get_request("r1").desired_start == at(9)
    _assert_bookings_consistent(scheduler, calendar)


def test_missing_calendar_is_not_found() -> None:
    with pytest.raises(NotFoundError):
        Scheduler().schedule(_request("r1", at(9)), None)


def test_request_for_other_calendar_is_not_found() -> None:
    calendar = _calendar(at(9))
    with pytest.raises(NotFoundError):
        Scheduler().schedule(_request("r1", at(9), doctor_id="doc-2"), calendar)
    assert calendar.get("0900").is_free


def test_only_pending_requests_are_scheduled() -> None:
    calendar = _calendar(at(9), at(9, 30))
    scheduler = Scheduler()
    request = _request("r1", at(9))
    scheduler.schedule(request, calendar)

    with pytest.raises(RequestStateError):
        scheduler.schedule(request, calendar)

    unsubmitted = AppointmentRequest(patient_name="x", desired_start=at(9, 30), priority=Priority.URGENT)
    with pytest.raises(RequestStateError):
        scheduler.schedule(unsubmitted, calendar)


def test_cancel_frees_slot_and_second_cancel_fails() -> None:
    calendar = _calendar(at(9))
    scheduler = Scheduler()
    request = _request("r1", at(9))
    scheduler.schedule(request, calendar)

    freed = scheduler.cancel("r1", calendar)
    assert freed.slot_id == "0900"
    assert freed.is_free
    assert request.status is RequestStatus.CANCELLED
    assert scheduler.slot_id_for("r1") is None
    _assert_bookings_consistent(scheduler, calendar)

    with pytest.raises(NotFoundError):
        scheduler.cancel("r1", calendar)


def test_cancelled_slot_can_be_booked_again() -> None:
    calendar = _calendar(at(9))
    scheduler = Scheduler()
    scheduler.schedule(_request("r1", at(9)), calendar)
    scheduler.cancel("r1", calendar)

    outcome = scheduler.schedule(_request("r2", at(9)), calendar)
    assert outcome.slot_id == "0900"
    assert calendar.get("0900").occupant == "r2"


@pytest.mark.parametrize("request_id", ["rejected", "unknown"])
def test_cancel_requires_confirmed_request(request_id: str) -> None:
    calendar = _calendar(at(9))
    calendar.mark_confirmed("0900", "other")
    scheduler = Scheduler()
    scheduler.schedule(_request("rejected", at(9)), calendar)

    with pytest.raises(NotFoundError):
        scheduler.cancel(request_id, calendar)


def test_cancel_against_wrong_calendar_fails() -> None:
    calendar = _calendar(at(9))
    other = _calendar(at(9))
    scheduler = Scheduler()
    scheduler.schedule(_request("r1", at(9)), calendar)

    with pytest.raises(NotFoundError):
        scheduler.cancel("r1", other)
    assert not calendar.get("0900").is_free


def test_reschedule_moves_booking() -> None:
    calendar = _calendar(at(9), at(14))
    scheduler = Scheduler()
    request = _request("r1", at(9))
    scheduler.schedule(request, calendar)

    outcome = scheduler.reschedule("r1", at(14), timedelta(0), calendar)

    assert isinstance(outcome, Confirmed)
    assert outcome.slot_id == "1400"
    assert calendar.get("0900").is_free
    assert request.desired_start == at(14)
    assert request.status is RequestStatus.CONFIRMED
    _assert_bookings_consistent(scheduler, calendar)


def test_failed_reschedule_keeps_booking() -> None:
    calendar = _calendar(at(9), at(14))
    calendar.mark_confirmed("1400", "other")
    scheduler = Scheduler()
    request = _request("r1", at(9))
    scheduler.schedule(request, calendar)

    outcome = scheduler.reschedule("r1", at(14), timedelta(0), calendar)

    assert isinstance(outcome, Rejected)
    assert calendar.get("0900").occupant == "r1"
    assert request.desired_start == at(9)
    assert request.status is RequestStatus.CONFIRMED


def test_reschedule_requires_confirmed_request() -> None:
    with pytest.raises(NotFoundError):
        Scheduler().reschedule("nope", at(9), timedelta(0), _calendar(at(9)))


def test_restore_rebuilds_bookings() -> None:
    calendar = _calendar(at(9), at(9, 30))
    scheduler = Scheduler()
    scheduler.schedule(_request("r1", at(9)), calendar)
    scheduler.schedule(_request("r2", at(9)), calendar)

    restored = Scheduler.restore(scheduler.requests(), calendar)

    assert restored.slot_id_for("r1") == "0900"
    assert restored.get_request("r2").status is RequestStatus.REJECTED
    _assert_bookings_consistent(restored, calendar)


def test_restore_rejects_broken_bookings() -> None:
    calendar = _calendar(at(9))
    calendar.mark_confirmed("0900", "ghost")
    with pytest.raises(InvalidConfigError, match="ghost"):
        Scheduler.restore([], calendar)

    confirmed = _request("r1", at(9, 30))
    confirmed.status = RequestStatus.CONFIRMED
    with pytest.raises(InvalidConfigError, match="holds no slot"):
        Scheduler.restore([confirmed], _calendar(at(9)))
