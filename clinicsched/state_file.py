from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from clinicsched.calendar import Calendar
from clinicsched.domain import (
    AppointmentRequest,
    InvalidConfigError,
    Priority,
    RequestStatus,
    Slot,
    SlotStatus,
)
from clinicsched.request_queue import RequestQueue
from clinicsched.scheduler import Scheduler

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    calendar: Calendar
    queue: RequestQueue = field(default_factory=RequestQueue)
    scheduler: Scheduler = field(default_factory=Scheduler)


def _minutes(value: timedelta) -> int:
    return int(value.total_seconds() // 60)


def _slot_to_record(slot: Slot) -> dict[str, Any]:
    return {
        "slot_id": slot.slot_id,
        "start": slot.start.isoformat(),
        "duration_minutes": _minutes(slot.duration),
        "status": slot.status.value,
        "occupant": slot.occupant,
    }


def _slot_from_record(item: dict[str, Any]) -> Slot:
    return Slot(
        slot_id=str(item["slot_id"]),
        start=datetime.fromisoformat(item["start"]),
        duration=timedelta(minutes=int(item["duration_minutes"])),
        status=SlotStatus(item.get("status", SlotStatus.FREE.value)),
        occupant=item.get("occupant"),
    )


def _request_to_record(request: AppointmentRequest) -> dict[str, Any]:
    return {
        "request_id": request.request_id,
        "sequence": request.sequence,
        "patient_name": request.patient_name,
        "patient_contact": request.patient_contact,
        "reason": request.reason,
        "desired_start": request.desired_start.isoformat(),
        "priority": request.priority.name.lower(),
        "flexibility_minutes": _minutes(request.flexibility),
        "status": request.status.value,
        "doctor_id": request.doctor_id,
    }


def _request_from_record(item: dict[str, Any]) -> AppointmentRequest:
    return AppointmentRequest(
        request_id=str(item["request_id"]),
        sequence=int(item["sequence"]),
        patient_name=str(item["patient_name"]),
        patient_contact=str(item.get("patient_contact", "")),
        reason=str(item.get("reason", "")),
        desired_start=datetime.fromisoformat(item["desired_start"]),
        priority=Priority.parse(item["priority"]),
        flexibility=timedelta(minutes=int(item.get("flexibility_minutes", 0))),
        status=RequestStatus(item["status"]),
        doctor_id=item.get("doctor_id"),
    )


def load_state(path: str) -> SessionState | None:
    if not os.path.exists(path):
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError):
        # Corrupted state shouldn't brick the menu; start fresh.
        logger.warning("State file %s is not valid JSON, starting with an empty session", path)
        return None

    try:
        meta = raw["calendar"]
        slots = [_slot_from_record(item) for item in raw.get("slots", [])]
        requests = [_request_from_record(item) for item in raw.get("requests", [])]
        doctor_name = str(meta["doctor_name"])
        doctor_id = meta.get("doctor_id")
        slot_duration = timedelta(minutes=int(meta["slot_duration_minutes"]))
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise InvalidConfigError(f"Malformed state file {path}: {type(e).__name__}: {e}") from e

    calendar = Calendar.from_snapshot(doctor_name, slot_duration, slots, doctor_id=doctor_id)
    pending = [r for r in requests if r.status is RequestStatus.PENDING]
    processed = [r for r in requests if r.status is not RequestStatus.PENDING]
    last_sequence = max((r.sequence for r in requests), default=0)

    state = SessionState(
        calendar=calendar,
        queue=RequestQueue.from_snapshot(pending, last_sequence=last_sequence),
        scheduler=Scheduler.restore(processed, calendar),
    )
    logger.info(
        "Loaded state from %s: slots=%d pending=%d processed=%d",
        path,
        len(calendar),
        len(pending),
        len(processed),
    )
    return state


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome is not None else None
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    logger.warning(
        "Saving state failed on attempt %s (%s), retrying in %ss",
        retry_state.attempt_number,
        f"{type(exc).__name__}: {exc}" if exc else "unknown error",
        sleep_seconds,
    )


def _replace_with_retry(src: str, dst: str, attempts: int) -> None:
    decorated = retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(OSError),
        before_sleep=_log_before_sleep,
        reraise=True,
    )(os.replace)

    decorated(src, dst)


def save_state(path: str, state: SessionState, attempts: int = 3) -> None:
    data = {
        "calendar": {
            "doctor_name": state.calendar.doctor_name,
            "doctor_id": state.calendar.doctor_id,
            "slot_duration_minutes": _minutes(state.calendar.slot_duration),
        },
        "slots": [_slot_to_record(s) for s in state.calendar.snapshot()],
        "requests": [_request_to_record(r) for r in state.scheduler.requests() + state.queue.snapshot()],
    }

    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write
    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    try:
        _replace_with_retry(tmp_name, path, attempts)
    except OSError:
        os.unlink(tmp_name)
        raise
    logger.info("State saved to %s", path)
