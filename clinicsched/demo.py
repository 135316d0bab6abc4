from __future__ import annotations

import random
from datetime import date, datetime, time, timedelta

from clinicsched.batch import BatchReport, process_all
from clinicsched.calendar import Calendar
from clinicsched.domain import AppointmentRequest, Priority
from clinicsched.request_queue import RequestQueue
from clinicsched.scheduler import Scheduler
from clinicsched.slot_generator import WorkingHours, generate_into
from clinicsched.state_file import SessionState

DEMO_HOURS = WorkingHours(
    start=time(9, 0),
    end=time(17, 0),
    break_start=time(12, 0),
    break_end=time(13, 0),
    working_days=tuple(range(7)),
)

# (name, contact, priority, desired time, flexibility minutes, reason)
FIXED_REQUESTS = (
    ("John Smith", "john@email.com", Priority.ROUTINE, time(10, 0), 60, "Annual checkup"),
    ("Jane Doe", "jane@email.com", Priority.EMERGENCY, time(10, 0), 30, "Severe chest pain"),
    ("Bob Wilson", "bob@email.com", Priority.URGENT, time(14, 0), 60, "Follow-up on test results"),
    ("Alice Brown", "alice@email.com", Priority.ROUTINE, time(11, 0), 120, "Prescription renewal"),
)

_RANDOM_NAMES = (
    "Maria Garcia", "Wei Chen", "Amara Okafor", "Liam Murphy", "Sofia Rossi",
    "Yuki Tanaka", "Omar Haddad", "Elena Petrova", "Noah Cohen", "Priya Nair",
)
_RANDOM_REASONS = ("Checkup", "Blood test review", "Fever", "Back pain", "Vaccination", "Chest pain")


def fixed_requests(day: date) -> list[AppointmentRequest]:
    return [
        AppointmentRequest(
            patient_name=name,
            patient_contact=contact,
            priority=priority,
            desired_start=datetime.combine(day, at),
            flexibility=timedelta(minutes=flex),
            reason=reason,
        )
        for name, contact, priority, at, flex, reason in FIXED_REQUESTS
    ]


def random_requests(day: date, count: int, seed: int | None = None) -> list[AppointmentRequest]:
    rng = random.Random(seed)
    requests = []
    for _ in range(count):
        hour = rng.randint(DEMO_HOURS.start.hour, DEMO_HOURS.end.hour - 1)
        minute = rng.choice((0, 30))
        requests.append(
            AppointmentRequest(
                patient_name=rng.choice(_RANDOM_NAMES),
                priority=rng.choice(list(Priority)),
                desired_start=datetime.combine(day, time(hour, minute)),
                flexibility=timedelta(minutes=rng.choice((0, 30, 60, 120))),
                reason=rng.choice(_RANDOM_REASONS),
            )
        )
    return requests


def run_demo(
    day: date | None = None,
    count: int | None = None,
    seed: int | None = None,
) -> tuple[SessionState, BatchReport]:
    """Build a one-day demo calendar and push a request batch through it.

    Without ``count`` the fixed four-patient batch is used, in which the
    emergency patient wins 10:00 even though a routine patient asked first.
    """
    day = day or (date.today() + timedelta(days=1))
    calendar = Calendar("Dr. Demo", timedelta(minutes=30))
    generate_into(calendar, day, day, DEMO_HOURS)

    queue = RequestQueue()
    requests = fixed_requests(day) if count is None else random_requests(day, count, seed)
    for request in requests:
        queue.submit(request)

    scheduler = Scheduler()
    report = process_all(queue, calendar, scheduler)
    return SessionState(calendar=calendar, queue=queue, scheduler=scheduler), report
