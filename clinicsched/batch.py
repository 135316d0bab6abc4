from __future__ import annotations

import logging
from dataclasses import dataclass, field

from clinicsched.calendar import Calendar
from clinicsched.domain import Confirmed, EmptyQueueError, Outcome, Rejected
from clinicsched.request_queue import RequestQueue
from clinicsched.scheduler import Scheduler

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Outcomes of one drain, in processing (priority) order."""

    entries: list[tuple[str, Outcome]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def confirmed(self) -> list[Confirmed]:
        return [o for _, o in self.entries if isinstance(o, Confirmed)]

    @property
    def rejected(self) -> list[Rejected]:
        return [o for _, o in self.entries if isinstance(o, Rejected)]

    @property
    def success_rate(self) -> float:
        if not self.entries:
            return 0.0
        return len(self.confirmed) / len(self.entries) * 100.0


def process_all(queue: RequestQueue, calendar: Calendar, scheduler: Scheduler | None = None) -> BatchReport:
    """Schedule every pending request, highest priority first.

    Requests are handled one at a time, so each booking is visible to the
    next request. A rejection does not stop the batch.
    """
    scheduler = scheduler or Scheduler()
    report = BatchReport()

    while True:
        try:
            request = queue.pop()
        except EmptyQueueError:
            break
        outcome = scheduler.schedule(request, calendar)
        report.entries.append((request.request_id, outcome))

    logger.info(
        "Batch done: total=%d confirmed=%d rejected=%d",
        report.total,
        len(report.confirmed),
        len(report.rejected),
    )
    return report
