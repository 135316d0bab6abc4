from __future__ import annotations

import heapq
import itertools
import logging
from typing import Iterable

from clinicsched.domain import (
    AppointmentRequest,
    EmptyQueueError,
    NotFoundError,
    RequestStateError,
    RequestStatus,
)

logger = logging.getLogger(__name__)


class RequestQueue:
    """Pending appointment requests, Emergency first, then first come first served.

    Heap entries are ``(priority, sequence, request_id)``. Sequence numbers are
    unique, so no two entries ever compare equal and the requests themselves
    are never compared.
    """

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, str]] = []
        self._pending: dict[str, AppointmentRequest] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def submit(self, request: AppointmentRequest) -> AppointmentRequest:
        if request.sequence is not None:
            raise RequestStateError(
                f"Request {request.request_id} was already submitted (sequence {request.sequence})"
            )
        if request.status is not RequestStatus.PENDING:
            raise RequestStateError(f"Request {request.request_id} is {request.status.value}, not pending")
        sequence = next(self._counter)
        request_id = request.request_id or f"REQ-{sequence:04d}"
        if request_id in self._pending:
            raise RequestStateError(f"Request id {request_id} is already queued")

        request.sequence = sequence
        request.request_id = request_id
        self._push(request)
        logger.debug(
            "Queued %s (%s, seq=%d) for %s",
            request.request_id,
            request.priority.label,
            sequence,
            request.patient_name,
        )
        return request

    def peek(self) -> AppointmentRequest:
        if not self._heap:
            raise EmptyQueueError("No pending requests")
        return self._pending[self._heap[0][2]]

    def pop(self) -> AppointmentRequest:
        if not self._heap:
            raise EmptyQueueError("No pending requests")
        _, _, request_id = heapq.heappop(self._heap)
        return self._pending.pop(request_id)

    def remove(self, request_id: str) -> AppointmentRequest:
        """Withdraw a request before it is processed."""
        try:
            request = self._pending.pop(request_id)
        except KeyError:
            raise NotFoundError(f"No pending request {request_id}") from None

        self._heap = [entry for entry in self._heap if entry[2] != request_id]
        heapq.heapify(self._heap)
        request.status = RequestStatus.WITHDRAWN
        logger.info("Withdrew request %s", request_id)
        return request

    def clear(self) -> int:
        count = len(self._heap)
        for request in self._pending.values():
            request.status = RequestStatus.WITHDRAWN
        self._heap.clear()
        self._pending.clear()
        return count

    def pending(self) -> list[AppointmentRequest]:
        return [self._pending[request_id] for _, _, request_id in sorted(self._heap)]

    def snapshot(self) -> list[AppointmentRequest]:
        return self.pending()

    @classmethod
    def from_snapshot(cls, requests: Iterable[AppointmentRequest], last_sequence: int = 0) -> RequestQueue:
        """Rebuild a queue from already-submitted pending requests.

        Their sequence numbers are kept. New submissions continue after the
        highest of them and ``last_sequence``, which covers requests that
        were already processed and so are no longer queued.
        """
        queue = cls()
        highest = last_sequence
        for request in requests:
            if request.sequence is None or request.request_id is None:
                raise RequestStateError("Restored requests must carry an id and a sequence number")
            if request.status is not RequestStatus.PENDING:
                raise RequestStateError(f"Request {request.request_id} is {request.status.value}, not pending")
            if request.request_id in queue._pending:
                raise RequestStateError(f"Request id {request.request_id} is already queued")
            queue._push(request)
            highest = max(highest, request.sequence)
        queue._counter = itertools.count(highest + 1)
        return queue

    def _push(self, request: AppointmentRequest) -> None:
        priority, sequence = request.sort_key()
        heapq.heappush(self._heap, (priority, sequence, request.request_id))
        self._pending[request.request_id] = request
