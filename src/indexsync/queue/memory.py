"""Per-process job queue."""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass

import structlog

from indexsync.core.errors import QueueError
from indexsync.models import Delivery, ReindexJob

logger = structlog.get_logger()


@dataclass
class _Entry:
    job: ReindexJob
    available_at: float
    attempts: int = 0


class InMemoryQueue:
    """FIFO queue with ack/release semantics, safe across threads."""

    def __init__(self) -> None:
        self._pending: deque[_Entry] = deque()
        self._in_flight: dict[int, _Entry] = {}
        self._receipts = itertools.count(1)
        self._cond = threading.Condition()

    def enqueue(self, job: ReindexJob) -> None:
        with self._cond:
            self._pending.append(_Entry(job=job, available_at=time.monotonic()))
            self._cond.notify()
        logger.debug(
            "job_enqueued", entity_type=job.entity_type, kind=job.job_kind.value, ids=len(job.ids)
        )

    def _take_available(self, now: float) -> _Entry | None:
        for entry in self._pending:
            if entry.available_at <= now:
                self._pending.remove(entry)
                return entry
        return None

    def dequeue(self, timeout: float | None = None) -> Delivery | None:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                now = time.monotonic()
                entry = self._take_available(now)
                if entry is not None:
                    entry.attempts += 1
                    receipt = next(self._receipts)
                    self._in_flight[receipt] = entry
                    return Delivery(job=entry.job, receipt=receipt, attempts=entry.attempts)
                waits = [e.available_at - now for e in self._pending]
                if deadline is not None:
                    if now >= deadline:
                        return None
                    waits.append(deadline - now)
                self._cond.wait(min(waits) if waits else None)

    def ack(self, delivery: Delivery) -> None:
        with self._cond:
            if self._in_flight.pop(delivery.receipt, None) is None:
                raise QueueError.unknown_receipt(delivery.receipt)

    def release(self, delivery: Delivery, delay: float = 0.0) -> None:
        with self._cond:
            entry = self._in_flight.pop(delivery.receipt, None)
            if entry is None:
                raise QueueError.unknown_receipt(delivery.receipt)
            entry.available_at = time.monotonic() + delay
            self._pending.append(entry)
            self._cond.notify()

    def extend(self, delivery: Delivery) -> bool:
        # In-flight entries never lapse here, so holding the receipt is enough
        with self._cond:
            return delivery.receipt in self._in_flight

    @property
    def in_flight(self) -> int:
        with self._cond:
            return len(self._in_flight)

    def __len__(self) -> int:
        with self._cond:
            return len(self._pending)
