"""Queue backend interface.

Delivery is at-least-once: a job that is dequeued but never acked (worker
crash, lease expiry, explicit release) is delivered again. Consumers must
process jobs idempotently.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from indexsync.models import Delivery, ReindexJob


@runtime_checkable
class QueueBackend(Protocol):
    def enqueue(self, job: ReindexJob) -> None:
        """Persist ``job``; returns without waiting on any consumer."""
        ...

    def dequeue(self, timeout: float | None = None) -> Delivery | None:
        """Block up to ``timeout`` seconds for the next job; None when idle."""
        ...

    def ack(self, delivery: Delivery) -> None:
        """Mark a delivery done; it will not be delivered again."""
        ...

    def release(self, delivery: Delivery, delay: float = 0.0) -> None:
        """Give a delivery back for redelivery after ``delay`` seconds."""
        ...

    def extend(self, delivery: Delivery) -> bool:
        """Keep a long-running delivery invisible to other consumers.

        Returns False when the delivery is no longer held by the caller.
        """
        ...

    def __len__(self) -> int: ...
