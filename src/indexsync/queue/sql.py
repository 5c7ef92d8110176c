"""Durable job queue on a shared SQLite file.

A claimed row carries ``lease_until``; if the claiming worker dies the lease
lapses and the row becomes claimable again. ``attempts`` doubles as a fencing
token so a worker whose lease lapsed cannot ack someone else's claim.
"""

from __future__ import annotations

import time
from pathlib import Path

import structlog
from sqlalchemy import or_
from sqlmodel import Session, col, func, select

from indexsync.core.errors import QueueError
from indexsync.db import Database, QueuedJob
from indexsync.models import Delivery, ReindexJob

logger = structlog.get_logger()

DEFAULT_VISIBILITY_TIMEOUT_SEC = 300.0
DEFAULT_POLL_INTERVAL_SEC = 0.2


class SqlQueue:
    """Queue backend on the ``reindex_jobs`` table."""

    def __init__(
        self,
        db: Database,
        *,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT_SEC,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
    ) -> None:
        self.db = db
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval
        self.db.create_all()

    @classmethod
    def open(cls, db_path: Path | str, **kwargs: float) -> SqlQueue:
        return cls(Database(Path(db_path)), **kwargs)

    def enqueue(self, job: ReindexJob) -> None:
        now = time.time()
        with self.db.immediate_transaction() as session:
            session.add(
                QueuedJob(
                    entity_type=job.entity_type,
                    job_kind=job.job_kind.value,
                    payload=job.to_payload(),
                    enqueued_at=now,
                    available_at=now,
                )
            )
        logger.debug(
            "job_enqueued", entity_type=job.entity_type, kind=job.job_kind.value, ids=len(job.ids)
        )

    def _claim(self) -> Delivery | None:
        now = time.time()
        with self.db.immediate_transaction() as session:
            while True:
                row = session.exec(
                    select(QueuedJob)
                    .where(QueuedJob.available_at <= now)
                    .where(or_(col(QueuedJob.lease_until).is_(None), col(QueuedJob.lease_until) < now))
                    .order_by(col(QueuedJob.available_at), col(QueuedJob.id))
                    .limit(1)
                ).first()
                if row is None:
                    return None
                try:
                    job = ReindexJob.from_payload(row.payload)
                except QueueError as e:
                    logger.error("job_payload_invalid", job_row=row.id, error=e.message)
                    session.delete(row)
                    continue
                row.lease_until = now + self.visibility_timeout
                row.attempts += 1
                session.add(row)
                return Delivery(job=job, receipt=row.id, attempts=row.attempts)

    def dequeue(self, timeout: float | None = None) -> Delivery | None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            delivery = self._claim()
            if delivery is not None:
                return delivery
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                time.sleep(min(self.poll_interval, remaining))
            else:
                time.sleep(self.poll_interval)

    def _held_row(self, session: Session, delivery: Delivery) -> QueuedJob:
        row = session.get(QueuedJob, delivery.receipt)
        if row is None or row.attempts != delivery.attempts:
            raise QueueError.unknown_receipt(delivery.receipt)
        return row

    def ack(self, delivery: Delivery) -> None:
        with self.db.immediate_transaction() as session:
            session.delete(self._held_row(session, delivery))

    def release(self, delivery: Delivery, delay: float = 0.0) -> None:
        with self.db.immediate_transaction() as session:
            row = self._held_row(session, delivery)
            row.lease_until = None
            row.available_at = time.time() + delay
            session.add(row)

    def extend(self, delivery: Delivery) -> bool:
        with self.db.immediate_transaction() as session:
            row = session.get(QueuedJob, delivery.receipt)
            if row is None or row.attempts != delivery.attempts:
                return False
            row.lease_until = time.time() + self.visibility_timeout
            session.add(row)
        return True

    def __len__(self) -> int:
        now = time.time()
        with self.db.session() as session:
            return session.exec(
                select(func.count())
                .select_from(QueuedJob)
                .where(or_(col(QueuedJob.lease_until).is_(None), col(QueuedJob.lease_until) < now))
            ).one()

    def close(self) -> None:
        self.db.dispose()
