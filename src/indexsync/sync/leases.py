"""Per-entity-type rebuild leases.

At most one rebuild may run per entity type. A lease names its holder and
expires after a TTL so that a crashed rebuild cannot block the next one
forever; long rebuilds renew it as they go.
"""

from __future__ import annotations

import os
import socket
import threading
import time
import uuid
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import structlog

from indexsync.core.errors import RebuildInProgressError
from indexsync.db import Database, RebuildLease

logger = structlog.get_logger()

DEFAULT_LEASE_TTL_SEC = 600.0


def make_holder_id() -> str:
    """Holder id unique to this process and call."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@runtime_checkable
class RebuildLeases(Protocol):
    def acquire(self, entity_type: str, holder: str, ttl: float = DEFAULT_LEASE_TTL_SEC) -> None:
        """Take the lease or raise RebuildInProgressError."""
        ...

    def renew(self, entity_type: str, holder: str, ttl: float = DEFAULT_LEASE_TTL_SEC) -> bool:
        """Extend a held lease; False if ``holder`` no longer holds it."""
        ...

    def release(self, entity_type: str, holder: str) -> None: ...

    def holder(self, entity_type: str) -> str | None: ...


class InProcessLeases:
    """Leases shared by the threads of one process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._held: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, entity_type: str) -> tuple[str, float] | None:
        entry = self._held.get(entity_type)
        if entry is not None and entry[1] <= self._clock():
            del self._held[entity_type]
            return None
        return entry

    def acquire(self, entity_type: str, holder: str, ttl: float = DEFAULT_LEASE_TTL_SEC) -> None:
        with self._lock:
            entry = self._live(entity_type)
            if entry is not None:
                raise RebuildInProgressError.held_by(entity_type, entry[0])
            self._held[entity_type] = (holder, self._clock() + ttl)
        logger.debug("rebuild_lease_acquired", entity_type=entity_type, holder=holder)

    def renew(self, entity_type: str, holder: str, ttl: float = DEFAULT_LEASE_TTL_SEC) -> bool:
        with self._lock:
            entry = self._live(entity_type)
            if entry is None or entry[0] != holder:
                return False
            self._held[entity_type] = (holder, self._clock() + ttl)
            return True

    def release(self, entity_type: str, holder: str) -> None:
        with self._lock:
            entry = self._held.get(entity_type)
            if entry is not None and entry[0] == holder:
                del self._held[entity_type]
        logger.debug("rebuild_lease_released", entity_type=entity_type, holder=holder)

    def holder(self, entity_type: str) -> str | None:
        with self._lock:
            entry = self._live(entity_type)
            return entry[0] if entry is not None else None


class SqlLeases:
    """Leases on the ``rebuild_leases`` table, shared between processes."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.db.create_all()

    def acquire(self, entity_type: str, holder: str, ttl: float = DEFAULT_LEASE_TTL_SEC) -> None:
        now = time.time()
        with self.db.immediate_transaction() as session:
            row = session.get(RebuildLease, entity_type)
            if row is not None and row.expires_at > now:
                raise RebuildInProgressError.held_by(entity_type, row.holder)
            if row is None:
                row = RebuildLease(
                    entity_type=entity_type, holder=holder, acquired_at=now, expires_at=now + ttl
                )
            else:
                logger.warning(
                    "rebuild_lease_expired_takeover",
                    entity_type=entity_type,
                    previous_holder=row.holder,
                    holder=holder,
                )
                row.holder = holder
                row.acquired_at = now
                row.expires_at = now + ttl
            session.add(row)
        logger.debug("rebuild_lease_acquired", entity_type=entity_type, holder=holder)

    def renew(self, entity_type: str, holder: str, ttl: float = DEFAULT_LEASE_TTL_SEC) -> bool:
        now = time.time()
        with self.db.immediate_transaction() as session:
            row = session.get(RebuildLease, entity_type)
            if row is None or row.holder != holder or row.expires_at <= now:
                return False
            row.expires_at = now + ttl
            session.add(row)
            return True

    def release(self, entity_type: str, holder: str) -> None:
        with self.db.immediate_transaction() as session:
            row = session.get(RebuildLease, entity_type)
            if row is not None and row.holder == holder:
                session.delete(row)
        logger.debug("rebuild_lease_released", entity_type=entity_type, holder=holder)

    def holder(self, entity_type: str) -> str | None:
        with self.db.session() as session:
            row = session.get(RebuildLease, entity_type)
            if row is None or row.expires_at <= time.time():
                return None
            return row.holder
