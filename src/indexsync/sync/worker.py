"""Queue worker applying reindex jobs and full rebuilds."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from indexsync.core.errors import (
    BackendUnavailableError,
    IndexSyncError,
    QueueError,
    RebuildIncompleteError,
    RebuildInProgressError,
    RemoteRejectedError,
    ignore_not_found,
)
from indexsync.core.logging import job_context
from indexsync.search.client import BulkAction
from indexsync.sync.leases import DEFAULT_LEASE_TTL_SEC, InProcessLeases, make_holder_id

if TYPE_CHECKING:
    from collections.abc import Callable

    from indexsync.config.models import WorkerConfig
    from indexsync.models import Delivery, EntityType, ReindexJob
    from indexsync.queue.base import QueueBackend
    from indexsync.search.client import SearchClient
    from indexsync.store.base import RecordStore
    from indexsync.sync.leases import RebuildLeases
    from indexsync.sync.registry import EntityRegistry
    from indexsync.sync.versions import VersionManager

logger = structlog.get_logger()


class WorkerState(Enum):
    """Reindex worker state."""

    IDLE = "idle"
    PROCESSING = "processing"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class JobStats:
    """Result of applying one id-list job."""

    entity_type: str
    upserted: int = 0
    deleted: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.upserted + self.deleted


@dataclass
class RebuildStats:
    """Result of one full rebuild."""

    entity_type: str
    version: str
    indexed: int = 0
    skipped: int = 0
    pruned: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass
class WorkerStatus:
    """Current worker status."""

    state: WorkerState
    processed: int
    failed: int
    queue_size: int | None = None
    last_error: str | None = None


@dataclass
class ReindexWorker:
    """
    Applies queued reindex work to the search backend.

    Id-list jobs re-read each id from the primary store, so the index
    converges on whatever the store holds at processing time. Applying the
    same job twice leaves the same state as applying it once.

    Rebuilds fill a fresh, unpromoted version and promote it only after the
    whole store has been scanned.
    """

    registry: EntityRegistry
    client: SearchClient | None
    store: RecordStore
    versions: VersionManager
    queue: QueueBackend | None = None
    leases: RebuildLeases = field(default_factory=InProcessLeases)
    bulk_size: int = 500
    scan_page_size: int = 1000
    poll_interval: float = 1.0
    max_attempts: int = 5
    retry_delay: float = 5.0
    lease_ttl: float = DEFAULT_LEASE_TTL_SEC

    _state: WorkerState = field(default=WorkerState.IDLE, init=False)
    _processed: int = field(default=0, init=False)
    _failed: int = field(default=0, init=False)
    _active: int = field(default=0, init=False)
    _last_error: str | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _stop_event: threading.Event = field(default_factory=threading.Event, init=False)
    _executor: ThreadPoolExecutor | None = field(default=None, init=False)
    _loops: list[Future[int]] = field(default_factory=list, init=False)

    @classmethod
    def from_config(
        cls,
        config: WorkerConfig,
        *,
        registry: EntityRegistry,
        client: SearchClient | None,
        store: RecordStore,
        versions: VersionManager,
        queue: QueueBackend | None = None,
        leases: RebuildLeases | None = None,
    ) -> ReindexWorker:
        return cls(
            registry=registry,
            client=client,
            store=store,
            versions=versions,
            queue=queue,
            leases=leases if leases is not None else InProcessLeases(),
            bulk_size=config.bulk_size,
            scan_page_size=config.scan_page_size,
            poll_interval=config.poll_interval_sec,
            max_attempts=config.max_attempts,
            retry_delay=config.retry_delay_sec,
            lease_ttl=config.rebuild_lease_ttl_sec,
        )

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def process(
        self, job: ReindexJob, *, heartbeat: Callable[[], None] | None = None
    ) -> JobStats | RebuildStats:
        if job.is_rebuild:
            return self.rebuild(job.entity_type, heartbeat=heartbeat)
        return self.reindex_ids(job.entity_type, list(job.ids))

    def _require_client(self, operation: str, entity_type: EntityType) -> SearchClient:
        if self.client is None:
            raise BackendUnavailableError.for_operation(operation, entity_type.name)
        return self.client

    def reindex_ids(self, entity_name: str, ids: list[Any]) -> JobStats:
        """Upsert or delete each id according to the primary store.

        Missing records and records that opt out of indexing are deleted
        from the index; deleting an absent document is not an error.

        Raises:
            BackendUnavailableError: No search client.
            ConnectionFailedError: Backend unreachable.
            RemoteRejectedError: The backend refused a write.
        """
        entity_type = self.registry.get(entity_name)
        self._require_client("reindex", entity_type)
        wanted = list(dict.fromkeys(str(i) for i in ids))
        records = self.store.get_many(entity_type, wanted)

        stats = JobStats(entity_type=entity_type.name)
        actions: list[BulkAction] = []
        for doc_id in wanted:
            record = records.get(doc_id)
            if record is None:
                actions.append(BulkAction.delete(doc_id))
                stats.deleted += 1
            elif entity_type.should_skip(record):
                actions.append(BulkAction.delete(doc_id))
                stats.skipped += 1
                stats.deleted += 1
            else:
                actions.append(BulkAction.upsert(entity_type.to_document(record)))
                stats.upserted += 1

        self._apply(entity_type, actions, index=entity_type.index_name)
        logger.info(
            "reindex_job_applied",
            entity_type=entity_type.name,
            upserted=stats.upserted,
            deleted=stats.deleted,
            skipped=stats.skipped,
        )
        return stats

    def _apply(self, entity_type: EntityType, actions: list[BulkAction], *, index: str) -> None:
        client = self._require_client("write documents", entity_type)
        if self.bulk_size <= 1:
            for action in actions:
                if action.op == "delete":
                    with ignore_not_found():
                        client.delete(action.doc_id, index=index, doc_type=entity_type.doc_type)
                elif action.document is not None:
                    client.index(action.document, index=index, doc_type=entity_type.doc_type)
            return

        for start in range(0, len(actions), self.bulk_size):
            chunk = actions[start : start + self.bulk_size]
            results = client.bulk(chunk, index=index, doc_type=entity_type.doc_type)
            failures = [r for r in results if not r.ok]
            if failures:
                first = failures[0]
                logger.warning(
                    "bulk_items_rejected",
                    entity_type=entity_type.name,
                    index=index,
                    failed=len(failures),
                    first_id=first.doc_id,
                )
                raise RemoteRejectedError.from_response(
                    "bulk", first.status, first.error or f"{len(failures)} item(s) rejected"
                )

    def rebuild(
        self,
        entity_name: str,
        *,
        holder: str | None = None,
        heartbeat: Callable[[], None] | None = None,
    ) -> RebuildStats:
        """Rebuild an entity type's index from scratch without downtime.

        The new version is promoted only after every page of the primary
        store has been written to it and the version still holds exactly
        what was written. Any failure before that leaves the Current version
        untouched; the half-built version is left behind and removed by the
        next successful prune.

        ``heartbeat`` is called each time the lease is renewed, so a queued
        rebuild can keep its delivery invisible for as long as it runs.

        Raises:
            RebuildInProgressError: Another rebuild of the type holds the lease.
            RebuildIncompleteError: The new version lost documents mid-scan.
            BackendUnavailableError: No search client.
        """
        entity_type = self.registry.get(entity_name)
        client = self._require_client("rebuild", entity_type)
        holder = holder or make_holder_id()
        self.leases.acquire(entity_type.name, holder, self.lease_ttl)
        started = time.monotonic()
        logger.info("rebuild_started", entity_type=entity_type.name, holder=holder)
        try:
            version = self.versions.create_version(entity_type.name, promote=False)
            stats = RebuildStats(entity_type=entity_type.name, version=version.name)

            for page in self.store.scan(entity_type, self.scan_page_size):
                actions: list[BulkAction] = []
                for record in page:
                    if entity_type.should_skip(record):
                        stats.skipped += 1
                        continue
                    actions.append(BulkAction.upsert(entity_type.to_document(record)))
                self._apply(entity_type, actions, index=version.name)
                stats.indexed += len(actions)
                if not self.leases.renew(entity_type.name, holder, self.lease_ttl):
                    raise RebuildInProgressError.held_by(
                        entity_type.name, self.leases.holder(entity_type.name)
                    )
                if heartbeat is not None:
                    heartbeat()
                logger.debug(
                    "rebuild_page_indexed",
                    entity_type=entity_type.name,
                    version=version.name,
                    indexed=stats.indexed,
                )

            client.refresh(version.name)
            self._verify_version(entity_type, version.name, stats.indexed)
            self.versions.promote(entity_type.name, version.name)
            stats.pruned = self.versions.prune_versions(entity_type.name)
        finally:
            self.leases.release(entity_type.name, holder)

        stats.duration_seconds = time.monotonic() - started
        logger.info(
            "rebuild_completed",
            entity_type=entity_type.name,
            version=stats.version,
            indexed=stats.indexed,
            pruned=len(stats.pruned),
            duration_sec=round(stats.duration_seconds, 3),
        )
        return stats

    def _verify_version(self, entity_type: EntityType, version: str, expected: int) -> None:
        client = self._require_client("verify rebuild", entity_type)
        if version not in client.list_index_versions(entity_type.index_name):
            logger.error(
                "rebuild_version_incomplete", entity_type=entity_type.name, version=version
            )
            raise RebuildIncompleteError.version_missing(entity_type.name, version)
        actual = client.count({}, index=version, doc_type=entity_type.doc_type)
        if actual != expected:
            logger.error(
                "rebuild_version_incomplete",
                entity_type=entity_type.name,
                version=version,
                expected=expected,
                actual=actual,
            )
            raise RebuildIncompleteError.count_mismatch(entity_type.name, version, expected, actual)

    # ------------------------------------------------------------------
    # Queue consumption
    # ------------------------------------------------------------------

    def handle(self, delivery: Delivery) -> bool:
        """Process one delivery and ack or release it. Returns success."""
        queue = self._require_queue()
        job = delivery.job
        with self._lock:
            self._active += 1
            if self._state == WorkerState.IDLE:
                self._state = WorkerState.PROCESSING
        try:
            with job_context(job.entity_type, job.job_kind.value, delivery.attempts):
                return self._handle(queue, delivery)
        finally:
            with self._lock:
                self._active -= 1
                if self._active == 0 and self._state == WorkerState.PROCESSING:
                    self._state = WorkerState.IDLE

    def _handle(self, queue: QueueBackend, delivery: Delivery) -> bool:
        job = delivery.job
        try:
            self.process(job, heartbeat=lambda: self._keep_visible(queue, delivery))
        except RebuildInProgressError as e:
            # A rebuild already running covers this request
            logger.warning("rebuild_request_dropped", holder=e.details.get("holder"))
            self._settle(queue, delivery)
            self._record(ok=True)
            return True
        except Exception as e:
            message = e.message if isinstance(e, IndexSyncError) else str(e)
            self._record(ok=False, error=message)
            if delivery.attempts >= self.max_attempts:
                logger.error("job_dropped", error=message, ids=list(job.ids))
                self._settle(queue, delivery)
            else:
                logger.warning(
                    "job_failed_will_retry", error=message, retry_in_sec=self.retry_delay
                )
                self._settle(queue, delivery, retry_delay=self.retry_delay)
            return False
        self._settle(queue, delivery)
        self._record(ok=True)
        return True

    def _settle(
        self, queue: QueueBackend, delivery: Delivery, *, retry_delay: float | None = None
    ) -> None:
        """Ack the delivery, or release it for redelivery after ``retry_delay``."""
        try:
            if retry_delay is None:
                queue.ack(delivery)
            else:
                queue.release(delivery, delay=retry_delay)
        except QueueError as e:
            # The visibility lease lapsed and the job was handed to another consumer
            logger.warning("job_ack_lost", receipt=str(delivery.receipt), error=e.message)

    def _keep_visible(self, queue: QueueBackend, delivery: Delivery) -> None:
        if not queue.extend(delivery):
            logger.warning("job_visibility_lost", receipt=str(delivery.receipt))

    def _require_queue(self) -> QueueBackend:
        if self.queue is None:
            raise BackendUnavailableError.for_operation("consume reindex jobs")
        return self.queue

    def _record(self, *, ok: bool, error: str | None = None) -> None:
        with self._lock:
            self._processed += 1
            if not ok:
                self._failed += 1
                self._last_error = error

    def run(
        self,
        stop_event: threading.Event | None = None,
        *,
        max_jobs: int | None = None,
        drain: bool = False,
    ) -> int:
        """Consume jobs until stopped. Returns the number of deliveries handled.

        Args:
            stop_event: Set to end the loop after the current job.
            max_jobs: Return after this many deliveries.
            drain: Return as soon as the queue is empty.
        """
        queue = self._require_queue()
        stop = stop_event or self._stop_event
        handled = 0
        while not stop.is_set() and (max_jobs is None or handled < max_jobs):
            delivery = queue.dequeue(timeout=self.poll_interval)
            if delivery is None:
                if drain:
                    break
                continue
            self.handle(delivery)
            handled += 1
        return handled

    def start(
        self, concurrency: int = 1, *, max_jobs: int | None = None, drain: bool = False
    ) -> None:
        """Run ``concurrency`` consumer loops on a thread pool.

        ``max_jobs`` and ``drain`` apply to each loop, as in ``run``.
        """
        if self._executor is not None:
            return
        self._require_queue()
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=concurrency,
            thread_name_prefix="indexsync-worker",
        )
        with self._lock:
            self._state = WorkerState.IDLE
        self._loops = [
            self._executor.submit(self.run, self._stop_event, max_jobs=max_jobs, drain=drain)
            for _ in range(concurrency)
        ]
        logger.info("reindex_worker_started", concurrency=concurrency)

    def stop(self) -> None:
        """Stop the consumer loops after their current job."""
        with self._lock:
            self._state = WorkerState.STOPPING
        self._stop_event.set()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        for loop in self._loops:
            exc = loop.exception()
            if exc is not None:
                logger.error("worker_loop_crashed", error=str(exc))
        self._loops = []
        with self._lock:
            self._state = WorkerState.STOPPED
        logger.info("reindex_worker_stopped", processed=self._processed, failed=self._failed)

    def wait(self) -> None:
        """Block until the consumer loops exit."""
        for loop in list(self._loops):
            loop.result()

    @property
    def running(self) -> bool:
        return self._executor is not None

    @property
    def status(self) -> WorkerStatus:
        queue_size = len(self.queue) if self.queue is not None else None
        with self._lock:
            return WorkerStatus(
                state=self._state,
                processed=self._processed,
                failed=self._failed,
                queue_size=queue_size,
                last_error=self._last_error,
            )
