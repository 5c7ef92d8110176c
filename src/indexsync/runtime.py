"""Wiring of configured components into one runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from indexsync.db import Database
from indexsync.queue import open_queue
from indexsync.search import IndexedSearch, connect_search_client
from indexsync.store import InMemoryRecordStore, SqlRecordStore
from indexsync.sync import (
    EntityRegistry,
    InProcessLeases,
    ReindexWorker,
    SqlLeases,
    UpdateDispatcher,
    VersionManager,
)

if TYPE_CHECKING:
    from indexsync.config.models import IndexSyncConfig
    from indexsync.queue import QueueBackend
    from indexsync.search import SearchClient
    from indexsync.store import RecordStore
    from indexsync.sync import RebuildLeases

logger = structlog.get_logger()


@dataclass
class Runtime:
    """Everything a host process or CLI command needs, built once."""

    config: IndexSyncConfig
    registry: EntityRegistry
    client: SearchClient | None
    queue: QueueBackend
    store: RecordStore
    leases: RebuildLeases
    versions: VersionManager
    dispatcher: UpdateDispatcher
    worker: ReindexWorker
    search: IndexedSearch
    _closed: bool = field(default=False, init=False)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.worker.running:
            self.worker.stop()
        if self.client is not None:
            self.client.close()
        for resource in (self.queue, self.store):
            close = getattr(resource, "close", None)
            if callable(close):
                close()


def build_runtime(
    config: IndexSyncConfig,
    *,
    registry: EntityRegistry | None = None,
    client: SearchClient | None = None,
    queue: QueueBackend | None = None,
    store: RecordStore | None = None,
) -> Runtime:
    """Build a runtime from config. Explicit components override config."""
    registry = registry if registry is not None else EntityRegistry.from_config(config.entities)
    if client is None:
        client = connect_search_client(config.search)
    if queue is None:
        queue = open_queue(config.queue, config.database)

    if store is None:
        if config.store.url:
            store = SqlRecordStore.from_url(config.store.url)
        else:
            logger.warning("record_store_not_configured", fallback="memory")
            store = InMemoryRecordStore()

    leases: RebuildLeases
    if config.queue.backend == "sql":
        db_path = Path(config.queue.db_path).expanduser()
        leases = SqlLeases(Database.from_config(db_path, config.database))
    else:
        leases = InProcessLeases()

    versions = VersionManager(registry, client, leases)
    dispatcher = UpdateDispatcher(
        registry, client, queue, coarse_refresh=config.search.coarse_refresh
    )
    worker = ReindexWorker.from_config(
        config.worker,
        registry=registry,
        client=client,
        store=store,
        versions=versions,
        queue=queue,
        leases=leases,
    )
    logger.debug(
        "runtime_built",
        entity_types=len(registry),
        search_available=client is not None,
        queue=config.queue.backend,
    )
    return Runtime(
        config=config,
        registry=registry,
        client=client,
        queue=queue,
        store=store,
        leases=leases,
        versions=versions,
        dispatcher=dispatcher,
        worker=worker,
        search=IndexedSearch(registry, client),
    )
