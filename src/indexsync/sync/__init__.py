"""Keeping search indices in step with the primary store."""

from indexsync.sync.dispatcher import SyncOutcome, UpdateDispatcher
from indexsync.sync.leases import InProcessLeases, RebuildLeases, SqlLeases
from indexsync.sync.registry import EntityRegistry, default_index_name
from indexsync.sync.versions import VersionManager
from indexsync.sync.worker import (
    JobStats,
    RebuildStats,
    ReindexWorker,
    WorkerState,
    WorkerStatus,
)

__all__ = [
    "EntityRegistry",
    "InProcessLeases",
    "JobStats",
    "RebuildLeases",
    "RebuildStats",
    "ReindexWorker",
    "SqlLeases",
    "SyncOutcome",
    "UpdateDispatcher",
    "VersionManager",
    "WorkerState",
    "WorkerStatus",
    "default_index_name",
]
