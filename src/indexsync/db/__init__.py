"""Local SQLite persistence for the queue and rebuild leases."""

from indexsync.db.database import Database
from indexsync.db.models import QueuedJob, RebuildLease

__all__ = [
    "Database",
    "QueuedJob",
    "RebuildLease",
]
