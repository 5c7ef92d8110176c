"""Access to the primary record store."""

from indexsync.store.base import RecordStore
from indexsync.store.memory import InMemoryRecordStore
from indexsync.store.sql import SqlRecordStore

__all__ = [
    "InMemoryRecordStore",
    "RecordStore",
    "SqlRecordStore",
]
