"""Job queues carrying reindex work from dispatchers to workers."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from indexsync.db import Database
from indexsync.queue.base import QueueBackend
from indexsync.queue.memory import InMemoryQueue
from indexsync.queue.sql import SqlQueue

if TYPE_CHECKING:
    from indexsync.config.models import DatabaseConfig, QueueConfig


def open_queue(config: QueueConfig, database: DatabaseConfig | None = None) -> QueueBackend:
    """Build the queue backend named by ``config.backend``."""
    if config.backend == "memory":
        return InMemoryQueue()
    path = Path(config.db_path).expanduser()
    db = Database.from_config(path, database) if database is not None else Database(path)
    return SqlQueue(db, visibility_timeout=config.visibility_timeout_sec)


__all__ = [
    "InMemoryQueue",
    "QueueBackend",
    "SqlQueue",
    "open_queue",
]
