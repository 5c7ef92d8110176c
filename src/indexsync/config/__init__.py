"""Config module exports."""

from indexsync.config.loader import load_config
from indexsync.config.models import (
    DatabaseConfig,
    EntityConfig,
    IndexSyncConfig,
    LoggingConfig,
    QueueConfig,
    SearchConfig,
    StoreConfig,
    WorkerConfig,
)

__all__ = [
    "load_config",
    "DatabaseConfig",
    "EntityConfig",
    "IndexSyncConfig",
    "LoggingConfig",
    "QueueConfig",
    "SearchConfig",
    "StoreConfig",
    "WorkerConfig",
]
