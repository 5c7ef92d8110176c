"""Core module exports."""

from indexsync.core.errors import (
    BackendUnavailableError,
    ConfigError,
    ConnectionFailedError,
    ErrorCode,
    IndexSyncError,
    InternalError,
    InvalidPolicyError,
    MissingRequiredInputError,
    QueueError,
    RebuildIncompleteError,
    RebuildInProgressError,
    RemoteRejectedError,
    UnknownEntityTypeError,
    ignore_not_found,
)
from indexsync.core.logging import (
    clear_correlation_id,
    configure_logging,
    get_correlation_id,
    get_logger,
    job_context,
    set_correlation_id,
)

__all__ = [
    # Errors
    "BackendUnavailableError",
    "ConfigError",
    "ConnectionFailedError",
    "ErrorCode",
    "IndexSyncError",
    "InternalError",
    "InvalidPolicyError",
    "MissingRequiredInputError",
    "QueueError",
    "RebuildIncompleteError",
    "RebuildInProgressError",
    "RemoteRejectedError",
    "UnknownEntityTypeError",
    "ignore_not_found",
    # Logging
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
    "job_context",
    "set_correlation_id",
]
