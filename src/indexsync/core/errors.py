"""indexsync error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Search backend
- 4xxx: Sync (policies, registry, rebuilds)
- 5xxx: Queue
- 9xxx: Internal
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003
    CONFIG_FILE_NOT_FOUND = 2004

    # Search backend (3xxx)
    BACKEND_CONNECTION_FAILED = 3001
    BACKEND_UNAVAILABLE = 3002
    BACKEND_REJECTED = 3003
    BACKEND_NOT_FOUND = 3004

    # Sync (4xxx)
    SYNC_INVALID_POLICY = 4001
    SYNC_UNKNOWN_ENTITY_TYPE = 4002
    SYNC_MISSING_REQUIRED_INPUT = 4003
    SYNC_REBUILD_IN_PROGRESS = 4004
    SYNC_REBUILD_INCOMPLETE = 4005

    # Queue (5xxx)
    QUEUE_INVALID_PAYLOAD = 5001
    QUEUE_UNKNOWN_RECEIPT = 5002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_TIMEOUT = 9002


@dataclass(frozen=True, slots=True)
class IndexSyncError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'BACKEND_REJECTED')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(IndexSyncError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )

    @classmethod
    def file_not_found(cls, path: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class ConnectionFailedError(IndexSyncError):
    """The search backend could not be reached."""

    @classmethod
    def unreachable(cls, url: str, reason: str) -> ConnectionFailedError:
        return cls(
            code=ErrorCode.BACKEND_CONNECTION_FAILED,
            message=f"Search backend unreachable at {url}: {reason}",
            retryable=True,
            details={"url": url, "reason": reason},
        )


class BackendUnavailableError(ConnectionFailedError):
    """No search client (or queue) is available to carry out the operation."""

    @classmethod
    def for_operation(cls, operation: str, entity_type: str | None = None) -> BackendUnavailableError:
        return cls(
            code=ErrorCode.BACKEND_UNAVAILABLE,
            message=f"Cannot {operation}: backend unavailable",
            retryable=True,
            details={"operation": operation, "entity_type": entity_type},
        )


class RemoteRejectedError(IndexSyncError):
    """The backend was reached but refused the operation."""

    @property
    def status(self) -> int | None:
        status = self.details.get("status")
        return int(status) if status is not None else None

    @property
    def not_found(self) -> bool:
        return self.code == ErrorCode.BACKEND_NOT_FOUND

    @classmethod
    def from_response(cls, operation: str, status: int, reason: str) -> RemoteRejectedError:
        code = ErrorCode.BACKEND_NOT_FOUND if status == 404 else ErrorCode.BACKEND_REJECTED
        return cls(
            code=code,
            message=f"{operation} rejected with status {status}: {reason}",
            retryable=status >= 500,
            details={"operation": operation, "status": status, "reason": reason},
        )

    @classmethod
    def missing(cls, operation: str, resource: str) -> RemoteRejectedError:
        return cls.from_response(operation, 404, f"{resource} not found")


class InvalidPolicyError(IndexSyncError):
    """An update policy outside the supported set was assigned."""

    @classmethod
    def unsupported(cls, value: Any, allowed: list[str]) -> InvalidPolicyError:
        return cls(
            code=ErrorCode.SYNC_INVALID_POLICY,
            message=f"'{value}' is not a valid index policy; must be one of {', '.join(allowed)}",
            details={"value": str(value), "allowed": allowed},
        )


class UnknownEntityTypeError(IndexSyncError):
    """An entity type name was used that was never registered."""

    @classmethod
    def named(cls, name: str) -> UnknownEntityTypeError:
        return cls(
            code=ErrorCode.SYNC_UNKNOWN_ENTITY_TYPE,
            message=f"Entity type not registered: {name}",
            details={"entity_type": name},
        )


class MissingRequiredInputError(IndexSyncError):
    """A required input was not supplied; never defaulted."""

    @classmethod
    def field(cls, name: str, reason: str) -> MissingRequiredInputError:
        return cls(
            code=ErrorCode.SYNC_MISSING_REQUIRED_INPUT,
            message=f"Missing required input '{name}': {reason}",
            details={"input": name, "reason": reason},
        )


class RebuildInProgressError(IndexSyncError):
    """Another rebuild already holds the lease for this entity type."""

    @classmethod
    def held_by(cls, entity_type: str, holder: str | None) -> RebuildInProgressError:
        return cls(
            code=ErrorCode.SYNC_REBUILD_IN_PROGRESS,
            message=f"A rebuild of '{entity_type}' is already in progress",
            details={"entity_type": entity_type, "holder": holder},
        )


class RebuildIncompleteError(IndexSyncError):
    """A rebuilt version no longer holds what the scan wrote to it."""

    @classmethod
    def version_missing(cls, entity_type: str, version: str) -> RebuildIncompleteError:
        return cls(
            code=ErrorCode.SYNC_REBUILD_INCOMPLETE,
            message=f"Rebuilt version '{version}' of '{entity_type}' disappeared before promotion",
            retryable=True,
            details={"entity_type": entity_type, "version": version},
        )

    @classmethod
    def count_mismatch(
        cls, entity_type: str, version: str, expected: int, actual: int
    ) -> RebuildIncompleteError:
        return cls(
            code=ErrorCode.SYNC_REBUILD_INCOMPLETE,
            message=(
                f"Rebuilt version '{version}' of '{entity_type}' holds {actual} "
                f"documents, expected {expected}"
            ),
            retryable=True,
            details={
                "entity_type": entity_type,
                "version": version,
                "expected": expected,
                "actual": actual,
            },
        )


class QueueError(IndexSyncError):
    """Queue payload or receipt errors."""

    @classmethod
    def invalid_payload(cls, reason: str) -> QueueError:
        return cls(
            code=ErrorCode.QUEUE_INVALID_PAYLOAD,
            message=f"Invalid job payload: {reason}",
            details={"reason": reason},
        )

    @classmethod
    def unknown_receipt(cls, receipt: Any) -> QueueError:
        return cls(
            code=ErrorCode.QUEUE_UNKNOWN_RECEIPT,
            message=f"Unknown delivery receipt: {receipt}",
            details={"receipt": str(receipt)},
        )


class InternalError(IndexSyncError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> InternalError:
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )


class ignore_not_found:  # noqa: N801
    """Context manager that treats a not-found rejection as success.

    Used on every delete-class path so that deleting something already
    absent is a no-op. After the block, ``suppressed`` tells whether a
    not-found rejection was swallowed.
    """

    def __init__(self) -> None:
        self.suppressed = False

    def __enter__(self) -> ignore_not_found:
        return self

    def __exit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> bool:
        if isinstance(exc, RemoteRejectedError) and exc.not_found:
            self.suppressed = True
            return True
        return False
