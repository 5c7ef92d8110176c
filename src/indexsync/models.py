"""Domain models shared by the dispatcher, worker and version manager.

Plain dataclasses for in-process values, a frozen pydantic model for the
queue wire contract.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from indexsync.core.errors import InvalidPolicyError, QueueError

# ============================================================================
# ENUMS
# ============================================================================


class UpdatePolicy(str, Enum):
    """How the index follows mutations of an entity type.

    DISABLED: the index is not touched on save/delete.
    IMMEDIATE: write on the caller's thread; visible after the backend's
        own refresh interval.
    IMMEDIATE_WITH_REFRESH: write, then force a refresh so the change is
        searchable when the call returns.
    ENQUEUE: push a reindex job; a worker applies it later.
    """

    DISABLED = "disabled"
    IMMEDIATE = "immediate"
    IMMEDIATE_WITH_REFRESH = "immediate_with_refresh"
    ENQUEUE = "enqueue"

    @classmethod
    def allowed(cls) -> list[str]:
        return [p.value for p in cls]

    @classmethod
    def parse(cls, value: Any) -> UpdatePolicy:
        """Validate a policy value at the assignment boundary.

        ``False`` is accepted as ``disabled`` (``updates: false`` in YAML).
        Anything else outside the enumerated set raises InvalidPolicyError.
        """
        if isinstance(value, cls):
            return value
        if value is False:
            return cls.DISABLED
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidPolicyError.unsupported(value, cls.allowed())


class VersionStatus(str, Enum):
    """Lifecycle status of a physical index version."""

    BUILDING = "building"
    CURRENT = "current"
    STALE = "stale"


class JobKind(str, Enum):
    """Kinds of queued work."""

    REINDEX = "reindex"
    REBUILD = "rebuild"


# ============================================================================
# ENTITY TYPES AND DOCUMENTS
# ============================================================================


def default_doc_type(name: str) -> str:
    """Derive a document type from an entity name: ``BlogPosts`` -> ``blog_post``."""
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name.replace("::", "-")).lower()
    if snake.endswith("ies"):
        return snake[:-3] + "y"
    if snake.endswith("s") and not snake.endswith("ss"):
        return snake[:-1]
    return snake


@dataclass(frozen=True)
class IndexingOptions:
    """Per-document write options understood by the backend."""

    routing: str | None = None
    parent: str | None = None

    def as_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.routing is not None:
            params["routing"] = self.routing
        elif self.parent is not None:
            # Child documents must land on the parent's shard
            params["routing"] = self.parent
        return params


@dataclass(frozen=True)
class Document:
    """Serialized form of one entity, produced on demand."""

    id: str
    body: dict[str, Any]
    options: IndexingOptions = field(default_factory=IndexingOptions)


@dataclass(frozen=True)
class EntityType:
    """A registered, indexed entity type.

    The hooks are optional. When absent, records may provide
    ``doc_to_index()``, ``skip_indexing()`` and ``indexing_options()``
    themselves; otherwise the record's fields form the document body.
    """

    name: str
    index_name: str
    doc_type: str
    update_policy: UpdatePolicy = UpdatePolicy.IMMEDIATE
    mapping: Mapping[str, Any] | None = None
    index_options: Mapping[str, Any] = field(default_factory=dict)
    id_field: str = "id"
    table: str | None = None
    serializer: Callable[[Any], Mapping[str, Any]] | None = None
    skip: Callable[[Any], bool] | None = None
    options_for: Callable[[Any], IndexingOptions] | None = None

    def record_id(self, record: Any) -> str:
        if isinstance(record, Mapping):
            value = record[self.id_field]
        else:
            value = getattr(record, self.id_field)
        return str(value)

    def should_skip(self, record: Any) -> bool:
        if self.skip is not None:
            return bool(self.skip(record))
        hook = getattr(record, "skip_indexing", None)
        return bool(hook()) if callable(hook) else False

    def to_document(self, record: Any) -> Document:
        return Document(
            id=self.record_id(record),
            body=dict(self._body(record)),
            options=self._options(record),
        )

    def _body(self, record: Any) -> Mapping[str, Any]:
        if self.serializer is not None:
            return self.serializer(record)
        hook = getattr(record, "doc_to_index", None)
        if callable(hook):
            return hook()  # type: ignore[no-any-return]
        if isinstance(record, Mapping):
            return record
        if hasattr(record, "model_dump"):
            return record.model_dump()  # type: ignore[no-any-return]
        return {k: v for k, v in vars(record).items() if not k.startswith("_")}

    def _options(self, record: Any) -> IndexingOptions:
        if self.options_for is not None:
            return self.options_for(record)
        hook = getattr(record, "indexing_options", None)
        if callable(hook):
            return hook()  # type: ignore[no-any-return]
        return IndexingOptions()


# ============================================================================
# INDEX VERSIONS
# ============================================================================


@dataclass(frozen=True)
class IndexVersion:
    """One physical index behind an entity type's alias."""

    name: str
    base_name: str
    status: VersionStatus
    created_at: datetime

    @property
    def suffix(self) -> str:
        return self.name[len(self.base_name) + 1 :]


def version_created_at(base_name: str, version: str) -> datetime:
    """Creation time encoded in a version name (``<base>_<nanoseconds>``)."""
    suffix = version[len(base_name) + 1 :]
    try:
        return datetime.fromtimestamp(int(suffix) / 1e9, tz=UTC)
    except ValueError:
        return datetime.fromtimestamp(0, tz=UTC)


def version_sort_key(base_name: str, version: str) -> int:
    suffix = version[len(base_name) + 1 :]
    return int(suffix) if suffix.isdigit() else -1


# ============================================================================
# QUEUE WIRE CONTRACT
# ============================================================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReindexJob(BaseModel):
    """A queued unit of reindex work. Immutable once created.

    Wire form::

        {"jobKind": "reindex", "entityType": "Article",
         "ids": ["42"], "enqueuedAt": "2024-01-01T00:00:00+00:00"}
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_kind: JobKind = Field(alias="jobKind")
    entity_type: str = Field(alias="entityType", min_length=1)
    ids: tuple[str, ...] = Field(default=())
    enqueued_at: datetime = Field(default_factory=_utcnow, alias="enqueuedAt")

    @field_validator("ids", mode="before")
    @classmethod
    def _coerce_ids(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return tuple(str(i) for i in v)
        return v

    @field_serializer("enqueued_at")
    def _serialize_enqueued_at(self, value: datetime) -> str:
        return value.isoformat()

    @classmethod
    def reindex(cls, entity_type: str, ids: list[Any] | tuple[Any, ...]) -> ReindexJob:
        return cls(job_kind=JobKind.REINDEX, entity_type=entity_type, ids=tuple(str(i) for i in ids))

    @classmethod
    def rebuild(cls, entity_type: str) -> ReindexJob:
        return cls(job_kind=JobKind.REBUILD, entity_type=entity_type)

    @property
    def is_rebuild(self) -> bool:
        return self.job_kind == JobKind.REBUILD

    def to_payload(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_payload(cls, payload: str | bytes | Mapping[str, Any]) -> ReindexJob:
        try:
            if isinstance(payload, Mapping):
                return cls.model_validate(payload)
            return cls.model_validate_json(payload)
        except ValidationError as e:
            err = e.errors()[0]
            where = ".".join(str(loc) for loc in err["loc"]) or "payload"
            raise QueueError.invalid_payload(f"{where}: {err['msg']}") from e


@dataclass(frozen=True)
class Delivery:
    """One delivery of a job. The same job may be delivered more than once."""

    job: ReindexJob
    receipt: Any
    attempts: int = 1
