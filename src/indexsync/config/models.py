"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (INDEXSYNC__SECTION__KEY)
3. Project YAML (indexsync.yaml, or --config PATH)
4. Global YAML (~/.config/indexsync/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    INDEXSYNC__<SECTION>__<KEY>=<VALUE>

Examples:
    INDEXSYNC__LOGGING__LEVEL=DEBUG
    INDEXSYNC__SEARCH__URL=http://search:9200
    INDEXSYNC__WORKER__CONCURRENCY=4
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from indexsync.core.errors import InvalidPolicyError
from indexsync.models import UpdatePolicy

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        INDEXSYNC__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every document write.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class SearchConfig(BaseModel):
    """Search backend configuration.

    Env vars:
        INDEXSYNC__SEARCH__BACKEND: memory or http
        INDEXSYNC__SEARCH__URL: Backend base URL
        INDEXSYNC__SEARCH__TIMEOUT_SEC: Per-request timeout
        INDEXSYNC__SEARCH__COARSE_REFRESH: Refresh whole index after refresh-policy writes
    """

    backend: Literal["memory", "http"] = Field(
        default="http",
        description="'http' talks to an Elasticsearch-compatible REST API; "
        "'memory' keeps everything in-process (development and tests).",
    )
    url: str = Field(
        default="http://localhost:9200",
        description="Base URL of the search backend.",
    )
    timeout_sec: float = Field(
        default=10.0,
        description="Per-request timeout. "
        "RISK: Too low fails large bulk writes; too high blocks immediate-policy callers.",
    )
    coarse_refresh: bool = Field(
        default=True,
        description="After immediate_with_refresh writes, refresh the whole index. "
        "Disable when the backend honours per-write refresh=true.",
    )
    verify_on_connect: bool = Field(
        default=True,
        description="Ping the backend once at startup; an unreachable backend "
        "leaves the index marked unavailable instead of failing startup.",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got {v}")
        return v.rstrip("/")


class QueueConfig(BaseModel):
    """Reindex queue configuration.

    Env vars:
        INDEXSYNC__QUEUE__BACKEND: memory or sql
        INDEXSYNC__QUEUE__DB_PATH: SQLite file for the durable queue
        INDEXSYNC__QUEUE__VISIBILITY_TIMEOUT_SEC: Lease length of a dequeued job
    """

    backend: Literal["memory", "sql"] = Field(
        default="sql",
        description="'sql' is durable and shared between processes; 'memory' is per-process.",
    )
    db_path: str = Field(
        default="indexsync-queue.db",
        description="SQLite file holding queued jobs and rebuild leases.",
    )
    visibility_timeout_sec: float = Field(
        default=300.0,
        description="A dequeued job not acked within this window is redelivered. "
        "RISK: Shorter than the slowest job causes duplicate processing.",
    )


class WorkerConfig(BaseModel):
    """Reindex worker configuration.

    Env vars:
        INDEXSYNC__WORKER__CONCURRENCY: Worker loops per process
        INDEXSYNC__WORKER__BULK_SIZE: Actions per bulk request (1 disables bulk)
        INDEXSYNC__WORKER__SCAN_PAGE_SIZE: Records per page during rebuilds
        INDEXSYNC__WORKER__MAX_ATTEMPTS: Deliveries before a job is dropped
    """

    concurrency: int = Field(
        default=1,
        ge=1,
        description="Worker loops per process. Safe to raise: writes are idempotent per id.",
    )
    poll_interval_sec: float = Field(
        default=1.0,
        gt=0,
        description="Blocking dequeue timeout before re-checking for shutdown.",
    )
    bulk_size: int = Field(
        default=500,
        ge=1,
        description="Documents per bulk request. 1 sends one request per document.",
    )
    scan_page_size: int = Field(
        default=1000,
        ge=1,
        description="Records fetched per page while rebuilding.",
    )
    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Deliveries of a failing job before it is dropped and logged.",
    )
    retry_delay_sec: float = Field(
        default=5.0,
        ge=0,
        description="Delay before a released job becomes visible again.",
    )
    rebuild_lease_ttl_sec: float = Field(
        default=600.0,
        gt=0,
        description="Rebuild lease lifetime; renewed after every page. "
        "RISK: Too short lets a second rebuild start while a slow page is indexed.",
    )


class StoreConfig(BaseModel):
    """Primary record store configuration.

    Env vars:
        INDEXSYNC__STORE__URL: SQLAlchemy database URL
    """

    url: str | None = Field(
        default=None,
        description="SQLAlchemy URL of the primary store. Required for workers and rebuilds.",
    )


class DatabaseConfig(BaseModel):
    """Local SQLite (queue and leases) connection configuration.

    Env vars:
        INDEXSYNC__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        INDEXSYNC__DATABASE__MAX_RETRIES: Max retry attempts for locked DB
    """

    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks.",
    )
    max_retries: int = Field(
        default=3,
        description="Max retry attempts for locked database errors.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )


class EntityConfig(BaseModel):
    """Registration of one indexed entity type."""

    index_name: str | None = Field(
        default=None,
        description="Alias/base name of the index. Defaults to the snake_cased entity name.",
    )
    doc_type: str | None = Field(
        default=None,
        description="Document type/namespace. Defaults to the singular snake_cased name.",
    )
    updates: UpdatePolicy = Field(
        default=UpdatePolicy.IMMEDIATE,
        description="disabled, immediate, immediate_with_refresh or enqueue.",
    )
    mapping: dict[str, Any] | None = None
    index_options: dict[str, Any] = Field(default_factory=dict)
    table: str | None = Field(
        default=None,
        description="Primary store table. Defaults to the index name.",
    )
    id_field: str = "id"

    @field_validator("updates", mode="before")
    @classmethod
    def validate_updates(cls, v: Any) -> UpdatePolicy:
        try:
            return UpdatePolicy.parse(v)
        except InvalidPolicyError as e:
            raise ValueError(e.message) from e


class IndexSyncConfig(BaseModel):
    """Root configuration for indexsync.

    All settings can be configured via:
    1. Environment variables: INDEXSYNC__SECTION__KEY
    2. YAML config files (project or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    entities: dict[str, EntityConfig] = Field(default_factory=dict)
