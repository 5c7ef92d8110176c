"""SQLModel tables for the durable queue and rebuild leases."""

from sqlmodel import Field, SQLModel


class QueuedJob(SQLModel, table=True):
    """A reindex job waiting for (or leased to) a worker."""

    __tablename__ = "reindex_jobs"

    id: int | None = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)
    job_kind: str
    payload: str  # ReindexJob wire form
    enqueued_at: float
    available_at: float = Field(index=True)
    lease_until: float | None = None  # None = not leased
    attempts: int = Field(default=0)


class RebuildLease(SQLModel, table=True):
    """Holder of the rebuild lock for one entity type."""

    __tablename__ = "rebuild_leases"

    entity_type: str = Field(primary_key=True)
    holder: str
    acquired_at: float
    expires_at: float
