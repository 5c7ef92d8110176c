"""Search backend interface.

Every method may raise ConnectionFailedError (backend unreachable) or
RemoteRejectedError (reached but refused; ``not_found`` for 404s).
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

import structlog

from indexsync.core.errors import ConnectionFailedError

if TYPE_CHECKING:
    from indexsync.config.models import SearchConfig
    from indexsync.models import Document

logger = structlog.get_logger()


@dataclass(frozen=True)
class SearchHit:
    id: str
    source: dict[str, Any]
    score: float | None = None
    index: str | None = None


@dataclass(frozen=True)
class SearchHits:
    """Raw search response: hits plus optional aggregations."""

    total: int
    hits: list[SearchHit] = field(default_factory=list)
    aggregations: dict[str, Any] = field(default_factory=dict)

    def __iter__(self) -> Iterator[SearchHit]:
        return iter(self.hits)

    def __len__(self) -> int:
        return len(self.hits)

    @property
    def ids(self) -> list[str]:
        return [hit.id for hit in self.hits]


@dataclass(frozen=True)
class BulkAction:
    """One action in a bulk request: upsert a document or delete an id."""

    op: Literal["index", "delete"]
    doc_id: str
    document: Document | None = None

    @classmethod
    def upsert(cls, document: Document) -> BulkAction:
        return cls(op="index", doc_id=document.id, document=document)

    @classmethod
    def delete(cls, doc_id: str) -> BulkAction:
        return cls(op="delete", doc_id=doc_id)


@dataclass(frozen=True)
class BulkItemResult:
    op: str
    doc_id: str
    status: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        # A delete of a missing document still converges
        return self.status < 300 or (self.op == "delete" and self.status == 404)


@runtime_checkable
class SearchClient(Protocol):
    """Operations the sync core needs from a search backend."""

    def ping(self) -> None: ...

    def index(
        self, document: Document, *, index: str, doc_type: str, refresh: bool = False
    ) -> None: ...

    def delete(self, doc_id: str, *, index: str, doc_type: str, refresh: bool = False) -> None: ...

    def bulk(
        self, actions: list[BulkAction], *, index: str, doc_type: str
    ) -> list[BulkItemResult]: ...

    def search(
        self, query: dict[str, Any], *, index: str, doc_type: str, **options: Any
    ) -> SearchHits: ...

    def count(self, query: dict[str, Any], *, index: str, doc_type: str) -> int: ...

    def refresh(self, index: str) -> None: ...

    def create_index_version(self, name: str, options: dict[str, Any] | None = None) -> str: ...

    def list_index_versions(self, name: str) -> list[str]: ...

    def current_index_version(self, name: str) -> str | None: ...

    def swap_current(self, name: str, version: str) -> None: ...

    def delete_index_version(self, version: str) -> None: ...

    def delete_index(self, name: str) -> None: ...

    def update_mapping(
        self, mapping: dict[str, Any], *, index: str, doc_type: str
    ) -> None: ...

    def optimize(self, name: str) -> None: ...

    def close(self) -> None: ...


def connect_search_client(config: SearchConfig) -> SearchClient | None:
    """Build the configured client, or None when the backend is unreachable.

    An unreachable backend at startup must not take the host down; callers
    receive None and degrade to "index unavailable".
    """
    client: SearchClient
    if config.backend == "memory":
        from indexsync.search.memory import InMemorySearchClient

        client = InMemorySearchClient()
    else:
        from indexsync.search.http import HttpSearchClient

        client = HttpSearchClient(config.url, timeout=config.timeout_sec)

    if config.verify_on_connect:
        try:
            client.ping()
        except ConnectionFailedError as e:
            logger.warning("search_backend_unavailable", url=config.url, error=e.message)
            client.close()
            return None
    logger.debug("search_backend_connected", backend=config.backend)
    return client
