"""Search backend clients and read-side helpers."""

from indexsync.search.client import (
    BulkAction,
    BulkItemResult,
    SearchClient,
    SearchHit,
    SearchHits,
    connect_search_client,
)
from indexsync.search.http import HttpSearchClient
from indexsync.search.memory import InMemorySearchClient
from indexsync.search.queries import IndexedSearch

__all__ = [
    "BulkAction",
    "BulkItemResult",
    "HttpSearchClient",
    "InMemorySearchClient",
    "IndexedSearch",
    "SearchClient",
    "SearchHit",
    "SearchHits",
    "connect_search_client",
]
