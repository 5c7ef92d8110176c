"""Read-side helpers: search, count, facets and similarity queries."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from indexsync.core.errors import BackendUnavailableError, MissingRequiredInputError

if TYPE_CHECKING:
    from indexsync.search.client import SearchClient, SearchHits
    from indexsync.store.base import RecordStore
    from indexsync.sync.registry import EntityRegistry

MORE_LIKE_THIS_OPTIONS = frozenset(
    {
        "fields",
        "like",
        "min_term_freq",
        "max_query_terms",
        "stop_words",
        "min_doc_freq",
        "max_doc_freq",
        "min_word_length",
        "max_word_length",
        "boost_terms",
        "boost",
        "minimum_should_match",
        "include",
    }
)


def normalize_query(query: str | dict[str, Any] | None) -> dict[str, Any]:
    """Turn a query into a search body.

    ``None`` and ``"*"`` match everything, other strings become
    ``query_string`` queries, dicts without a top-level ``query`` key are
    treated as the query clause itself.
    """
    if query is None or query == "*":
        return {"query": {"match_all": {}}}
    if isinstance(query, str):
        return {"query": {"query_string": {"query": query}}}
    if "query" in query:
        return dict(query)
    return {"query": dict(query)}


def _field_value(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def more_like_this_query(record: Any, fields: Sequence[str] | None, **options: Any) -> dict[str, Any]:
    """Build a ``more_like_this`` body for ``record``.

    ``like`` defaults to the record's values of ``fields`` joined by spaces.
    Options outside the supported set are dropped.

    Raises:
        MissingRequiredInputError: ``fields`` is missing, empty or not a list.
    """
    if not fields or isinstance(fields, str) or not isinstance(fields, (list, tuple)):
        raise MissingRequiredInputError.field(
            "fields", "must specify a non-empty list of fields to match against"
        )
    mlt: dict[str, Any] = {k: v for k, v in options.items() if k in MORE_LIKE_THIS_OPTIONS}
    mlt["fields"] = list(fields)
    if not mlt.get("like"):
        mlt["like"] = " ".join(
            str(v) for f in fields if (v := _field_value(record, f)) is not None
        )
    return {"query": {"more_like_this": mlt}}


def facets_query(
    fields: Sequence[str] | str, query: str | dict[str, Any] | None = None, size: int = 10
) -> dict[str, Any]:
    field_list = [fields] if isinstance(fields, str) else list(fields)
    body = normalize_query(query)
    body["size"] = 0
    body["aggs"] = {f: {"terms": {"field": f, "size": size}} for f in field_list}
    return body


def reshape_facets(hits: SearchHits, fields: Sequence[str] | str) -> dict[str, dict[Any, int]]:
    """``{field: {term: count}}`` from terms aggregations."""
    field_list = [fields] if isinstance(fields, str) else list(fields)
    return {
        f: {
            bucket["key"]: bucket["doc_count"]
            for bucket in hits.aggregations.get(f, {}).get("buckets", [])
        }
        for f in field_list
    }


class IndexedSearch:
    """Search entry points for registered entity types.

    Reads go through the entity type's index name, i.e. the alias of the
    Current version, so a rebuild in progress is never observed.
    """

    def __init__(self, registry: EntityRegistry, client: SearchClient | None) -> None:
        self.registry = registry
        self.client = client

    def _require_client(self, operation: str, entity_type: str) -> SearchClient:
        if self.client is None:
            raise BackendUnavailableError.for_operation(operation, entity_type)
        return self.client

    def search_hits(
        self, entity_type: str, query: str | dict[str, Any] | None = None, **options: Any
    ) -> SearchHits:
        et = self.registry.get(entity_type)
        client = self._require_client("search", entity_type)
        return client.search(
            normalize_query(query), index=et.index_name, doc_type=et.doc_type, **options
        )

    def search_count(self, entity_type: str, query: str | dict[str, Any] | None = "*") -> int:
        et = self.registry.get(entity_type)
        client = self._require_client("count", entity_type)
        return client.count(normalize_query(query), index=et.index_name, doc_type=et.doc_type)

    def facets(
        self,
        entity_type: str,
        fields: Sequence[str] | str,
        query: str | dict[str, Any] | None = None,
        size: int = 10,
    ) -> dict[str, dict[Any, int]]:
        et = self.registry.get(entity_type)
        client = self._require_client("facets", entity_type)
        hits = client.search(
            facets_query(fields, query, size), index=et.index_name, doc_type=et.doc_type
        )
        return reshape_facets(hits, fields)

    def more_like_this(
        self, entity_type: str, record: Any, fields: Sequence[str] | None = None, **options: Any
    ) -> SearchHits:
        et = self.registry.get(entity_type)
        body = more_like_this_query(record, fields, **options)
        client = self._require_client("more_like_this", entity_type)
        search_options = {k: v for k, v in options.items() if k in ("size", "from_")}
        return client.search(body, index=et.index_name, doc_type=et.doc_type, **search_options)

    def hits_to_records(
        self, entity_type: str, hits: SearchHits, store: RecordStore
    ) -> list[Any | None]:
        """Load the records behind ``hits``; deleted records come back as None."""
        et = self.registry.get(entity_type)
        return [store.get(et, hit.id) for hit in hits]
