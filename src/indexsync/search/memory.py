"""In-process search backend.

Mirrors the parts of Elasticsearch semantics the sync core depends on:

- physical indices addressed directly or through an alias
- writes become searchable only after a refresh (or ``refresh=True``)
- deleting a missing document or index is a 404 rejection
- writing to an unknown name auto-creates a concrete index
- alias swaps are a single step under the lock

Used for development setups and as the backend in tests.
"""

from __future__ import annotations

import re
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import structlog

from indexsync.core.errors import RemoteRejectedError
from indexsync.models import Document
from indexsync.search.client import BulkAction, BulkItemResult, SearchHit, SearchHits

logger = structlog.get_logger()

_DocKey = tuple[str, str]  # (doc_type, doc_id)


@dataclass
class _PhysicalIndex:
    name: str
    settings: dict[str, Any] = field(default_factory=dict)
    mappings: dict[str, dict[str, Any]] = field(default_factory=dict)
    docs: dict[_DocKey, dict[str, Any]] = field(default_factory=dict)
    visible: dict[_DocKey, dict[str, Any]] = field(default_factory=dict)
    routing: dict[_DocKey, str] = field(default_factory=dict)
    refresh_count: int = 0
    optimize_count: int = 0

    def refresh(self) -> None:
        self.visible = dict(self.docs)
        self.refresh_count += 1


class InMemorySearchClient:
    """Thread-safe in-memory implementation of SearchClient."""

    def __init__(self, *, auto_create_index: bool = True) -> None:
        self._indices: dict[str, _PhysicalIndex] = {}
        self._aliases: dict[str, str] = {}
        self._lock = threading.RLock()
        self._last_suffix = 0
        self._auto_create = auto_create_index

    # ------------------------------------------------------------------
    # Resolution helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _resolve(self, name: str, operation: str, *, create: bool = False) -> _PhysicalIndex:
        target = self._aliases.get(name, name)
        physical = self._indices.get(target)
        if physical is None:
            if create and self._auto_create and name not in self._aliases:
                physical = self._indices[name] = _PhysicalIndex(name=name)
                logger.debug("memory_index_auto_created", index=name)
            else:
                raise RemoteRejectedError.missing(operation, f"index [{name}]")
        return physical

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    def ping(self) -> None:
        return None

    def index(
        self, document: Document, *, index: str, doc_type: str, refresh: bool = False
    ) -> None:
        with self._lock:
            physical = self._resolve(index, "index", create=True)
            key = (doc_type, document.id)
            physical.docs[key] = dict(document.body)
            routing = document.options.as_params().get("routing")
            if routing is not None:
                physical.routing[key] = routing
            else:
                physical.routing.pop(key, None)
            if refresh:
                physical.refresh()

    def delete(self, doc_id: str, *, index: str, doc_type: str, refresh: bool = False) -> None:
        with self._lock:
            physical = self._resolve(index, "delete")
            key = (doc_type, doc_id)
            if key not in physical.docs:
                raise RemoteRejectedError.missing("delete", f"document [{doc_type}/{doc_id}]")
            del physical.docs[key]
            physical.routing.pop(key, None)
            if refresh:
                physical.refresh()

    def bulk(
        self, actions: list[BulkAction], *, index: str, doc_type: str
    ) -> list[BulkItemResult]:
        results: list[BulkItemResult] = []
        with self._lock:
            for action in actions:
                try:
                    if action.op == "index":
                        if action.document is None:
                            raise RemoteRejectedError.from_response("bulk", 400, "index action without a document")
                        self.index(action.document, index=index, doc_type=doc_type)
                        results.append(BulkItemResult(op="index", doc_id=action.doc_id, status=200))
                    else:
                        self.delete(action.doc_id, index=index, doc_type=doc_type)
                        results.append(BulkItemResult(op="delete", doc_id=action.doc_id, status=200))
                except RemoteRejectedError as e:
                    results.append(
                        BulkItemResult(
                            op=action.op,
                            doc_id=action.doc_id,
                            status=e.status or 400,
                            error=e.message,
                        )
                    )
        return results

    def search(
        self, query: dict[str, Any], *, index: str, doc_type: str, **options: Any
    ) -> SearchHits:
        with self._lock:
            physical = self._resolve(index, "search")
            matched = [
                (key, body)
                for key, body in sorted(physical.visible.items())
                if key[0] == doc_type and _matches(query.get("query"), key[1], body)
            ]
        start = int(options.get("from_", query.get("from", 0)))
        size = int(options.get("size", query.get("size", 10)))
        hits = [
            SearchHit(id=doc_id, source=dict(body), score=1.0, index=physical.name)
            for (_type, doc_id), body in matched[start : start + size]
        ]
        aggregations = {
            name: _terms_aggregation(agg, [body for _key, body in matched])
            for name, agg in (query.get("aggs") or query.get("aggregations") or {}).items()
        }
        return SearchHits(total=len(matched), hits=hits, aggregations=aggregations)

    def count(self, query: dict[str, Any], *, index: str, doc_type: str) -> int:
        with self._lock:
            physical = self._resolve(index, "count")
            return sum(
                1
                for key, body in physical.visible.items()
                if key[0] == doc_type and _matches(query.get("query"), key[1], body)
            )

    def refresh(self, index: str) -> None:
        with self._lock:
            self._resolve(index, "refresh").refresh()

    # ------------------------------------------------------------------
    # Index versions
    # ------------------------------------------------------------------

    def create_index_version(self, name: str, options: dict[str, Any] | None = None) -> str:
        with self._lock:
            suffix = max(time.time_ns(), self._last_suffix + 1)
            self._last_suffix = suffix
            version = f"{name}_{suffix}"
            self._indices[version] = _PhysicalIndex(name=version, settings=dict(options or {}))
        logger.debug("memory_index_version_created", version=version)
        return version

    def list_index_versions(self, name: str) -> list[str]:
        pattern = re.compile(rf"^{re.escape(name)}_(\d+)$")
        with self._lock:
            found = [(int(m.group(1)), n) for n in self._indices if (m := pattern.match(n))]
        return [n for _suffix, n in sorted(found, reverse=True)]

    def current_index_version(self, name: str) -> str | None:
        with self._lock:
            return self._aliases.get(name)

    def swap_current(self, name: str, version: str) -> None:
        with self._lock:
            if version not in self._indices:
                raise RemoteRejectedError.missing("swap_current", f"index [{version}]")
            # A concrete index squatting on the alias name is removed in the same step
            self._indices.pop(name, None)
            self._aliases[name] = version

    def delete_index_version(self, version: str) -> None:
        with self._lock:
            if version not in self._indices:
                raise RemoteRejectedError.missing("delete_index_version", f"index [{version}]")
            del self._indices[version]
            for alias in [a for a, target in self._aliases.items() if target == version]:
                del self._aliases[alias]

    def delete_index(self, name: str) -> None:
        with self._lock:
            if name in self._aliases:
                raise RemoteRejectedError.from_response(
                    "delete_index", 400, f"[{name}] is an alias, specify concrete indices"
                )
        self.delete_index_version(name)

    def update_mapping(self, mapping: dict[str, Any], *, index: str, doc_type: str) -> None:
        with self._lock:
            physical = self._resolve(index, "update_mapping")
            physical.mappings[doc_type] = dict(mapping)

    def optimize(self, name: str) -> None:
        with self._lock:
            self._resolve(name, "optimize").optimize_count += 1

    def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Introspection (tests and diagnostics)
    # ------------------------------------------------------------------

    def get_document(self, index: str, doc_id: str, doc_type: str) -> dict[str, Any] | None:
        """Latest written body, regardless of refresh state."""
        with self._lock:
            try:
                physical = self._resolve(index, "get")
            except RemoteRejectedError:
                return None
            body = physical.docs.get((doc_type, doc_id))
            return dict(body) if body is not None else None

    def document_ids(self, index: str, doc_type: str) -> list[str]:
        with self._lock:
            try:
                physical = self._resolve(index, "get")
            except RemoteRejectedError:
                return []
            return sorted(doc_id for t, doc_id in physical.docs if t == doc_type)

    def physical_index(self, name: str) -> _PhysicalIndex | None:
        with self._lock:
            return self._indices.get(self._aliases.get(name, name))


# ----------------------------------------------------------------------
# Query evaluation
# ----------------------------------------------------------------------


def _text_values(body: dict[str, Any], fields: list[str] | None = None) -> list[str]:
    keys = fields if fields else list(body)
    return [str(body[k]).lower() for k in keys if k in body and body[k] is not None]


def _matches(query: dict[str, Any] | None, doc_id: str, body: dict[str, Any]) -> bool:
    if not query or "match_all" in query:
        return True
    if "ids" in query:
        return doc_id in {str(v) for v in query["ids"].get("values", [])}
    if "term" in query:
        field_name, value = next(iter(query["term"].items()))
        if isinstance(value, dict):
            value = value.get("value")
        return body.get(field_name) == value
    if "match" in query:
        field_name, value = next(iter(query["match"].items()))
        if isinstance(value, dict):
            value = value.get("query")
        words = str(value).lower().split()
        haystack = " ".join(_text_values(body, [field_name]))
        return any(w in haystack for w in words)
    if "query_string" in query:
        text = str(query["query_string"].get("query", "*")).strip().lower()
        if text in ("", "*"):
            return True
        haystack = " ".join(_text_values(body, query["query_string"].get("fields")))
        return all(w in haystack for w in text.split())
    if "more_like_this" in query:
        mlt = query["more_like_this"]
        like = mlt.get("like", "")
        words = " ".join(like if isinstance(like, list) else [like]).lower().split()
        haystack = " ".join(_text_values(body, mlt.get("fields")))
        return any(w in haystack for w in words)
    if "bool" in query:
        clauses = query["bool"]
        must = clauses.get("must", [])
        must = must if isinstance(must, list) else [must]
        must_not = clauses.get("must_not", [])
        must_not = must_not if isinstance(must_not, list) else [must_not]
        return all(_matches(q, doc_id, body) for q in must) and not any(
            _matches(q, doc_id, body) for q in must_not
        )
    raise RemoteRejectedError.from_response("search", 400, f"unsupported query: {sorted(query)}")


def _terms_aggregation(agg: dict[str, Any], bodies: list[dict[str, Any]]) -> dict[str, Any]:
    terms = agg.get("terms")
    if terms is None:
        raise RemoteRejectedError.from_response("search", 400, "only terms aggregations are supported")
    counts: Counter[Any] = Counter()
    for body in bodies:
        value = body.get(terms["field"])
        for v in value if isinstance(value, list) else [value]:
            if v is not None:
                counts[v] += 1
    size = int(terms.get("size", 10))
    return {
        "buckets": [
            {"key": key, "doc_count": n}
            for key, n in sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))[:size]
        ]
    }
