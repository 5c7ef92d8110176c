"""Elasticsearch REST client built on httpx.

Versions are concrete indices named ``<alias>_<nanoseconds>``; the entity
type's index name is an alias that points at the Current version. The
backend is typeless (ES >= 7): ``doc_type`` is accepted for interface
compatibility and not sent on the wire.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

import httpx
import structlog

from indexsync.core.errors import ConnectionFailedError, RemoteRejectedError
from indexsync.models import Document
from indexsync.search.client import BulkAction, BulkItemResult, SearchHit, SearchHits

logger = structlog.get_logger()


def _error_reason(response: httpx.Response) -> str:
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text[:200] or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return f"{error.get('type', 'error')}: {error.get('reason', '')}".strip()
    if error:
        return str(error)
    return response.reason_phrase


class HttpSearchClient:
    """SearchClient for an Elasticsearch-compatible REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json", **(headers or {})},
        )

    def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        content: str | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(
                method,
                path,
                json=json_body,
                content=content,
                params=params,
                headers=headers,
            )
        except httpx.TransportError as e:
            raise ConnectionFailedError.unreachable(self.base_url, f"{operation}: {e}") from e
        if response.is_error:
            raise RemoteRejectedError.from_response(
                operation, response.status_code, _error_reason(response)
            )
        return response

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    def ping(self) -> None:
        self._request("ping", "GET", "/")

    def index(
        self, document: Document, *, index: str, doc_type: str, refresh: bool = False  # noqa: ARG002
    ) -> None:
        params: dict[str, Any] = document.options.as_params()
        if refresh:
            params["refresh"] = "true"
        self._request(
            "index", "PUT", f"/{index}/_doc/{document.id}", json_body=document.body, params=params
        )

    def delete(
        self, doc_id: str, *, index: str, doc_type: str, refresh: bool = False  # noqa: ARG002
    ) -> None:
        params = {"refresh": "true"} if refresh else None
        self._request("delete", "DELETE", f"/{index}/_doc/{doc_id}", params=params)

    def bulk(
        self, actions: list[BulkAction], *, index: str, doc_type: str  # noqa: ARG002
    ) -> list[BulkItemResult]:
        if not actions:
            return []
        lines: list[str] = []
        for action in actions:
            meta: dict[str, Any] = {"_id": action.doc_id}
            if action.op == "index" and action.document is not None:
                meta.update(action.document.options.as_params())
                lines.append(json.dumps({"index": meta}))
                lines.append(json.dumps(action.document.body, default=str))
            else:
                lines.append(json.dumps({"delete": meta}))
        response = self._request(
            "bulk",
            "POST",
            f"/{index}/_bulk",
            content="\n".join(lines) + "\n",
            headers={"Content-Type": "application/x-ndjson"},
        )
        results: list[BulkItemResult] = []
        for item in response.json().get("items", []):
            op, info = next(iter(item.items()))
            error = info.get("error")
            results.append(
                BulkItemResult(
                    op=op,
                    doc_id=str(info.get("_id")),
                    status=int(info.get("status", 500)),
                    error=json.dumps(error) if isinstance(error, dict) else error,
                )
            )
        return results

    def search(
        self, query: dict[str, Any], *, index: str, doc_type: str, **options: Any  # noqa: ARG002
    ) -> SearchHits:
        body = dict(query)
        if "from_" in options:
            body["from"] = options.pop("from_")
        body.update(options)
        data = self._request("search", "POST", f"/{index}/_search", json_body=body).json()
        hits_section = data.get("hits", {})
        total = hits_section.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)
        hits = [
            SearchHit(
                id=str(hit["_id"]),
                source=hit.get("_source") or {},
                score=hit.get("_score"),
                index=hit.get("_index"),
            )
            for hit in hits_section.get("hits", [])
        ]
        return SearchHits(total=int(total), hits=hits, aggregations=data.get("aggregations") or {})

    def count(self, query: dict[str, Any], *, index: str, doc_type: str) -> int:  # noqa: ARG002
        body = {"query": query["query"]} if query.get("query") else None
        data = self._request("count", "POST", f"/{index}/_count", json_body=body).json()
        return int(data.get("count", 0))

    def refresh(self, index: str) -> None:
        self._request("refresh", "POST", f"/{index}/_refresh")

    # ------------------------------------------------------------------
    # Index versions
    # ------------------------------------------------------------------

    def create_index_version(self, name: str, options: dict[str, Any] | None = None) -> str:
        version = f"{name}_{time.time_ns()}"
        self._request("create_index_version", "PUT", f"/{version}", json_body=options or None)
        logger.debug("index_version_created", version=version)
        return version

    def list_index_versions(self, name: str) -> list[str]:
        response = self._request(
            "list_index_versions",
            "GET",
            f"/_cat/indices/{name}_*",
            params={"format": "json", "h": "index"},
        )
        pattern = re.compile(rf"^{re.escape(name)}_(\d+)$")
        found = [
            (int(m.group(1)), row["index"])
            for row in response.json()
            if (m := pattern.match(row.get("index", "")))
        ]
        return [n for _suffix, n in sorted(found, reverse=True)]

    def _alias_holders(self, name: str) -> list[str]:
        try:
            response = self._request("get_alias", "GET", f"/_alias/{name}")
        except RemoteRejectedError as e:
            if e.not_found:
                return []
            raise
        return sorted(response.json())

    def current_index_version(self, name: str) -> str | None:
        holders = self._alias_holders(name)
        return holders[-1] if holders else None

    def swap_current(self, name: str, version: str) -> None:
        """Point the alias at ``version`` in one ``_aliases`` request.

        The remove action matches the alias on every version by wildcard,
        so the request never depends on an earlier read of who holds it.
        Concurrent promotions serialize in the cluster and the last one wins
        with the alias on exactly one version.
        """
        actions: list[dict[str, Any]] = [
            {"remove": {"index": f"{name}_*", "alias": name, "must_exist": False}},
            {"add": {"index": version, "alias": name}},
        ]
        try:
            self._request("swap_current", "POST", "/_aliases", json_body={"actions": actions})
        except RemoteRejectedError as e:
            if "invalid_alias_name_exception" not in str(e.details.get("reason", "")):
                raise
            # A concrete index took the base name before the first version existed
            logger.warning("concrete_index_replaced_by_alias", index=name, version=version)
            actions.insert(1, {"remove_index": {"index": name}})
            self._request("swap_current", "POST", "/_aliases", json_body={"actions": actions})

    def delete_index_version(self, version: str) -> None:
        self._request("delete_index_version", "DELETE", f"/{version}")

    def delete_index(self, name: str) -> None:
        self._request("delete_index", "DELETE", f"/{name}")

    def update_mapping(
        self, mapping: dict[str, Any], *, index: str, doc_type: str  # noqa: ARG002
    ) -> None:
        body = mapping if "properties" in mapping else {"properties": mapping}
        self._request("update_mapping", "PUT", f"/{index}/_mapping", json_body=body)

    def optimize(self, name: str) -> None:
        self._request(
            "optimize", "POST", f"/{name}/_forcemerge", params={"max_num_segments": 1}
        )

    def close(self) -> None:
        self._client.close()
