"""Tests for the in-memory search backend."""

from __future__ import annotations

import pytest

from indexsync.core.errors import RemoteRejectedError
from indexsync.models import Document, IndexingOptions
from indexsync.search import BulkAction, InMemorySearchClient, SearchClient


def _doc(doc_id: str, **body: object) -> Document:
    return Document(id=doc_id, body={"id": doc_id, **body})


class TestDocuments:
    def test_writes_invisible_until_refresh(self, client: InMemorySearchClient) -> None:
        client.index(_doc("1", title="a"), index="articles", doc_type="article")

        assert client.count({}, index="articles", doc_type="article") == 0
        client.refresh("articles")
        assert client.count({}, index="articles", doc_type="article") == 1

    def test_refresh_flag_makes_write_visible(self, client: InMemorySearchClient) -> None:
        client.index(_doc("1"), index="articles", doc_type="article", refresh=True)

        assert client.count({}, index="articles", doc_type="article") == 1

    def test_delete_missing_document_is_not_found(self, client: InMemorySearchClient) -> None:
        client.index(_doc("1"), index="articles", doc_type="article")

        with pytest.raises(RemoteRejectedError) as exc_info:
            client.delete("2", index="articles", doc_type="article")

        assert exc_info.value.not_found

    def test_delete_from_missing_index_is_not_found(self, client: InMemorySearchClient) -> None:
        with pytest.raises(RemoteRejectedError) as exc_info:
            client.delete("1", index="nothing", doc_type="article")

        assert exc_info.value.not_found

    def test_doc_types_are_separate(self, client: InMemorySearchClient) -> None:
        client.index(_doc("1"), index="content", doc_type="article")
        client.index(_doc("1"), index="content", doc_type="comment")

        client.delete("1", index="content", doc_type="comment")

        assert client.document_ids("content", "article") == ["1"]
        assert client.document_ids("content", "comment") == []

    def test_routing_recorded(self, client: InMemorySearchClient) -> None:
        doc = Document(id="1", body={}, options=IndexingOptions(routing="user-7"))
        client.index(doc, index="articles", doc_type="article")

        physical = client.physical_index("articles")
        assert physical is not None
        assert physical.routing[("article", "1")] == "user-7"

    def test_bulk_reports_per_item_status(self, client: InMemorySearchClient) -> None:
        results = client.bulk(
            [BulkAction.upsert(_doc("1")), BulkAction.delete("2")],
            index="articles",
            doc_type="article",
        )

        assert [(r.op, r.status) for r in results] == [("index", 200), ("delete", 404)]
        assert all(r.ok for r in results)

    def test_search_filters_and_pages(self, client: InMemorySearchClient) -> None:
        for i, title in enumerate(["red apple", "green apple", "red car"], start=1):
            client.index(_doc(str(i), title=title), index="articles", doc_type="article")
        client.refresh("articles")

        hits = client.search(
            {"query": {"match": {"title": "apple"}}}, index="articles", doc_type="article", size=1
        )

        assert hits.total == 2
        assert hits.ids == ["1"]

    def test_unsupported_query_rejected(self, client: InMemorySearchClient) -> None:
        client.index(_doc("1"), index="articles", doc_type="article", refresh=True)

        with pytest.raises(RemoteRejectedError):
            client.search({"query": {"geo_shape": {}}}, index="articles", doc_type="article")


class TestVersions:
    def test_versions_listed_newest_first(self, client: InMemorySearchClient) -> None:
        first = client.create_index_version("articles")
        second = client.create_index_version("articles")
        client.create_index_version("articles_archive")

        assert client.list_index_versions("articles") == [second, first]

    def test_alias_routes_reads_and_writes(self, client: InMemorySearchClient) -> None:
        old = client.create_index_version("articles")
        new = client.create_index_version("articles")
        client.swap_current("articles", old)

        client.index(_doc("1"), index="articles", doc_type="article")
        client.index(_doc("2"), index=new, doc_type="article")

        assert client.document_ids(old, "article") == ["1"]
        client.swap_current("articles", new)
        assert client.current_index_version("articles") == new
        assert client.document_ids("articles", "article") == ["2"]

    def test_swap_replaces_concrete_index_with_alias(self, client: InMemorySearchClient) -> None:
        """Documents written before the first version existed go away on promotion."""
        client.index(_doc("1"), index="articles", doc_type="article")
        version = client.create_index_version("articles")

        client.swap_current("articles", version)

        assert client.document_ids("articles", "article") == []

    def test_swap_to_missing_version_rejected(self, client: InMemorySearchClient) -> None:
        with pytest.raises(RemoteRejectedError):
            client.swap_current("articles", "articles_1")

    def test_deleting_current_version_drops_alias(self, client: InMemorySearchClient) -> None:
        version = client.create_index_version("articles")
        client.swap_current("articles", version)

        client.delete_index_version(version)

        assert client.current_index_version("articles") is None

    def test_delete_index_refuses_alias(self, client: InMemorySearchClient) -> None:
        version = client.create_index_version("articles")
        client.swap_current("articles", version)

        with pytest.raises(RemoteRejectedError):
            client.delete_index("articles")

    def test_options_and_mapping_stored(self, client: InMemorySearchClient) -> None:
        version = client.create_index_version("articles", {"number_of_shards": 2})
        client.update_mapping({"title": {"type": "text"}}, index=version, doc_type="article")

        physical = client.physical_index(version)
        assert physical is not None
        assert physical.settings == {"number_of_shards": 2}
        assert physical.mappings["article"] == {"title": {"type": "text"}}

    def test_satisfies_protocol(self, client: InMemorySearchClient) -> None:
        assert isinstance(client, SearchClient)
