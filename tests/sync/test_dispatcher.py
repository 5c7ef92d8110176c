"""Tests for update policy dispatch."""

from __future__ import annotations

from typing import Any
from unittest.mock import create_autospec

import pytest

from indexsync.core.errors import (
    BackendUnavailableError,
    ConnectionFailedError,
    InvalidPolicyError,
    RemoteRejectedError,
    UnknownEntityTypeError,
)
from indexsync.models import Document, JobKind, UpdatePolicy
from indexsync.queue import InMemoryQueue
from indexsync.search import InMemorySearchClient
from indexsync.sync import EntityRegistry, SyncOutcome, UpdateDispatcher

ARTICLE = {"id": 42, "title": "Hello"}


def _dispatcher(
    registry: EntityRegistry,
    client: Any,
    queue: InMemoryQueue | None = None,
    *,
    policy: UpdatePolicy,
    coarse_refresh: bool = True,
) -> UpdateDispatcher:
    dispatcher = UpdateDispatcher(registry, client, queue, coarse_refresh=coarse_refresh)
    dispatcher.set_policy("Article", policy)
    return dispatcher


class _RejectingClient(InMemorySearchClient):
    def __init__(self, status: int) -> None:
        super().__init__()
        self.status = status

    def index(self, document: Document, **kwargs: Any) -> None:
        raise RemoteRejectedError.from_response("index", self.status, "mapper_parsing_exception")

    def delete(self, doc_id: str, **kwargs: Any) -> None:
        raise RemoteRejectedError.from_response("delete", self.status, "rejected")


class _UnreachableClient(InMemorySearchClient):
    def index(self, document: Document, **kwargs: Any) -> None:
        raise ConnectionFailedError.unreachable("http://search:9200", "refused")

    def delete(self, doc_id: str, **kwargs: Any) -> None:
        raise ConnectionFailedError.unreachable("http://search:9200", "refused")


class TestOnSave:
    """Save path per policy."""

    def test_disabled_is_noop(
        self, registry: EntityRegistry, client: InMemorySearchClient
    ) -> None:
        """Disabled types never touch the index."""
        dispatcher = _dispatcher(registry, client, policy=UpdatePolicy.DISABLED)

        assert dispatcher.on_save("Article", ARTICLE) is SyncOutcome.SKIPPED
        assert client.get_document("articles", "42", "article") is None

    def test_immediate_writes_without_refresh(
        self, registry: EntityRegistry, client: InMemorySearchClient
    ) -> None:
        """Immediate writes synchronously; visibility waits for a refresh."""
        dispatcher = _dispatcher(registry, client, policy=UpdatePolicy.IMMEDIATE)

        outcome = dispatcher.on_save("Article", ARTICLE)

        assert outcome is SyncOutcome.INDEXED
        assert client.get_document("articles", "42", "article") == ARTICLE
        assert client.count({"query": {"match_all": {}}}, index="articles", doc_type="article") == 0

    def test_immediate_with_refresh_is_searchable_on_return(
        self, registry: EntityRegistry, client: InMemorySearchClient
    ) -> None:
        """With refresh the write is searchable before the call returns."""
        dispatcher = _dispatcher(registry, client, policy=UpdatePolicy.IMMEDIATE_WITH_REFRESH)

        dispatcher.on_save("Article", ARTICLE)

        hits = client.search({"query": {"match_all": {}}}, index="articles", doc_type="article")
        assert hits.ids == ["42"]

    def test_coarse_refresh_refreshes_whole_index(self, registry: EntityRegistry) -> None:
        """Coarse refresh issues a separate index refresh."""
        client = create_autospec(InMemorySearchClient, instance=True)
        dispatcher = _dispatcher(registry, client, policy=UpdatePolicy.IMMEDIATE_WITH_REFRESH)

        dispatcher.on_save("Article", ARTICLE)

        _, kwargs = client.index.call_args
        assert kwargs["refresh"] is False
        client.refresh.assert_called_once_with("articles")

    def test_fine_refresh_rides_on_the_write(self, registry: EntityRegistry) -> None:
        """Without coarse refresh the write itself carries refresh=true."""
        client = create_autospec(InMemorySearchClient, instance=True)
        dispatcher = _dispatcher(
            registry, client, policy=UpdatePolicy.IMMEDIATE_WITH_REFRESH, coarse_refresh=False
        )

        dispatcher.on_save("Article", ARTICLE)

        _, kwargs = client.index.call_args
        assert kwargs["refresh"] is True
        client.refresh.assert_not_called()

    def test_enqueue_returns_without_backend_call(
        self, registry: EntityRegistry, queue: InMemoryQueue
    ) -> None:
        """Enqueue pushes a one-id job and never calls the search client."""
        client = create_autospec(InMemorySearchClient, instance=True)
        dispatcher = _dispatcher(registry, client, queue, policy=UpdatePolicy.ENQUEUE)

        outcome = dispatcher.on_save("Article", ARTICLE)

        assert outcome is SyncOutcome.ENQUEUED
        assert client.mock_calls == []
        delivery = queue.dequeue(timeout=0)
        assert delivery is not None
        assert delivery.job.job_kind is JobKind.REINDEX
        assert delivery.job.entity_type == "Article"
        assert delivery.job.ids == ("42",)

    def test_enqueue_without_queue_is_a_wiring_error(
        self, registry: EntityRegistry, client: InMemorySearchClient
    ) -> None:
        """A missing queue raises instead of silently dropping the update."""
        dispatcher = _dispatcher(registry, client, None, policy=UpdatePolicy.ENQUEUE)

        with pytest.raises(BackendUnavailableError):
            dispatcher.on_save("Article", ARTICLE)

    @pytest.mark.parametrize(
        "policy",
        [UpdatePolicy.IMMEDIATE, UpdatePolicy.IMMEDIATE_WITH_REFRESH, UpdatePolicy.ENQUEUE],
    )
    def test_skip_hook_runs_before_policy(
        self,
        registry: EntityRegistry,
        client: InMemorySearchClient,
        queue: InMemoryQueue,
        policy: UpdatePolicy,
    ) -> None:
        """Records that opt out are never written or enqueued."""

        class Draft:
            id = 7
            title = "wip"

            def skip_indexing(self) -> bool:
                return True

        dispatcher = _dispatcher(registry, client, queue, policy=policy)

        assert dispatcher.on_save("Article", Draft()) is SyncOutcome.SKIPPED
        assert client.get_document("articles", "7", "article") is None
        assert len(queue) == 0

    def test_no_client_degrades_to_unavailable(self, registry: EntityRegistry) -> None:
        """Without a backend, immediate policies report unavailable."""
        dispatcher = _dispatcher(registry, None, policy=UpdatePolicy.IMMEDIATE)

        assert dispatcher.on_save("Article", ARTICLE) is SyncOutcome.UNAVAILABLE

    def test_connection_failure_degrades_to_unavailable(self, registry: EntityRegistry) -> None:
        """An unreachable backend at call time does not raise."""
        dispatcher = _dispatcher(registry, _UnreachableClient(), policy=UpdatePolicy.IMMEDIATE)

        assert dispatcher.on_save("Article", ARTICLE) is SyncOutcome.UNAVAILABLE

    def test_remote_rejection_surfaces(self, registry: EntityRegistry) -> None:
        """A refused write is reported to the caller."""
        dispatcher = _dispatcher(registry, _RejectingClient(400), policy=UpdatePolicy.IMMEDIATE)

        with pytest.raises(RemoteRejectedError):
            dispatcher.on_save("Article", ARTICLE)


class TestOnDelete:
    """Delete path per policy."""

    @pytest.mark.parametrize(
        "policy", [UpdatePolicy.IMMEDIATE, UpdatePolicy.IMMEDIATE_WITH_REFRESH]
    )
    def test_deletes_present_document(
        self, registry: EntityRegistry, client: InMemorySearchClient, policy: UpdatePolicy
    ) -> None:
        """Present documents are deleted."""
        dispatcher = _dispatcher(registry, client, policy=policy)
        dispatcher.on_save("Article", ARTICLE)

        assert dispatcher.on_delete("Article", ARTICLE) is SyncOutcome.DELETED
        assert client.get_document("articles", "42", "article") is None

    @pytest.mark.parametrize(
        "policy", [UpdatePolicy.IMMEDIATE, UpdatePolicy.IMMEDIATE_WITH_REFRESH]
    )
    def test_absent_document_is_noop(
        self, registry: EntityRegistry, client: InMemorySearchClient, policy: UpdatePolicy
    ) -> None:
        """Deleting what is not indexed succeeds under every immediate policy."""
        dispatcher = _dispatcher(registry, client, policy=policy)

        assert dispatcher.on_delete("Article", 42) is SyncOutcome.ALREADY_ABSENT

    def test_absent_document_after_index_exists_is_noop(
        self, registry: EntityRegistry, client: InMemorySearchClient
    ) -> None:
        """Not-found for the document itself is swallowed as well."""
        dispatcher = _dispatcher(registry, client, policy=UpdatePolicy.IMMEDIATE)
        dispatcher.on_save("Article", {"id": 1, "title": "other"})

        assert dispatcher.on_delete("Article", "42") is SyncOutcome.ALREADY_ABSENT

    def test_non_not_found_rejection_surfaces(self, registry: EntityRegistry) -> None:
        """Only not-found is exempt."""
        dispatcher = _dispatcher(registry, _RejectingClient(500), policy=UpdatePolicy.IMMEDIATE)

        with pytest.raises(RemoteRejectedError):
            dispatcher.on_delete("Article", 42)

    def test_enqueue_defers_to_worker(
        self, registry: EntityRegistry, queue: InMemoryQueue
    ) -> None:
        """Deletes under enqueue push the id without touching the backend."""
        client = create_autospec(InMemorySearchClient, instance=True)
        dispatcher = _dispatcher(registry, client, queue, policy=UpdatePolicy.ENQUEUE)

        assert dispatcher.on_delete("Article", ARTICLE) is SyncOutcome.ENQUEUED
        assert client.mock_calls == []
        assert len(queue) == 1

    def test_disabled_is_noop(self, registry: EntityRegistry) -> None:
        """Disabled deletes do nothing."""
        client = create_autospec(InMemorySearchClient, instance=True)
        dispatcher = _dispatcher(registry, client, policy=UpdatePolicy.DISABLED)

        assert dispatcher.on_delete("Article", 42) is SyncOutcome.SKIPPED
        assert client.mock_calls == []

    def test_connection_failure_degrades_to_unavailable(self, registry: EntityRegistry) -> None:
        """Unreachable backend on delete reports unavailable."""
        dispatcher = _dispatcher(registry, _UnreachableClient(), policy=UpdatePolicy.IMMEDIATE)

        assert dispatcher.on_delete("Article", 42) is SyncOutcome.UNAVAILABLE


class TestPolicyAssignment:
    """set_policy through the dispatcher."""

    def test_invalid_value_keeps_prior_policy(
        self, registry: EntityRegistry, client: InMemorySearchClient, queue: InMemoryQueue
    ) -> None:
        """An invalid assignment fails and the old policy keeps applying."""
        dispatcher = _dispatcher(registry, client, queue, policy=UpdatePolicy.ENQUEUE)

        with pytest.raises(InvalidPolicyError):
            dispatcher.set_policy("Article", "eventually")

        assert dispatcher.policy("Article") is UpdatePolicy.ENQUEUE
        assert dispatcher.on_save("Article", ARTICLE) is SyncOutcome.ENQUEUED

    def test_unknown_entity_type(
        self, registry: EntityRegistry, client: InMemorySearchClient
    ) -> None:
        """Mutations of unregistered types fail loudly."""
        dispatcher = UpdateDispatcher(registry, client)

        with pytest.raises(UnknownEntityTypeError):
            dispatcher.on_save("Comment", {"id": 1})
