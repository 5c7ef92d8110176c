"""Apply an entity's update policy on save and delete.

Immediate policies block the caller for the backend round trip. Enqueue
hands the id to the queue and returns without touching the backend; the
worker decides later whether the id is an upsert or a delete.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from indexsync.core.errors import BackendUnavailableError, ConnectionFailedError, ignore_not_found
from indexsync.models import EntityType, ReindexJob, UpdatePolicy

if TYPE_CHECKING:
    from indexsync.queue.base import QueueBackend
    from indexsync.search.client import SearchClient
    from indexsync.sync.registry import EntityRegistry

logger = structlog.get_logger()


class SyncOutcome(str, Enum):
    """What a save or delete did to the index."""

    SKIPPED = "skipped"
    INDEXED = "indexed"
    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    ENQUEUED = "enqueued"
    UNAVAILABLE = "unavailable"


class UpdateDispatcher:
    """Routes entity mutations according to each type's update policy."""

    def __init__(
        self,
        registry: EntityRegistry,
        client: SearchClient | None,
        queue: QueueBackend | None = None,
        *,
        coarse_refresh: bool = True,
    ) -> None:
        self.registry = registry
        self.client = client
        self.queue = queue
        self.coarse_refresh = coarse_refresh

    def set_policy(self, entity_name: str, value: Any) -> UpdatePolicy:
        """Change a type's policy. Invalid values keep the current one.

        Raises:
            UnknownEntityTypeError: ``entity_name`` is not registered.
            InvalidPolicyError: ``value`` is not a supported policy.
        """
        return self.registry.set_policy(entity_name, value)

    def policy(self, entity_name: str) -> UpdatePolicy:
        return self.registry.policy(entity_name)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def on_save(self, entity_name: str, record: Any) -> SyncOutcome:
        """Index ``record`` after it was created or updated.

        Raises:
            RemoteRejectedError: The backend refused the write (immediate policies).
            BackendUnavailableError: Enqueue policy with no queue configured.
        """
        entity_type = self.registry.get(entity_name)
        if entity_type.should_skip(record):
            return SyncOutcome.SKIPPED

        policy = self.registry.policy(entity_name)
        match policy:
            case UpdatePolicy.DISABLED:
                return SyncOutcome.SKIPPED
            case UpdatePolicy.IMMEDIATE:
                return self._index_now(entity_type, record, refresh=False)
            case UpdatePolicy.IMMEDIATE_WITH_REFRESH:
                return self._index_now(entity_type, record, refresh=True)
            case UpdatePolicy.ENQUEUE:
                return self._enqueue(entity_type, entity_type.record_id(record))

    def on_delete(self, entity_name: str, record: Any) -> SyncOutcome:
        """Remove a deleted entity from the index. ``record`` may be the id.

        Deleting an id that is not in the index is a no-op.

        Raises:
            RemoteRejectedError: The backend refused the delete for a reason other than not-found.
            BackendUnavailableError: Enqueue policy with no queue configured.
        """
        entity_type = self.registry.get(entity_name)
        doc_id = _doc_id(entity_type, record)

        policy = self.registry.policy(entity_name)
        match policy:
            case UpdatePolicy.DISABLED:
                return SyncOutcome.SKIPPED
            case UpdatePolicy.IMMEDIATE:
                return self._delete_now(entity_type, doc_id, refresh=False)
            case UpdatePolicy.IMMEDIATE_WITH_REFRESH:
                return self._delete_now(entity_type, doc_id, refresh=True)
            case UpdatePolicy.ENQUEUE:
                return self._enqueue(entity_type, doc_id)

    # ------------------------------------------------------------------
    # Policy actions
    # ------------------------------------------------------------------

    def _index_now(self, entity_type: EntityType, record: Any, *, refresh: bool) -> SyncOutcome:
        document = entity_type.to_document(record)
        if self.client is None:
            logger.debug(
                "index_skipped_no_client", entity_type=entity_type.name, doc_id=document.id
            )
            return SyncOutcome.UNAVAILABLE
        try:
            self.client.index(
                document,
                index=entity_type.index_name,
                doc_type=entity_type.doc_type,
                refresh=refresh and not self.coarse_refresh,
            )
            if refresh and self.coarse_refresh:
                self.client.refresh(entity_type.index_name)
        except ConnectionFailedError as e:
            logger.warning(
                "index_unavailable", entity_type=entity_type.name, doc_id=document.id, error=e.message
            )
            return SyncOutcome.UNAVAILABLE
        return SyncOutcome.INDEXED

    def _delete_now(self, entity_type: EntityType, doc_id: str, *, refresh: bool) -> SyncOutcome:
        if self.client is None:
            logger.debug("delete_skipped_no_client", entity_type=entity_type.name, doc_id=doc_id)
            return SyncOutcome.UNAVAILABLE
        try:
            with ignore_not_found() as absent:
                self.client.delete(
                    doc_id,
                    index=entity_type.index_name,
                    doc_type=entity_type.doc_type,
                    refresh=refresh and not self.coarse_refresh,
                )
            if refresh and self.coarse_refresh and not absent.suppressed:
                self.client.refresh(entity_type.index_name)
        except ConnectionFailedError as e:
            logger.warning(
                "delete_unavailable", entity_type=entity_type.name, doc_id=doc_id, error=e.message
            )
            return SyncOutcome.UNAVAILABLE
        return SyncOutcome.ALREADY_ABSENT if absent.suppressed else SyncOutcome.DELETED

    def _enqueue(self, entity_type: EntityType, doc_id: str) -> SyncOutcome:
        if self.queue is None:
            raise BackendUnavailableError.for_operation("enqueue reindex job", entity_type.name)
        self.queue.enqueue(ReindexJob.reindex(entity_type.name, [doc_id]))
        return SyncOutcome.ENQUEUED


def _doc_id(entity_type: EntityType, record: Any) -> str:
    if isinstance(record, (str, int)):
        return str(record)
    return entity_type.record_id(record)
