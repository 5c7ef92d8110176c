"""Primary record store interface.

The primary store is the source of truth. Workers read records back from it
by id, and rebuilds page through every record of an entity type.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from indexsync.models import EntityType


@runtime_checkable
class RecordStore(Protocol):
    def get(self, entity_type: EntityType, record_id: str) -> Any | None:
        """Load one record; None when it no longer exists."""
        ...

    def get_many(self, entity_type: EntityType, record_ids: list[str]) -> dict[str, Any]:
        """Load the records that still exist, keyed by id."""
        ...

    def scan(self, entity_type: EntityType, page_size: int) -> Iterator[list[Any]]:
        """Yield every record in pages of at most ``page_size``."""
        ...

    def record_id(self, entity_type: EntityType, record: Any) -> str:
        """Stringified primary key of ``record``."""
        ...
