"""Dict-backed record store."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any

from indexsync.models import EntityType


def _id_order(record_id: str) -> tuple[int, int | str]:
    # Numeric ids sort numerically and before non-numeric ids
    return (0, int(record_id)) if record_id.isdigit() else (1, record_id)


class InMemoryRecordStore:
    """Records held per entity type name, keyed by stringified id."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    def put(self, entity_type: EntityType, record: Any) -> str:
        record_id = entity_type.record_id(record)
        with self._lock:
            self._records.setdefault(entity_type.name, {})[record_id] = record
        return record_id

    def remove(self, entity_type: EntityType, record_id: Any) -> None:
        with self._lock:
            self._records.get(entity_type.name, {}).pop(str(record_id), None)

    def get(self, entity_type: EntityType, record_id: str) -> Any | None:
        with self._lock:
            return self._records.get(entity_type.name, {}).get(str(record_id))

    def get_many(self, entity_type: EntityType, record_ids: list[str]) -> dict[str, Any]:
        with self._lock:
            table = self._records.get(entity_type.name, {})
            return {str(i): table[str(i)] for i in record_ids if str(i) in table}

    def scan(self, entity_type: EntityType, page_size: int) -> Iterator[list[Any]]:
        with self._lock:
            table = dict(self._records.get(entity_type.name, {}))
        ordered = [table[k] for k in sorted(table, key=_id_order)]
        for start in range(0, len(ordered), page_size):
            yield ordered[start : start + page_size]

    def record_id(self, entity_type: EntityType, record: Any) -> str:
        return entity_type.record_id(record)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(t) for t in self._records.values())
