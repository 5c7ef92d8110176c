"""Record store reading rows from any SQLAlchemy database.

Tables are reflected on first use. Rows come back as plain dicts, so the
default serializer indexes every column.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import MetaData, Table, create_engine, select

from indexsync.core.errors import ConfigError

if TYPE_CHECKING:
    from sqlalchemy import Column, Engine

    from indexsync.models import EntityType

logger = structlog.get_logger()


class SqlRecordStore:
    """Primary store backed by reflected tables."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str) -> SqlRecordStore:
        return cls(create_engine(url))

    def _table(self, entity_type: EntityType) -> Table:
        name = entity_type.table or entity_type.index_name
        with self._lock:
            table = self._tables.get(name)
            if table is None:
                table = Table(name, self._metadata, autoload_with=self.engine)
                self._tables[name] = table
                logger.debug("store_table_reflected", table=name, columns=len(table.columns))
        return table

    def _id_column(self, entity_type: EntityType) -> Column[Any]:
        table = self._table(entity_type)
        if entity_type.id_field not in table.columns:
            raise ConfigError.invalid_value(
                f"entities.{entity_type.name}.id_field",
                entity_type.id_field,
                f"no such column on table {table.name}",
            )
        return table.columns[entity_type.id_field]

    @staticmethod
    def _coerce(column: Column[Any], record_id: str) -> Any:
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return record_id
        try:
            return python_type(record_id)
        except (TypeError, ValueError):
            return record_id

    def get(self, entity_type: EntityType, record_id: str) -> dict[str, Any] | None:
        table = self._table(entity_type)
        id_col = self._id_column(entity_type)
        stmt = select(table).where(id_col == self._coerce(id_col, record_id))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return dict(row) if row is not None else None

    def get_many(self, entity_type: EntityType, record_ids: list[str]) -> dict[str, Any]:
        if not record_ids:
            return {}
        table = self._table(entity_type)
        id_col = self._id_column(entity_type)
        stmt = select(table).where(id_col.in_([self._coerce(id_col, i) for i in record_ids]))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return {str(row[id_col.name]): dict(row) for row in rows}

    def scan(self, entity_type: EntityType, page_size: int) -> Iterator[list[dict[str, Any]]]:
        """Keyset-paginated walk ordered by the id column."""
        table = self._table(entity_type)
        id_col = self._id_column(entity_type)
        last: Any = None
        while True:
            stmt = select(table).order_by(id_col).limit(page_size)
            if last is not None:
                stmt = stmt.where(id_col > last)
            with self.engine.connect() as conn:
                page = [dict(row) for row in conn.execute(stmt).mappings().all()]
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            last = page[-1][id_col.name]

    def record_id(self, entity_type: EntityType, record: dict[str, Any]) -> str:
        return str(record[entity_type.id_field])

    def close(self) -> None:
        self.engine.dispose()
