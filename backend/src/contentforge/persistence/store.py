"""Table definitions built from collection metadata.

Tables are described with SQLAlchemy Core so the same gateway code runs on
SQLite and PostgreSQL. A table is rebuilt whenever its collection
definition changes (e.g. after a registry refresh).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import Column, Float, Integer, MetaData, Table, Text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import TypeEngine

from contentforge.core.types import get_storage_type
from contentforge.errors import StoreError
from contentforge.schema.types import Collection, Field

if TYPE_CHECKING:
    from contentforge.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)

_COLUMN_TYPES: dict[str, type[TypeEngine]] = {
    "TEXT": Text,
    "INTEGER": Integer,
    "REAL": Float,
}


class Store:
    """Owns the engine and the table definitions for every collection."""

    def __init__(self, engine: Engine, registry: SchemaRegistry):
        self.engine = engine
        self.registry = registry
        self.metadata = MetaData()
        self._tables: dict[str, tuple[Collection, Table]] = {}

    def table_for(self, collection: Collection) -> Table:
        """Return the table for a collection, building it on first use."""
        cached = self._tables.get(collection.name)
        if cached is not None and cached[0] == collection:
            return cached[1]
        if cached is not None:
            self.metadata.remove(cached[1])

        columns = [self._column(collection, f) for f in collection.fields if f.has_column]
        table = Table(collection.name, self.metadata, *columns)
        self._tables[collection.name] = (collection, table)
        return table

    def _column(self, collection: Collection, field: Field) -> Column:
        storage_type = self._storage_type(field)
        column_type = _COLUMN_TYPES.get(storage_type, Text)
        if field.name == collection.primary_key:
            return Column(
                field.name,
                column_type,
                primary_key=True,
                autoincrement=column_type is Integer,
            )
        return Column(field.name, column_type, nullable=True)

    def _storage_type(self, field: Field) -> str:
        # A many-to-one column stores the related collection's key
        if field.is_many_to_one and self.registry.has_collection(field.relation.collection):
            target = self.registry.get_collection(field.relation.collection)
            target_pk = target.get_field(target.primary_key)
            if target_pk is not None:
                return get_storage_type(target_pk.kind)
        return get_storage_type(field.kind)

    def create_all(self) -> list[str]:
        """Create missing tables for every registered collection.

        Returns:
            Names of the collections whose tables were checked

        Raises:
            StoreError: If the store rejects the DDL
        """
        names = self.registry.list_collections()
        tables = [self.table_for(self.registry.get_collection(name)) for name in names]
        try:
            self.metadata.create_all(self.engine, tables=tables)
        except SQLAlchemyError as exc:
            logger.error("Failed to create tables: %s", exc)
            raise StoreError() from exc
        logger.info("Ensured tables for %d collections", len(tables))
        return names
