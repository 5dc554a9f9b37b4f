"""Relational gateway: CRUD for one collection.

The gateway is generic. Everything collection-specific (stamping, hashing,
value coercion, redaction, cache invalidation) is done by hook handlers
subscribed to the lifecycle events it publishes:

- ``collection.select.<name>:before`` filter, data ``{"columns": [...]}``
- ``collection.select.<name>`` filter, data is the list of loaded rows
- ``load.relational.onetomany`` filter, data is the rows of one relation
- ``collection.<verb>.<name>:before`` filter for insert/update/delete
- ``collection.<verb>.<name>:after`` action receiving a MutationEvent

A write and every nested write it causes share one transaction; store
calls made meanwhile (by nested gateways or by filter handlers) join it.
After-actions are deferred until that transaction commits and dropped
when it rolls back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from functools import partial
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, insert, or_, select, true, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement

from contentforge.core.codecs import get_codec
from contentforge.errors import (
    BadRequestError,
    ContentError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from contentforge.hooks.types import MutationEvent, Payload, qualified_event
from contentforge.persistence.query import QueryOptions
from contentforge.schema.types import Collection, Field

if TYPE_CHECKING:
    from contentforge.auth.permissions import AccessControl
    from contentforge.hooks.pipeline import HookPipeline
    from contentforge.persistence.store import Store
    from contentforge.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)

ALL_STATUSES = "*"


def _key(value: Any) -> str:
    return str(value)


class RelationalGateway:
    """CRUD against one collection's table."""

    def __init__(
        self,
        collection: Collection,
        factory: GatewayFactory,
        acl: AccessControl | None = None,
    ):
        self.collection = collection
        self.factory = factory
        self.acl = acl

    @property
    def name(self) -> str:
        return self.collection.name

    @property
    def primary_key(self) -> str:
        return self.collection.primary_key

    @property
    def hooks(self) -> HookPipeline:
        return self.factory.hooks

    @property
    def table(self):
        return self.factory.store.table_for(self.collection)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        """Open or join a transaction; store failures surface as StoreError."""
        try:
            with self.factory.transaction() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("Store operation on '%s' failed: %s", self.name, exc)
            self.hooks.publish_action("application.error", exc)
            raise StoreError() from exc

    def _attributes(self, operation: str, **extra: Any) -> dict[str, Any]:
        return {"collection_name": self.name, "operation": operation, "acl": self.acl, **extra}

    def _filter(self, verb: str, phase: str | None, data: Any, **extra: Any) -> Payload:
        event = qualified_event("collection", verb, self.name, phase)
        payload = Payload(data=data, attributes=self._attributes(verb, **extra))
        return self.hooks.publish_filter(event, payload)

    def _after(self, verb: str, ids: list[Any], payload: Payload) -> None:
        event = qualified_event("collection", verb, self.name, "after")
        mutation = MutationEvent(
            collection_name=self.name,
            operation=verb,
            ids=tuple(ids),
            data=payload.data,
            acl=self.acl,
            metadata=payload.metadata,
        )
        self.factory.after_commit(partial(self.hooks.publish_action, event, mutation))

    def _require_field(self, name: str) -> Field:
        field = self.collection.get_field(name)
        if field is None:
            raise BadRequestError(f"Unknown field '{name}' in '{self.name}'")
        return field

    def _column(self, name: str):
        field = self._require_field(name)
        if not field.has_column:
            raise BadRequestError(f"Field '{name}' in '{self.name}' cannot be queried")
        return self.table.c[name]

    def _condition(self, condition: dict) -> ColumnElement:
        if "conditions" in condition:
            return self._where(condition)

        column = self._column(condition["field"])
        field = self.collection.get_field(condition["field"])
        operator = condition["operator"]
        value = condition.get("value")
        if field.is_boolean and operator in ("eq", "neq"):
            value = get_codec("boolean").encode(value)

        if operator == "eq":
            return column == value
        if operator == "neq":
            return column != value
        if operator == "gt":
            return column > value
        if operator == "gte":
            return column >= value
        if operator == "lt":
            return column < value
        if operator == "lte":
            return column <= value
        if operator == "in":
            return column.in_(list(value or []))
        if operator == "notIn":
            return column.not_in(list(value or []))
        if operator == "contains":
            return column.contains(str(value), autoescape=True)
        if operator == "startsWith":
            return column.startswith(str(value), autoescape=True)
        if operator == "isNull":
            return column.is_(None)
        if operator == "isNotNull":
            return column.is_not(None)
        if operator == "between":
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise BadRequestError("'between' expects two values")
            return column.between(value[0], value[1])
        raise BadRequestError(f"Unsupported filter operator '{operator}'")

    def _where(self, group: dict | None) -> ColumnElement:
        if not group or not group.get("conditions"):
            return true()
        parts = [self._condition(c) for c in group["conditions"]]
        if group.get("operator", "and") == "or":
            return or_(*parts)
        return and_(*parts)

    def _status_clause(self, status: tuple[str, ...] | None) -> ColumnElement:
        if not self.collection.has_status_column():
            return true()
        column = self.table.c[self.collection.status_field]
        if status is None:
            return or_(column.is_(None), column != self.collection.deleted_value)
        if ALL_STATUSES in status:
            return true()
        return column.in_(list(status))

    def _selection(self, options: QueryOptions) -> list[Field]:
        if options.fields is None:
            return list(self.collection.fields)
        names = [n for n in options.fields if n != "*"]
        return [self._require_field(n) for n in names]

    def _column_values(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Keep only values that map onto columns of this table."""
        values = {}
        for name, value in data.items():
            field = self.collection.get_field(name)
            if field is None or not field.has_column:
                continue
            values[name] = value
        return values

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch(self, conditions: Any = None, options: QueryOptions | None = None) -> list[dict[str, Any]]:
        """Fetch rows matching conditions and options.

        Soft-deleted rows are excluded unless ``options.status`` asks for
        them. Relation fields in the selection are expanded up to
        ``options.depth`` levels.
        """
        options = options or QueryOptions()
        if conditions:
            options = options.where(conditions)

        selection = self._selection(options)
        columns = [f.name for f in selection if f.has_column]
        if self.primary_key not in columns:
            columns.insert(0, self.primary_key)

        payload = self._filter("select", "before", {"columns": columns})
        columns = [c for c in payload.data["columns"] if c in self.table.c]

        table = self.table
        stmt = (
            select(*[table.c[c] for c in columns])
            .where(self._where(options.filter))
            .where(self._status_clause(options.status))
        )
        for item in options.sort or ():
            column = self._column(item["field"])
            stmt = stmt.order_by(column.desc() if item["direction"] == "desc" else column.asc())
        if options.limit is not None:
            stmt = stmt.limit(options.limit)
        if options.offset:
            stmt = stmt.offset(options.offset)

        with self._connection() as conn:
            rows = [dict(row) for row in conn.execute(stmt).mappings()]

        rows = self._filter("select", None, rows).data

        if options.depth > 0 and rows:
            for field in selection:
                if field.is_many_to_one:
                    self._expand_many_to_one(rows, field, options)
                elif field.is_one_to_many:
                    self._expand_one_to_many(rows, field, options)
        return rows

    def fetch_by_id(self, id: Any, options: QueryOptions | None = None) -> dict[str, Any]:
        """Fetch one row by primary key.

        Raises:
            NotFoundError: If no visible row has this key
        """
        rows = self.fetch({self.primary_key: id}, options)
        if not rows:
            raise NotFoundError(f"unable to find record in {self.name} with id {id}")
        return rows[0]

    def ids_for(self, conditions: Any = None) -> list[Any]:
        """Resolve conditions to primary keys, soft-deleted rows included."""
        options = QueryOptions(filter=conditions)
        pk = self.table.c[self.primary_key]
        stmt = select(pk).where(self._where(options.filter))
        with self._connection() as conn:
            return [row[0] for row in conn.execute(stmt)]

    def count(self, conditions: Any = None, status: tuple[str, ...] | None = None) -> int:
        options = QueryOptions(filter=conditions, status=status)
        stmt = (
            select(func.count())
            .select_from(self.table)
            .where(self._where(options.filter))
            .where(self._status_clause(options.status))
        )
        with self._connection() as conn:
            return conn.execute(stmt).scalar_one()

    def _child_options(self, options: QueryOptions) -> QueryOptions:
        return QueryOptions(depth=options.depth - 1, lang=options.lang)

    def _related(self, name: str) -> RelationalGateway | None:
        """Gateway for a related collection, None if it cannot be read."""
        if not self.factory.registry.has_collection(name):
            logger.warning("Relation in '%s' targets unknown collection '%s'", self.name, name)
            return None
        if self.acl is not None and not self.acl.can_read(name):
            return None
        return self.factory.get(name, self.acl)

    def _fetch_related(
        self, gateway: RelationalGateway, conditions: dict, options: QueryOptions
    ) -> list[dict[str, Any]]:
        if self.acl is not None:
            ownership = self.acl.ownership_filter(gateway.collection, "read")
            if ownership is not None:
                options = options.where(ownership)
        rows = gateway.fetch(conditions, options)
        if self.acl is not None:
            rows = [self.acl.apply_read_policy(gateway.name, r) for r in rows]
        return rows

    def _expand_many_to_one(self, rows: list[dict], field: Field, options: QueryOptions) -> None:
        ids = {
            _key(row[field.name]): row[field.name]
            for row in rows
            if row.get(field.name) is not None and not isinstance(row[field.name], Mapping)
        }
        if not ids:
            return
        gateway = self._related(field.relation.collection)
        if gateway is None:
            return

        related = self._fetch_related(
            gateway, {gateway.primary_key: {"in": list(ids.values())}}, self._child_options(options)
        )
        by_id = {_key(r[gateway.primary_key]): r for r in related if gateway.primary_key in r}
        for row in rows:
            value = row.get(field.name)
            if value is not None and _key(value) in by_id:
                row[field.name] = by_id[_key(value)]

    def _expand_one_to_many(self, rows: list[dict], field: Field, options: QueryOptions) -> None:
        join_column = field.relation.join_column
        gateway = self._related(field.relation.collection)
        if gateway is None or not join_column:
            return

        parent_ids = [row[self.primary_key] for row in rows if row.get(self.primary_key) is not None]
        related = self._fetch_related(
            gateway, {join_column: {"in": parent_ids}}, self._child_options(options)
        )

        grouped: dict[str, list[dict]] = {}
        for child in related:
            parent = child.get(join_column)
            if isinstance(parent, Mapping):
                parent = parent.get(self.primary_key)
            grouped.setdefault(_key(parent), []).append(child)

        for row in rows:
            children = grouped.get(_key(row.get(self.primary_key)), [])
            payload = Payload(
                data=children,
                attributes={
                    "collection_name": self.name,
                    "column": field,
                    "acl": self.acl,
                    "lang": options.lang,
                },
            )
            loaded = self.hooks.publish_filter("load.relational.onetomany", payload).data
            if options.lang and isinstance(loaded, Mapping):
                loaded = loaded.get(options.lang)
            row[field.name] = loaded

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write_many_to_one(self, data: dict[str, Any]) -> dict[str, Any]:
        """Write nested many-to-one records and keep only their keys."""
        for field in self.collection.relation_fields():
            value = data.get(field.name)
            if not field.is_many_to_one or not isinstance(value, Mapping):
                continue
            gateway = self.factory.get(field.relation.collection, self.acl)
            related_pk = value.get(gateway.primary_key)
            if related_pk is not None and gateway.ids_for({gateway.primary_key: related_pk}):
                self._enforce_nested("update", gateway)
                gateway.update(
                    {k: v for k, v in value.items() if k != gateway.primary_key},
                    {gateway.primary_key: related_pk},
                )
                data[field.name] = related_pk
            else:
                self._enforce_nested("create", gateway)
                data[field.name] = gateway.insert(value)[gateway.primary_key]
        return data

    def _pop_one_to_many(self, data: dict[str, Any]) -> dict[Field, list]:
        children: dict[Field, list] = {}
        for field in self.collection.relation_fields():
            if field.is_one_to_many and field.name in data:
                value = data.pop(field.name)
                if value:
                    if not isinstance(value, list):
                        raise ValidationError(f"'{field.name}' must be a list of records")
                    children[field] = value
        return children

    def _write_one_to_many(self, parent_id: Any, children: dict[Field, list]) -> None:
        for field, rows in children.items():
            gateway = self.factory.get(field.relation.collection, self.acl)
            join_column = field.relation.join_column
            for child in rows:
                if not isinstance(child, Mapping):
                    # A bare key links an existing row to this parent
                    gateway.update({join_column: parent_id}, {gateway.primary_key: child})
                    continue
                child = {**child, join_column: parent_id}
                child_pk = child.get(gateway.primary_key)
                if child_pk is not None and gateway.ids_for({gateway.primary_key: child_pk}):
                    self._enforce_nested("update", gateway)
                    gateway.update(
                        {k: v for k, v in child.items() if k != gateway.primary_key},
                        {gateway.primary_key: child_pk},
                    )
                else:
                    self._enforce_nested("create", gateway)
                    gateway.insert(child)

    def _enforce_nested(self, verb: str, gateway: RelationalGateway) -> None:
        if self.acl is None:
            return
        self.acl.enforce(verb, gateway.collection)

    def insert(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a record, writing nested relations, and return it re-read.

        The before-filters see the record as given, so a rejected record
        writes nothing, nested relations included.

        Raises:
            StoreError: On constraint violations or connectivity failures
        """
        data = dict(record)
        children = self._pop_one_to_many(data)

        with self._connection() as conn:
            payload = self._filter("insert", "before", data)
            payload = payload.replace(self._write_many_to_one(dict(payload.data)))
            values = self._column_values(payload.data)
            if values.get(self.primary_key) is None:
                values.pop(self.primary_key, None)

            result = conn.execute(insert(self.table).values(values))
            pk = values.get(self.primary_key)
            if pk is None:
                pk = result.inserted_primary_key[0]

            if children:
                self._write_one_to_many(pk, children)
            self._after("insert", [pk], payload.set(self.primary_key, pk))

            rows = self.fetch({self.primary_key: pk}, QueryOptions(status=(ALL_STATUSES,)))
        return rows[0] if rows else {**payload.data, self.primary_key: pk}

    def update(self, data: Mapping[str, Any], conditions: Any) -> int:
        """Apply a partial record to every row matching conditions.

        Returns:
            Number of rows changed
        """
        data = {k: v for k, v in data.items() if k != self.primary_key}
        children = self._pop_one_to_many(data)

        with self._connection() as conn:
            ids = self.ids_for(conditions)
            if not ids:
                return 0

            payload = self._filter("update", "before", data, ids=tuple(ids))
            payload = payload.replace(self._write_many_to_one(dict(payload.data)))
            values = self._column_values(payload.data)
            values.pop(self.primary_key, None)

            changed = 0
            if values:
                pk = self.table.c[self.primary_key]
                changed = conn.execute(update(self.table).where(pk.in_(ids)).values(values)).rowcount

            if children:
                for id in ids:
                    self._write_one_to_many(id, children)
                changed = changed or len(ids)

            self._after("update", ids, payload)
        return changed

    def update_record(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Update one record identified by its primary key and return it.

        Raises:
            ValidationError: If the record carries no primary key
            NotFoundError: If no row has that key
        """
        id = record.get(self.primary_key)
        if id is None:
            raise ValidationError(f"Record in '{self.name}' has no '{self.primary_key}' value")
        with self._connection():
            if not self.ids_for({self.primary_key: id}):
                raise NotFoundError(f"unable to find record in {self.name} with id {id}")
            self.update(record, {self.primary_key: id})
            rows = self.fetch({self.primary_key: id}, QueryOptions(status=(ALL_STATUSES,)))
        return rows[0] if rows else dict(record)

    def update_collection(self, rows: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Update many records, one at a time.

        A failing row does not stop the others.

        Returns:
            One ``{"id", "message"}`` entry per failed row
        """
        errors = []
        for row in rows:
            try:
                self.update_record(row)
            except ContentError as exc:
                logger.warning("Update of %s row %r failed: %s", self.name, row.get(self.primary_key), exc)
                errors.append({"id": row.get(self.primary_key), "message": exc.message})
        return errors

    def delete(self, conditions: Any) -> int:
        """Delete every row matching conditions."""
        return self.delete_ids(self.ids_for(conditions))

    def delete_ids(self, ids: list[Any]) -> int:
        """Delete rows by key in one statement.

        An empty list changes nothing and returns 0.
        """
        ids = list(ids)
        if not ids:
            return 0

        payload = self._filter("delete", "before", ids, ids=tuple(ids))
        pk = self.table.c[self.primary_key]
        with self._connection() as conn:
            deleted = conn.execute(delete(self.table).where(pk.in_(ids))).rowcount

        self._after("delete", ids, payload)
        return deleted

    def soft_delete(self, conditions: Any) -> int:
        """Mark matching rows deleted through the status column.

        Raises:
            BadRequestError: If the collection has no status column
        """
        if not self.collection.has_status_column():
            raise BadRequestError(
                f"Cannot soft delete items in '{self.name}': missing status column"
            )
        return self.update({self.collection.status_field: self.collection.deleted_value}, conditions)


class _Transaction:
    """An open transaction and the actions waiting for its commit."""

    def __init__(self, connection: Connection):
        self.connection = connection
        self.after_commit: list[Callable[[], Any]] = []


class GatewayFactory:
    """Builds gateways sharing one store, registry and hook pipeline."""

    def __init__(self, store: Store, registry: SchemaRegistry, hooks: HookPipeline):
        self.store = store
        self.registry = registry
        self.hooks = hooks
        self._active: ContextVar[_Transaction | None] = ContextVar(
            f"contentforge_transaction_{id(self)}", default=None
        )

    def get(self, name: str, acl: AccessControl | None = None) -> RelationalGateway:
        """Get a gateway for a collection.

        Raises:
            CollectionNotFoundError: If the collection is not registered
        """
        return RelationalGateway(self.registry.get_collection(name), self, acl)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Open a transaction, or join the one already open in this context.

        Only the outermost scope commits or rolls back. Callbacks queued
        with ``after_commit`` run once it has committed.
        """
        active = self._active.get()
        if active is not None:
            yield active.connection
            return

        with self.store.engine.begin() as conn:
            transaction = _Transaction(conn)
            token = self._active.set(transaction)
            try:
                yield conn
            finally:
                self._active.reset(token)

        for callback in transaction.after_commit:
            callback()

    def after_commit(self, callback: Callable[[], Any]) -> None:
        """Run callback after the open transaction commits, or now if none is open."""
        active = self._active.get()
        if active is None:
            callback()
        else:
            active.after_commit.append(callback)
