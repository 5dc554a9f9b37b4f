"""Entries service: the request-level façade over collections.

One instance serves one request. It validates input, checks access
control before any store access, drives the relational gateway (which
publishes the lifecycle hooks) and records cache tags for reads.

Results are envelopes::

    {"data": ..., "meta": {...}, "error": {"code": ..., "message": ...}}

``meta`` and ``error`` are optional; callers must check for ``error`` even
when the call returned normally. Every envelope passes through the
``response`` filter, which marks responses to public users with
``"public": true``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from contentforge.auth.types import PermissionLevel
from contentforge.cache.response import entity_tag, permissions_tag, table_tag
from contentforge.errors import (
    BadRequestError,
    ContentError,
    ForbiddenError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from contentforge.hooks.types import Payload
from contentforge.persistence.gateway import ALL_STATUSES
from contentforge.persistence.query import QueryOptions
from contentforge.schema.types import COLLECTION_ACTIVITY, COLLECTION_FILES, Collection

if TYPE_CHECKING:
    from contentforge.auth.permissions import AccessControl
    from contentforge.cache.response import ResponseCache
    from contentforge.persistence.gateway import GatewayFactory, RelationalGateway
    from contentforge.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)

BATCH_VERBS = ("create", "update", "delete")
ONE_VERBS = ("read", "update", "delete")

# Raw upload content on file records, consumed by the file hooks
FILE_UPLOAD_KEYS = frozenset({"data", "html"})


def _options(options: QueryOptions | Mapping[str, Any] | None) -> QueryOptions:
    if options is None:
        return QueryOptions()
    if isinstance(options, QueryOptions):
        return options
    try:
        return QueryOptions.from_params(dict(options))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid query options: {exc}") from exc


class EntriesService:
    """CRUD operations on any registered collection for one acting user."""

    def __init__(
        self,
        registry: SchemaRegistry,
        gateways: GatewayFactory,
        cache: ResponseCache,
        acl: AccessControl,
    ):
        self.registry = registry
        self.gateways = gateways
        self.cache = cache
        self.acl = acl

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _gateway(self, collection: Collection) -> RelationalGateway:
        return self.gateways.get(collection.name, self.acl)

    def _validate_record(self, collection: Collection, record: Any, creating: bool) -> dict[str, Any]:
        """Reject malformed records before anything reaches the store."""
        if not isinstance(record, Mapping):
            raise ValidationError(f"Expected a record object for '{collection.name}'")

        unknown = [k for k in record if collection.get_field(k) is None]
        if collection.name == COLLECTION_FILES:
            unknown = [k for k in unknown if k not in FILE_UPLOAD_KEYS]
        if unknown:
            raise ValidationError(f"Unknown fields for '{collection.name}': {', '.join(sorted(unknown))}")

        if creating:
            missing = [
                f.name
                for f in collection.fields
                if f.required and f.name != collection.primary_key and record.get(f.name) in (None, "")
            ]
            if missing:
                raise ValidationError(f"Missing required fields for '{collection.name}': {', '.join(missing)}")
        return dict(record)

    def _check_row(self, collection: Collection, verb: str, id: Any) -> None:
        """Row-level check for MINE, made before the row is touched.

        Raises:
            NotFoundError: If the row does not exist
            ForbiddenError: If the acting user does not own the row
        """
        if self.acl.level(collection.name, verb) != PermissionLevel.MINE:
            return
        rows = self.gateways.get(collection.name).fetch(
            {collection.primary_key: id}, QueryOptions(depth=0, status=(ALL_STATUSES,))
        )
        if not rows:
            raise NotFoundError(f"unable to find record in {collection.name} with id {id}")
        self.acl.enforce(verb, collection, rows[0])

    def _cache_context(self) -> dict[str, Any]:
        user = self.acl.user
        return {"user": user.user_id, "role": user.role_id, "admin": self.acl.is_admin()}

    def _tags(self, collection: Collection, rows: list[dict[str, Any]]) -> list[str]:
        tags = [table_tag(collection.name), permissions_tag(collection.name)]
        tags.extend(
            entity_tag(collection.name, row[collection.primary_key])
            for row in rows
            if collection.primary_key in row
        )
        return tags

    def _respond(self, result: dict[str, Any]) -> dict[str, Any]:
        """Pass an outgoing envelope through the ``response`` filter."""
        payload = Payload(data=result, attributes={"acl": self.acl})
        return self.gateways.hooks.publish_filter("response", payload).data

    def _read_back(self, collection: Collection, options: QueryOptions, id: Any) -> dict[str, Any]:
        """Re-read a written row; only its key if the user may not read it."""
        try:
            return self._read(collection, options.where({collection.primary_key: id}), single_id=id, single=True)
        except ForbiddenError:
            return {"data": {collection.primary_key: id}}

    def _read(
        self,
        collection: Collection,
        options: QueryOptions,
        single_id: Any = None,
        single: bool = False,
    ) -> dict[str, Any]:
        """Read rows under the access policy, going through the cache."""
        self.acl.enforce("read", collection)

        ownership = self.acl.ownership_filter(collection, "read")
        if ownership is not None:
            options = options.where(ownership)
        if options.fields is not None:
            options = options.with_fields(self.acl.readable_fields(collection.name, options.fields))

        key = self.cache.fingerprint(collection.name, options, {**self._cache_context(), "single": single})
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        marker = self.cache.marker()
        gateway = self._gateway(collection)
        rows = [self.acl.apply_read_policy(collection.name, r) for r in gateway.fetch(None, options)]

        if single:
            if not rows:
                return NotFoundError(
                    f"unable to find record in {collection.name} with id {single_id}"
                ).to_dict()
            result: dict[str, Any] = {"data": rows[0]}
        else:
            result = {"data": rows}

        if options.meta:
            result["meta"] = {
                "table": collection.name,
                "type": "item" if single else "collection",
                "result_count": len(rows),
                "total_count": len(rows) if single else gateway.count(options.filter, options.status),
            }

        result = self.cache.canonical(result)
        self.cache.set(key, result, self._tags(collection, rows), marker)
        return result

    def _create(self, collection: Collection, record: Any) -> dict[str, Any]:
        data = self._validate_record(collection, record, creating=True)
        self.acl.enforce("create", collection)
        data = self.acl.apply_write_policy(collection.name, data)
        return self._gateway(collection).insert(data)

    def _update(self, collection: Collection, id: Any, record: Any) -> dict[str, Any]:
        data = self._validate_record(collection, record, creating=False)
        self.acl.enforce("update", collection)
        self._check_row(collection, "update", id)
        data = self.acl.apply_write_policy(collection.name, data)
        data[collection.primary_key] = id
        return self._gateway(collection).update_record(data)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_or_create(
        self,
        collection: str,
        options: QueryOptions | Mapping[str, Any] | None = None,
        new_record: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """List a collection, or create a record and return it.

        Raises:
            CollectionNotFoundError: If the collection is not registered
            ForbiddenError: If the policy denies the read or create
            ValidationError: If the new record is malformed
        """
        resolved = self.registry.get_collection(collection)
        options = _options(options)

        if new_record is None:
            return self._respond(self._read(resolved, options))

        created = self._create(resolved, new_record)
        id = created.get(resolved.primary_key)
        logger.info("Created %s item %s", resolved.name, id)
        return self._respond(self._read_back(resolved, options, id))

    def batch(
        self,
        collection: str,
        verb: str,
        rows: list[Any] | None,
        options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create, update or delete many records.

        Create and update isolate failures per row: failed rows are listed in
        ``meta.failed`` and summarized in ``error``. Delete is one statement,
        applied entirely or not at all.

        Raises:
            ValidationError: For an unknown verb, no rows, or rows without keys
            ForbiddenError: If the policy denies the verb (or, for delete,
                any one of the rows)
        """
        resolved = self.registry.get_collection(collection)
        options = _options(options)
        if verb not in BATCH_VERBS:
            raise ValidationError(f"Unsupported batch operation '{verb}'")
        if not isinstance(rows, list) or not rows:
            raise ValidationError("rows not specified")

        pk = resolved.primary_key
        if verb == "delete":
            return self._respond(self._batch_delete(resolved, rows, options))

        if verb == "update":
            for row in rows:
                if not isinstance(row, Mapping) or row.get(pk) is None:
                    raise ValidationError(f"row without primary key field '{pk}'")

        self.acl.enforce(verb, resolved)

        ids: list[Any] = []
        failed: list[dict[str, Any]] = []
        for index, row in enumerate(rows):
            try:
                if verb == "create":
                    saved = self._create(resolved, row)
                else:
                    saved = self._update(resolved, row[pk], {k: v for k, v in row.items() if k != pk})
            except ContentError as exc:
                logger.warning("Batch %s on %s: row %d failed: %s", verb, resolved.name, index, exc.message)
                entry = {"index": index, "code": exc.code, "message": exc.message}
                if isinstance(row, Mapping) and row.get(pk) is not None:
                    entry["id"] = row[pk]
                failed.append(entry)
                continue
            if saved.get(pk) is not None:
                ids.append(saved[pk])

        result: dict[str, Any] = {"data": []}
        if ids:
            try:
                result = dict(self._read(resolved, options.where({pk: {"in": ids}})))
            except ForbiddenError:
                result = {"data": [{pk: id} for id in ids]}
        if failed:
            result["error"] = {"message": f"{len(failed)} of {len(rows)} rows failed"}
            result["meta"] = {**result.get("meta", {}), "failed": failed}
        return self._respond(result)

    def _batch_delete(self, collection: Collection, rows: list[Any], options: QueryOptions) -> dict[str, Any]:
        pk = collection.primary_key
        ids = []
        for row in rows:
            id = row.get(pk) if isinstance(row, Mapping) else row
            if id is None:
                raise ValidationError(f"row without primary key field '{pk}'")
            ids.append(id)

        self.acl.enforce("delete", collection)
        if self.acl.level(collection.name, "delete") == PermissionLevel.MINE:
            # Every row must be owned; otherwise nothing is deleted
            found = self.gateways.get(collection.name).fetch(
                {pk: {"in": ids}}, QueryOptions(depth=0, status=(ALL_STATUSES,))
            )
            for row in found:
                self.acl.enforce("delete", collection, row)

        result: dict[str, Any] = {}
        if options.meta:
            result["meta"] = {"table": collection.name, "ids": ids}

        try:
            deleted = self._gateway(collection).delete_ids(ids)
        except StoreError as exc:
            logger.warning("Batch delete on %s failed: %s", collection.name, exc.message)
            result["error"] = {"code": exc.code, "message": "failed batch delete"}
            return result

        if not deleted:
            result["error"] = {"code": NotFoundError.code, "message": "failed batch delete"}
        return result

    def get_one(
        self,
        collection: str,
        id: Any,
        verb: str = "read",
        payload: Mapping[str, Any] | None = None,
        options: QueryOptions | Mapping[str, Any] | None = None,
        soft: bool = False,
    ) -> dict[str, Any]:
        """Read, update or delete one record.

        A read of a missing id returns an ``error`` envelope instead of
        raising. A delete with ``soft=True`` marks the row deleted through
        the status column.

        Raises:
            ForbiddenError: If the policy denies the verb on the collection or row
            BadRequestError: For a soft delete without a status column
            NotFoundError: When updating or deleting a missing row under MINE
        """
        resolved = self.registry.get_collection(collection)
        options = _options(options)
        pk = resolved.primary_key
        if verb not in ONE_VERBS:
            raise ValidationError(f"Unsupported operation '{verb}'")

        if verb == "read":
            return self._respond(self._read(resolved, options.where({pk: id}), single_id=id, single=True))
        if verb == "delete":
            return self._respond(self._delete_one(resolved, id, soft))

        self._update(resolved, id, payload or {})
        logger.info("Updated %s item %s", resolved.name, id)
        return self._respond(self._read_back(resolved, options, id))

    def _delete_one(self, collection: Collection, id: Any, soft: bool) -> dict[str, Any]:
        pk = collection.primary_key
        self.acl.enforce("delete", collection)
        gateway = self._gateway(collection)
        if soft and not collection.has_status_column():
            raise BadRequestError(f"Cannot soft delete items in '{collection.name}': missing status column")
        self._check_row(collection, "delete", id)

        changed = gateway.soft_delete({pk: id}) if soft else gateway.delete({pk: id})
        if not changed:
            return NotFoundError(f"unable to find record in {collection.name} with id {id}").to_dict()
        logger.info("Deleted %s item %s%s", collection.name, id, " (soft)" if soft else "")
        return {}

    def get_metadata(self, collection: str, id: Any, meta: bool = False) -> dict[str, Any]:
        """Summarize the activity recorded for one item.

        Returns:
            ``{"data": {created_on, created_by, updated_on, updated_by, revisions}}``
        """
        resolved = self.registry.get_collection(collection)
        self.acl.enforce("read", resolved)

        key = self.cache.fingerprint(
            COLLECTION_ACTIVITY, {"collection": resolved.name, "item": str(id)}, self._cache_context()
        )
        cached = self.cache.get(key)
        if cached is not None:
            return self._respond(cached)

        marker = self.cache.marker()
        rows = self.gateways.get(COLLECTION_ACTIVITY).fetch(
            {"collection": resolved.name, "item": str(id)},
            QueryOptions(depth=0, sort=({"field": "id", "direction": "asc"},)),
        )
        created = next((r for r in rows if r.get("action") == "insert"), None)
        updates = [r for r in rows if r.get("action") == "update"]
        updated = updates[-1] if updates else None

        result: dict[str, Any] = {
            "data": {
                "created_on": created.get("action_on") if created else None,
                "created_by": created.get("action_by") if created else None,
                "updated_on": updated.get("action_on") if updated else None,
                "updated_by": updated.get("action_by") if updated else None,
                "revisions": len(updates) + (1 if created else 0),
            }
        }
        if meta:
            result["meta"] = {"table": COLLECTION_ACTIVITY, "type": "item"}

        result = self.cache.canonical(result)
        self.cache.set(key, result, [table_tag(COLLECTION_ACTIVITY), entity_tag(resolved.name, id)], marker)
        return self._respond(result)
