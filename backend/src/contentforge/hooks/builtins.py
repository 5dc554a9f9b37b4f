"""Built-in hook subscriptions.

Cross-cutting policy lives here rather than in the gateway: record
stamping, password hashing, value coercion, file handling, redaction,
role guards, cache invalidation and activity recording.

Handlers find the acting AccessControl in the ``acl`` payload attribute
(or on the MutationEvent for after-actions). None means an internal call
made by the pipeline itself; guards let those through.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from contentforge.auth.types import ADMIN_ROLE_ID, PUBLIC_ROLE_ID, PUBLIC_ROLE_NAME, PermissionLevel
from contentforge.cache.response import entity_tag, permissions_tag, table_tag
from contentforge.core.codecs import decode_record, encode_record
from contentforge.errors import BadRequestError, ForbiddenError
from contentforge.hooks.types import (
    PRIORITY_HIGH,
    PRIORITY_LOW,
    MutationEvent,
    Payload,
    Subscription,
)
from contentforge.persistence.query import QueryOptions
from contentforge.schema.types import (
    COLLECTION_ACTIVITY,
    COLLECTION_FILES,
    COLLECTION_PERMISSIONS,
    COLLECTION_ROLES,
    COLLECTION_USERS,
)

if TYPE_CHECKING:
    from contentforge.auth.password import PasswordService
    from contentforge.cache.response import ResponseCache
    from contentforge.files import FileStorage
    from contentforge.hooks.pipeline import HookPipeline
    from contentforge.persistence.gateway import GatewayFactory
    from contentforge.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)

# Shown to the row's own user and admins only
PRIVATE_USER_FIELDS = ("token", "email_notifications", "last_access", "last_page")
RESERVED_ROLE_IDS = (ADMIN_ROLE_ID, PUBLIC_ROLE_ID)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _user_id(acl: Any) -> Any:
    return acl.current_user_id() if acl is not None else None


class BuiltinHooks:
    """Handlers for the built-in lifecycle policies.

    Example:
        hooks = BuiltinHooks(registry, gateways, PasswordService(), cache)
        hooks.install(pipeline)
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        gateways: GatewayFactory,
        passwords: PasswordService,
        cache: ResponseCache,
        files: FileStorage | None = None,
        files_url: str = "/storage/uploads",
        thumbnail_url: str = "/thumbnail",
    ):
        self.registry = registry
        self.gateways = gateways
        self.passwords = passwords
        self.cache = cache
        self.files = files
        self.files_url = files_url.rstrip("/")
        self.thumbnail_url = thumbnail_url.rstrip("/")
        self.pipeline: HookPipeline | None = None

    def install(self, pipeline: HookPipeline) -> list[Subscription]:
        """Subscribe every built-in handler to the pipeline."""
        self.pipeline = pipeline
        sub = pipeline.subscribe
        subscriptions = [
            # Policy guards run before anything touches the data
            sub("collection.insert.directus_user_roles:before", self.guard_role_membership, PRIORITY_HIGH),
            sub("collection.update.directus_user_roles:before", self.guard_role_membership, PRIORITY_HIGH),
            sub("collection.delete.directus_user_roles:before", self.guard_role_membership, PRIORITY_HIGH),
            sub("collection.insert.directus_user_roles:before", self.prevent_public_role),
            sub("collection.update.directus_user_roles:before", self.prevent_public_role),
            sub("collection.delete.directus_roles:before", self.prevent_reserved_role_delete, PRIORITY_HIGH),
            sub("collection.insert.directus_files:before", self.guard_files, PRIORITY_HIGH),
            sub("collection.update.directus_files:before", self.guard_files, PRIORITY_HIGH),
            sub("collection.delete.directus_files:before", self.guard_files, PRIORITY_HIGH),
            sub("files.saving", self.guard_file_action),
            sub("files.thumbnail.saving", self.guard_file_action),
            # Record preparation
            sub("collection.insert:before", self.stamp_insert, PRIORITY_HIGH),
            sub("collection.update:before", self.stamp_update, PRIORITY_HIGH),
            sub("collection.insert.directus_files:before", self.save_file_on_insert),
            sub("collection.update.directus_files:before", self.save_file_on_update),
            sub("collection.insert.directus_users:before", self.hash_user_password),
            sub("collection.update.directus_users:before", self.hash_user_password),
            sub("collection.insert.directus_users:before", self.generate_external_id),
            sub("collection.insert.directus_roles:before", self.generate_external_id),
            sub("collection.insert:before", self.hash_password_fields),
            sub("collection.update:before", self.hash_password_fields),
            sub("collection.insert:before", self.encode_values, PRIORITY_LOW),
            sub("collection.update:before", self.encode_values, PRIORITY_LOW),
            # Reads
            sub("collection.select.directus_files:before", self.select_filename),
            sub("collection.select", self.decode_values, PRIORITY_HIGH),
            sub("collection.select.directus_files", self.add_file_urls),
            sub("collection.select.directus_users", self.redact_users),
            sub("load.relational.onetomany", self.index_translations, PRIORITY_HIGH),
            # Side effects
            sub("collection.insert:after", self.invalidate_cache),
            sub("collection.update:after", self.invalidate_cache),
            sub("collection.delete:after", self.invalidate_cache),
            sub("collection.delete.directus_permissions:before", self.remember_permission_collections),
            sub("collection.insert.directus_permissions:after", self.invalidate_permissions),
            sub("collection.update.directus_permissions:after", self.invalidate_permissions),
            sub("collection.delete.directus_permissions:after", self.invalidate_permissions),
            sub("collection.insert.directus_roles:after", self.create_default_permissions),
            sub("collection.insert:after", self.record_activity, best_effort=True),
            sub("collection.update:after", self.record_activity, best_effort=True),
            sub("collection.delete:after", self.record_activity, best_effort=True),
            sub("application.error", self.log_error, best_effort=True),
            sub("schema.changed", self.refresh_schema),
            sub("response", self.mark_public_response),
        ]
        logger.debug("Installed %d built-in hook subscriptions", len(subscriptions))
        return subscriptions

    # -- guards ---------------------------------------------------------------

    def guard_role_membership(self, payload: Payload) -> Payload:
        acl = payload.attribute("acl")
        if acl is not None and not acl.is_admin():
            raise ForbiddenError("You are not allowed to create, update or delete roles")
        return payload

    def prevent_public_role(self, payload: Payload) -> Payload:
        role_id = payload.get("role")
        if isinstance(role_id, Mapping):
            role_id = role_id.get("id")
        if not role_id:
            return payload

        if str(role_id) == str(PUBLIC_ROLE_ID):
            raise ForbiddenError("Users cannot be added into the public group")
        roles = self.gateways.get(COLLECTION_ROLES).fetch({"id": role_id}, QueryOptions(depth=0))
        if roles and (roles[0].get("name") or "").lower() == PUBLIC_ROLE_NAME:
            raise ForbiddenError("Users cannot be added into the public group")
        return payload

    def prevent_reserved_role_delete(self, payload: Payload) -> Payload:
        for id in payload.data or ():
            if str(id) in {str(r) for r in RESERVED_ROLE_IDS}:
                raise ForbiddenError(f"You are not allowed to delete role [{id}]")
        return payload

    def _check_files(self, acl: Any) -> None:
        if acl is not None and not acl.can_update(COLLECTION_FILES):
            raise ForbiddenError("You are not allowed to upload, edit or delete files")

    def guard_files(self, payload: Payload) -> Payload:
        self._check_files(payload.attribute("acl"))
        return payload

    def guard_file_action(self, acl: Any = None, *args: Any) -> None:
        self._check_files(acl)

    # -- record preparation ---------------------------------------------------

    def stamp_insert(self, payload: Payload) -> Payload:
        collection = self.registry.get_collection(payload.attribute("collection_name"))
        now = _now()
        for name in (collection.date_created, collection.date_modified):
            if name:
                payload = payload.set(name, now)

        # A user row is its own creator; stamping would point at another user
        if collection.name == COLLECTION_USERS:
            return payload

        acl = payload.attribute("acl")
        if acl is None:
            return payload
        for name in (collection.user_created, collection.user_modified):
            if name:
                payload = payload.set(name, acl.current_user_id())
        return payload

    def stamp_update(self, payload: Payload) -> Payload:
        collection = self.registry.get_collection(payload.attribute("collection_name"))
        acl = payload.attribute("acl")
        if collection.date_modified:
            payload = payload.set(collection.date_modified, _now())
        if collection.user_modified and acl is not None:
            payload = payload.set(collection.user_modified, acl.current_user_id())
        if collection.name == COLLECTION_FILES:
            payload = payload.remove("upload_date")
        return payload

    def _save_file(self, payload: Payload, replace: bool) -> Payload:
        if self.files is None or not payload.has("data"):
            return payload

        acl = payload.attribute("acl")
        if self.pipeline is not None:
            self.pipeline.publish_action("files.saving", acl, payload.get("filename"))

        info = self.files.get_data_info(payload.get("data")) or {}
        file_type = info.get("type") or payload.get("type")

        record = dict(self.files.save_data(payload.get("data"), payload.get("filename"), replace) or {})
        if file_type and not record.get("type"):
            record["type"] = file_type
        data = {k: v for k, v in payload.data.items() if k not in ("data", "html")}
        data.update(record)
        if not replace:
            data["upload_user"] = _user_id(acl)
            data["upload_date"] = _now()
        return payload.replace(data)

    def save_file_on_insert(self, payload: Payload) -> Payload:
        return self._save_file(payload, replace=False)

    def save_file_on_update(self, payload: Payload) -> Payload:
        return self._save_file(payload, replace=True)

    def _hash(self, value: Any) -> Any:
        if value is None or value == "" or self.passwords.is_hash(value):
            return value
        return self.passwords.hash(str(value))

    def hash_user_password(self, payload: Payload) -> Payload:
        if not payload.has("password"):
            return payload
        return payload.set("password", self._hash(payload.get("password")))

    def hash_password_fields(self, payload: Payload) -> Payload:
        name = payload.attribute("collection_name")
        if self.registry.is_system_collection(name):
            return payload
        collection = self.registry.get_collection(name)
        for field in collection.get_fields(list(payload.data or {})):
            if field.interface == "password":
                payload = payload.set(field.name, self._hash(payload.get(field.name)))
        return payload

    def generate_external_id(self, payload: Payload) -> Payload:
        if payload.get("external_id"):
            return payload
        return payload.set("external_id", str(uuid.uuid4()))

    def encode_values(self, payload: Payload) -> Payload:
        collection = self.registry.get_collection(payload.attribute("collection_name"))
        return payload.replace(encode_record(collection, dict(payload.data or {})))

    # -- reads ----------------------------------------------------------------

    def select_filename(self, payload: Payload) -> Payload:
        columns = list(payload.get("columns") or [])
        if "filename" not in columns:
            columns.append("filename")
            return payload.set("columns", columns)
        return payload

    def decode_values(self, payload: Payload) -> Payload:
        collection = self.registry.get_collection(payload.attribute("collection_name"))
        if not (collection.has_json_field() or collection.has_array_field() or collection.has_boolean_field()):
            return payload
        return payload.replace([decode_record(collection, row) for row in payload.data])

    def add_file_urls(self, payload: Payload) -> Payload:
        rows = []
        for row in payload.data:
            row = dict(row)
            filename = row.get("filename")
            if filename:
                row["url"] = f"{self.files_url}/{filename}"
                row["thumbnail_url"] = f"{self.thumbnail_url}/{filename}"
            rows.append(row)
        return payload.replace(rows)

    def redact_users(self, payload: Payload) -> Payload:
        acl = payload.attribute("acl")
        rows = []
        for row in payload.data:
            omit = {"password"}
            if acl is not None and not acl.is_admin():
                own = row.get("id") is not None and str(row.get("id")) == str(acl.current_user_id())
                if not own:
                    omit.update(PRIVATE_USER_FIELDS)
            rows.append({k: v for k, v in row.items() if k not in omit})
        return payload.replace(rows)

    def index_translations(self, payload: Payload) -> Payload:
        """Index the rows of a translation field by language code."""
        column = payload.attribute("column")
        if column is None or column.interface != "translation":
            return payload

        options = column.options or {}
        languages_table = options.get("languages_table")
        language_column = options.get("left_column_name")
        if not languages_table:
            raise BadRequestError(f"Translations language table not defined for '{column.name}'")
        if not language_column:
            raise BadRequestError(f"Translations language column not defined for '{column.name}'")
        code_column = options.get("languages_code_column", "id")
        languages_pk = self.registry.get_collection(languages_table).primary_key

        indexed: dict[Any, Any] = {}
        for row in payload.data or []:
            row = dict(row)
            index = row.get(language_column)
            if isinstance(index, Mapping):
                language = index
                index = language.get(code_column)
                row[language_column] = language.get(languages_pk)
            indexed[index] = row
        return payload.replace(indexed)

    # -- side effects ---------------------------------------------------------

    def invalidate_cache(self, event: MutationEvent) -> None:
        tags = [table_tag(event.collection_name)]
        tags.extend(entity_tag(event.collection_name, id) for id in event.ids)
        self.cache.invalidate_tags(tags)

    def remember_permission_collections(self, payload: Payload) -> Payload:
        ids = list(payload.data or ())
        if not ids:
            return payload
        rows = self.gateways.get(COLLECTION_PERMISSIONS).fetch({"id": {"in": ids}}, QueryOptions(depth=0))
        return payload.with_metadata(permission_collections=sorted({r["collection"] for r in rows}))

    def invalidate_permissions(self, event: MutationEvent) -> None:
        names = set(event.metadata.get("permission_collections", ()))
        if event.operation == "insert" and isinstance(event.data, Mapping):
            names.add(event.data.get("collection"))
        elif event.operation == "update" and event.ids:
            rows = self.gateways.get(COLLECTION_PERMISSIONS).fetch(
                {"id": {"in": list(event.ids)}}, QueryOptions(depth=0)
            )
            names.update(r["collection"] for r in rows)
        self.cache.invalidate_tags(permissions_tag(n) for n in sorted(n for n in names if n))

    def create_default_permissions(self, event: MutationEvent) -> None:
        """Give a new role read access to users and update access to its own row."""
        gateway = self.gateways.get(COLLECTION_PERMISSIONS, event.acl)
        for role_id in event.ids:
            gateway.insert({
                "role": role_id,
                "collection": COLLECTION_USERS,
                "create": PermissionLevel.NONE.value,
                "read": PermissionLevel.FULL.value,
                "update": PermissionLevel.MINE.value,
                "delete": PermissionLevel.NONE.value,
                "read_field_blacklist": ["token"],
                "write_field_blacklist": ["token"],
            })

    def record_activity(self, event: MutationEvent) -> None:
        if event.collection_name == COLLECTION_ACTIVITY:
            return
        gateway = self.gateways.get(COLLECTION_ACTIVITY)
        now = _now()
        for id in event.ids:
            gateway.insert({
                "action": event.operation,
                "collection": event.collection_name,
                "item": str(id),
                "action_by": _user_id(event.acl),
                "action_on": now,
            })

    def log_error(self, error: Any, *args: Any) -> None:
        if isinstance(error, BaseException):
            logger.error("Application error: %s", error, exc_info=error)
        else:
            logger.error("Application error: %s", error)

    def refresh_schema(self, *args: Any) -> None:
        self.registry.refresh()
        self.cache.clear()

    def mark_public_response(self, payload: Payload) -> Payload:
        acl = payload.attribute("acl")
        if acl is not None and acl.is_public():
            return payload.set("public", True)
        return payload
