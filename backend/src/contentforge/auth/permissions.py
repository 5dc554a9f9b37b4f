"""Permission checking for collection access."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from contentforge.auth.types import (
    ADMIN_ROLE_ID,
    PUBLIC_ROLE_ID,
    PUBLIC_ROLE_NAME,
    VERBS,
    PermissionLevel,
    UserContext,
)
from contentforge.errors import ForbiddenError
from contentforge.persistence.query import QueryOptions
from contentforge.schema.types import COLLECTION_PERMISSIONS, Collection

if TYPE_CHECKING:
    from contentforge.persistence.gateway import GatewayFactory
    from contentforge.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)


def _as_set(value: Any) -> frozenset[str]:
    """Normalize a blacklist given as a list or comma-delimited string."""
    if not value:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(v.strip() for v in value if v and v.strip())


@dataclass(frozen=True)
class Permission:
    """CRUD levels a role holds on one collection."""

    collection: str
    role: Any = None
    create: PermissionLevel = PermissionLevel.NONE
    read: PermissionLevel = PermissionLevel.NONE
    update: PermissionLevel = PermissionLevel.NONE
    delete: PermissionLevel = PermissionLevel.NONE
    read_field_blacklist: frozenset[str] = field(default_factory=frozenset)
    write_field_blacklist: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Permission":
        """Build a Permission from a directus_permissions row."""
        return cls(
            collection=row["collection"],
            role=row.get("role"),
            create=PermissionLevel.parse(row.get("create")),
            read=PermissionLevel.parse(row.get("read")),
            update=PermissionLevel.parse(row.get("update")),
            delete=PermissionLevel.parse(row.get("delete")),
            read_field_blacklist=_as_set(row.get("read_field_blacklist")),
            write_field_blacklist=_as_set(row.get("write_field_blacklist")),
        )

    def level(self, verb: str) -> PermissionLevel:
        if verb not in VERBS:
            raise ValueError(f"Unknown permission verb '{verb}'")
        return getattr(self, verb)


class AccessControl:
    """Per-request access control policy.

    Built fresh for every request from the acting user and the permission
    rows of their role; never shared across requests.

    FULL grants unconditional access, MINE restricts to rows whose owner
    field equals the acting user, NONE rejects outright. Admins hold FULL on
    every collection.
    """

    def __init__(
        self,
        user: UserContext | None,
        permissions: Mapping[str, Permission] | Iterable[Permission] = (),
        registry: "SchemaRegistry | None" = None,
    ):
        self.user = user or UserContext()
        if isinstance(permissions, Mapping):
            self.permissions = dict(permissions)
        else:
            self.permissions = {p.collection: p for p in permissions}
        self.registry = registry

    # -- identity -----------------------------------------------------------

    def is_admin(self) -> bool:
        return bool(self.user.admin) or (
            self.user.role_id is not None and str(self.user.role_id) == str(ADMIN_ROLE_ID)
        )

    def is_public(self) -> bool:
        if self.user.user_id is None:
            return True
        if (self.user.role_name or "").lower() == PUBLIC_ROLE_NAME:
            return True
        return self.user.role_id is not None and str(self.user.role_id) == str(PUBLIC_ROLE_ID)

    def current_user_id(self) -> Any:
        return self.user.user_id

    # -- collection and row checks -----------------------------------------

    def level(self, collection: str, verb: str) -> PermissionLevel:
        """Return the effective level for a verb on a collection."""
        if self.is_admin():
            return PermissionLevel.FULL
        permission = self.permissions.get(collection)
        if permission is None:
            return PermissionLevel.NONE
        return permission.level(verb)

    def _collection(self, collection: str | Collection) -> Collection | None:
        if isinstance(collection, Collection):
            return collection
        if self.registry is not None and self.registry.has_collection(collection):
            return self.registry.get_collection(collection)
        return None

    def owns(self, collection: str | Collection, row: Mapping[str, Any]) -> bool:
        """Check whether the acting user owns a row."""
        user_id = self.current_user_id()
        resolved = self._collection(collection)
        if user_id is None or resolved is None or resolved.owner_field is None:
            return False

        owner = row.get(resolved.owner_field)
        if isinstance(owner, Mapping):
            # Expanded many-to-one relation
            owner = owner.get("id")
        return owner is not None and str(owner) == str(user_id)

    def can(self, verb: str, collection: str | Collection, row: Mapping[str, Any] | None = None) -> bool:
        """Check a verb on a collection, and on a row when one is given.

        Without a row, MINE answers True: some rows may be permitted and the
        row-level check happens once the row is known.
        """
        name = collection.name if isinstance(collection, Collection) else collection
        level = self.level(name, verb)
        if level == PermissionLevel.NONE:
            return False
        if level == PermissionLevel.FULL or row is None:
            return True
        return self.owns(collection, row)

    def can_create(self, collection: str | Collection, row: Mapping[str, Any] | None = None) -> bool:
        return self.can("create", collection, row)

    def can_read(self, collection: str | Collection, row: Mapping[str, Any] | None = None) -> bool:
        return self.can("read", collection, row)

    def can_update(self, collection: str | Collection, row: Mapping[str, Any] | None = None) -> bool:
        return self.can("update", collection, row)

    def can_delete(self, collection: str | Collection, row: Mapping[str, Any] | None = None) -> bool:
        return self.can("delete", collection, row)

    def enforce(self, verb: str, collection: str | Collection, row: Mapping[str, Any] | None = None) -> None:
        """Raise ForbiddenError unless the verb is permitted.

        Raises:
            ForbiddenError: If the check fails
        """
        if self.can(verb, collection, row):
            return
        name = collection.name if isinstance(collection, Collection) else collection
        if row is None:
            raise ForbiddenError(f"You are not allowed to {verb} items in '{name}'")
        raise ForbiddenError(f"You are not allowed to {verb} this item in '{name}'")

    def ownership_filter(self, collection: Collection, verb: str = "read") -> dict | None:
        """Filter condition restricting a query to rows the user may touch.

        Returns None when no restriction applies (FULL). For MINE on a
        collection without an owner field, returns a condition no row
        satisfies.
        """
        if self.level(collection.name, verb) != PermissionLevel.MINE:
            return None
        user_id = self.current_user_id()
        if collection.owner_field is None or user_id is None:
            return {"field": collection.primary_key, "operator": "isNull"}
        return {"field": collection.owner_field, "operator": "eq", "value": user_id}

    # -- field blacklists ---------------------------------------------------

    def read_blacklist(self, collection: str) -> frozenset[str]:
        if self.is_admin():
            return frozenset()
        permission = self.permissions.get(collection)
        return permission.read_field_blacklist if permission else frozenset()

    def write_blacklist(self, collection: str) -> frozenset[str]:
        if self.is_admin():
            return frozenset()
        permission = self.permissions.get(collection)
        return permission.write_field_blacklist if permission else frozenset()

    def readable_fields(self, collection: str, fields: Iterable[str]) -> list[str]:
        """Drop blacklisted names from a field selection."""
        blacklist = self.read_blacklist(collection)
        return [f for f in fields if f not in blacklist]

    def apply_read_policy(self, collection: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Strip fields the user cannot read from a record."""
        blacklist = self.read_blacklist(collection)
        if not blacklist:
            return dict(record)
        return {k: v for k, v in record.items() if k not in blacklist}

    def apply_write_policy(self, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Strip fields the user cannot write from incoming data."""
        blacklist = self.write_blacklist(collection)
        if not blacklist:
            return dict(data)
        stripped = [k for k in data if k in blacklist]
        if stripped:
            logger.debug("Stripped unwritable fields %s from %s", stripped, collection)
        return {k: v for k, v in data.items() if k not in blacklist}


class PermissionRepository:
    """Loads permission rows for a role from ``directus_permissions``.

    Rows are read on every call; nothing is memoized, so permission changes
    take effect on the next request.
    """

    def __init__(self, gateways: "GatewayFactory"):
        self.gateways = gateways

    def load(self, role_id: Any) -> dict[str, Permission]:
        if role_id is None:
            return {}
        gateway = self.gateways.get(COLLECTION_PERMISSIONS)
        rows = gateway.fetch({"role": role_id}, QueryOptions(depth=0))
        return {row["collection"]: Permission.from_row(row) for row in rows}

    def access_control_for(self, user: UserContext | None) -> AccessControl:
        """Build the policy for one request."""
        user = user or UserContext()
        return AccessControl(user, self.load(user.role_id), self.gateways.registry)
