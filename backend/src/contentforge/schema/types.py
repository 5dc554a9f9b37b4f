"""Collection and field metadata types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from contentforge.core.types import get_field_kind

# Reserved system collections
COLLECTION_USERS = "directus_users"
COLLECTION_ROLES = "directus_roles"
COLLECTION_USER_ROLES = "directus_user_roles"
COLLECTION_FILES = "directus_files"
COLLECTION_PERMISSIONS = "directus_permissions"
COLLECTION_ACTIVITY = "directus_activity"

SYSTEM_PREFIX = "directus_"


class Cardinality(Enum):
    """How a relation field maps onto the related collection."""

    MANY_TO_ONE = "many_to_one"  # this collection holds the foreign key
    ONE_TO_MANY = "one_to_many"  # the related collection holds the foreign key


@dataclass(frozen=True)
class RelationDescriptor:
    """Relation configuration for a relation field.

    Attributes:
        collection: The related collection name
        cardinality: MANY_TO_ONE or ONE_TO_MANY
        join_column: For ONE_TO_MANY, the column on the related collection
            pointing back at this collection's primary key
    """

    collection: str
    cardinality: Cardinality = Cardinality.MANY_TO_ONE
    join_column: str | None = None


@dataclass(frozen=True)
class Field:
    name: str
    kind: str = "string"
    interface: str | None = None
    primary_key: bool = False
    required: bool = False
    options: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    relation: RelationDescriptor | None = None

    @property
    def codec(self) -> str | None:
        return get_field_kind(self.kind).codec

    @property
    def is_json(self) -> bool:
        return self.codec == "json"

    @property
    def is_array(self) -> bool:
        return self.codec == "array"

    @property
    def is_boolean(self) -> bool:
        return self.codec == "boolean"

    @property
    def is_many_to_one(self) -> bool:
        return self.relation is not None and self.relation.cardinality == Cardinality.MANY_TO_ONE

    @property
    def is_one_to_many(self) -> bool:
        return self.relation is not None and self.relation.cardinality == Cardinality.ONE_TO_MANY

    @property
    def has_column(self) -> bool:
        """One-to-many fields are aliases with no column of their own."""
        return not self.is_one_to_many


@dataclass(frozen=True)
class Collection:
    """Metadata for one collection.

    Attributes:
        name: Unique collection (table) name
        fields: Ordered field definitions
        primary_key: Name of the primary key field
        status_field: Optional status column used for soft deletes
        deleted_value: Status value marking a soft-deleted row
        date_created/date_modified: Timestamp fields stamped by hooks
        user_created/user_modified: Actor fields stamped by hooks
    """

    name: str
    fields: tuple[Field, ...]
    primary_key: str = "id"
    status_field: str | None = None
    deleted_value: str = "deleted"
    date_created: str | None = None
    date_modified: str | None = None
    user_created: str | None = None
    user_modified: str | None = None

    @property
    def is_system(self) -> bool:
        return self.name.startswith(SYSTEM_PREFIX)

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def column_names(self) -> list[str]:
        return [f.name for f in self.fields if f.has_column]

    @property
    def owner_field(self) -> str | None:
        """Field holding the owning user's id, used for MINE permissions."""
        if self.name == COLLECTION_USERS:
            return self.primary_key
        return self.user_created

    def get_field(self, name: str) -> Field | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_fields(self, names: list[str] | None = None) -> list[Field]:
        """Return fields in declared order, optionally restricted to names."""
        if names is None:
            return list(self.fields)
        wanted = set(names)
        return [f for f in self.fields if f.name in wanted]

    def has_status_column(self) -> bool:
        return self.status_field is not None and self.get_field(self.status_field) is not None

    def has_json_field(self) -> bool:
        return any(f.is_json for f in self.fields)

    def has_array_field(self) -> bool:
        return any(f.is_array for f in self.fields)

    def has_boolean_field(self) -> bool:
        return any(f.is_boolean for f in self.fields)

    def relation_fields(self) -> list[Field]:
        return [f for f in self.fields if f.relation is not None]
