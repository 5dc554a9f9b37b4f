"""Schema registry - collection and field metadata."""

from contentforge.schema.loader import SchemaRegistry
from contentforge.schema.types import (
    COLLECTION_ACTIVITY,
    COLLECTION_FILES,
    COLLECTION_PERMISSIONS,
    COLLECTION_ROLES,
    COLLECTION_USER_ROLES,
    COLLECTION_USERS,
    Cardinality,
    Collection,
    Field,
    RelationDescriptor,
)

__all__ = [
    "COLLECTION_ACTIVITY",
    "COLLECTION_FILES",
    "COLLECTION_PERMISSIONS",
    "COLLECTION_ROLES",
    "COLLECTION_USER_ROLES",
    "COLLECTION_USERS",
    "Cardinality",
    "Collection",
    "Field",
    "RelationDescriptor",
    "SchemaRegistry",
]
