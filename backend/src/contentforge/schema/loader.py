"""Load and resolve collection metadata from YAML files."""

import logging
from pathlib import Path
from typing import Any

import yaml

from contentforge.errors import CollectionNotFoundError
from contentforge.schema.system import system_collections
from contentforge.schema.types import (
    SYSTEM_PREFIX,
    Cardinality,
    Collection,
    Field,
    RelationDescriptor,
)

logger = logging.getLogger(__name__)


class SchemaRegistry:
    """Holds collection metadata and answers lookups.

    Collections come from three places: the built-in system collections,
    ``*.yaml`` files under ``<schema_path>/collections`` and explicit
    ``register()`` calls. The registry is read-mostly; ``refresh()`` rebuilds
    it from disk and swaps the whole mapping at once, so a request holding a
    Collection never observes a half-loaded schema.
    """

    def __init__(self, schema_path: Path | None = None, include_system: bool = True):
        self.schema_path = schema_path
        self.include_system = include_system
        self.collections: dict[str, Collection] = {}
        self._registered: dict[str, Collection] = {}

    def load_all(self) -> None:
        """Load system collections and all YAML collection definitions."""
        collections: dict[str, Collection] = {}

        if self.include_system:
            for collection in system_collections():
                collections[collection.name] = collection

        collections.update(self._load_collections())
        collections.update(self._registered)
        self._validate_relations(collections)
        self.collections = collections

    def refresh(self) -> None:
        """Reload collection metadata after a schema change."""
        logger.info("Refreshing schema registry")
        self.load_all()

    def register(self, collection: Collection) -> None:
        """Register a collection programmatically.

        Registered collections survive ``refresh()``.
        """
        self._registered[collection.name] = collection
        collections = dict(self.collections)
        collections[collection.name] = collection
        self.collections = collections

    def _load_collections(self) -> dict[str, Collection]:
        loaded: dict[str, Collection] = {}
        if self.schema_path is None:
            return loaded

        collections_path = self.schema_path / "collections"
        if not collections_path.exists():
            return loaded

        for yaml_file in sorted(collections_path.glob("*.yaml")):
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
                if data and "collection" in data:
                    collection = self._resolve_collection(data)
                    loaded[collection.name] = collection
        return loaded

    def _validate_relations(self, collections: dict[str, Collection]) -> None:
        """Warn about relations pointing at unknown collections."""
        for collection in collections.values():
            for f in collection.relation_fields():
                if f.relation.collection not in collections:
                    logger.warning(
                        "Relation %s.%s targets unknown collection '%s'",
                        collection.name,
                        f.name,
                        f.relation.collection,
                    )

    def _resolve_collection(self, data: dict) -> Collection:
        """Resolve a collection definition."""
        name = data["collection"]
        fields = tuple(self._resolve_field(f) for f in data.get("fields", []))

        primary_key = data.get("primaryKey")
        if not primary_key:
            primary_key = "id"
            for f in fields:
                if f.primary_key:
                    primary_key = f.name
                    break

        return Collection(
            name=name,
            fields=fields,
            primary_key=primary_key,
            status_field=data.get("statusField"),
            deleted_value=data.get("deletedValue", "deleted"),
            date_created=data.get("dateCreated"),
            date_modified=data.get("dateModified"),
            user_created=data.get("userCreated"),
            user_modified=data.get("userModified"),
        )

    def _resolve_field(self, data: dict) -> Field:
        """Convert field dict to Field."""
        relation_data = data.get("relation")
        relation = None
        if relation_data:
            relation = RelationDescriptor(
                collection=relation_data["collection"],
                cardinality=Cardinality(relation_data.get("cardinality", "many_to_one")),
                join_column=relation_data.get("joinColumn"),
            )

        return Field(
            name=data["name"],
            kind=data.get("type", "string"),
            interface=data.get("interface"),
            primary_key=data.get("primaryKey", False),
            required=data.get("required", False),
            options=data.get("options") or {},
            relation=relation,
        )

    def get_collection(self, name: str) -> Collection:
        """Get a collection by name.

        Raises:
            CollectionNotFoundError: If the collection is not registered
        """
        collection = self.collections.get(name)
        if collection is None:
            raise CollectionNotFoundError(name)
        return collection

    def get_fields(self, name: str, names: list[str] | None = None) -> list[Field]:
        return self.get_collection(name).get_fields(names)

    def has_collection(self, name: str) -> bool:
        return name in self.collections

    def has_status_column(self, name: str) -> bool:
        return self.get_collection(name).has_status_column()

    def is_system_collection(self, name: str) -> bool:
        return name.startswith(SYSTEM_PREFIX)

    def list_collections(self) -> list[str]:
        """List all collection names."""
        return list(self.collections.keys())

    def describe(self, name: str) -> dict[str, Any]:
        """Return a plain-dict description of a collection."""
        collection = self.get_collection(name)
        return {
            "collection": collection.name,
            "primaryKey": collection.primary_key,
            "statusField": collection.status_field,
            "system": collection.is_system,
            "fields": [
                {
                    "name": f.name,
                    "type": f.kind,
                    "interface": f.interface,
                    "relation": {
                        "collection": f.relation.collection,
                        "cardinality": f.relation.cardinality.value,
                        "joinColumn": f.relation.join_column,
                    } if f.relation else None,
                }
                for f in collection.fields
            ],
        }
