"""Tests for the schema registry and collection YAML validation."""

import logging

import pytest

from contentforge.errors import CollectionNotFoundError
from contentforge.schema.loader import SchemaRegistry
from contentforge.schema.types import Cardinality, Collection, Field
from contentforge.schema.validator import validate_schema_dir, validate_yaml_file


@pytest.fixture
def registry(schema_dir):
    registry = SchemaRegistry(schema_dir)
    registry.load_all()
    return registry


class TestRegistry:
    def test_loads_yaml_and_system_collections(self, registry):
        names = registry.list_collections()
        assert {"posts", "comments", "languages", "post_translations"} <= set(names)
        assert {"directus_users", "directus_roles", "directus_permissions"} <= set(names)

    def test_without_system_collections(self, schema_dir):
        registry = SchemaRegistry(schema_dir, include_system=False)
        registry.load_all()
        assert not any(registry.is_system_collection(n) for n in registry.list_collections())

    def test_resolves_collection_bindings(self, registry):
        posts = registry.get_collection("posts")
        assert posts.primary_key == "id"
        assert posts.status_field == "status"
        assert posts.owner_field == "author"
        assert registry.has_status_column("posts")
        assert not registry.has_status_column("comments")

    def test_resolves_relations(self, registry):
        translations = registry.get_collection("posts").get_field("translations")
        assert translations.is_one_to_many
        assert translations.relation.cardinality == Cardinality.ONE_TO_MANY
        assert translations.relation.join_column == "post"
        assert translations.options["left_column_name"] == "language"
        assert not translations.has_column

    def test_declared_primary_key(self, registry):
        assert registry.get_collection("languages").primary_key == "code"

    def test_unknown_collection(self, registry):
        with pytest.raises(CollectionNotFoundError):
            registry.get_collection("nope")

    def test_get_fields_in_declared_order(self, registry):
        names = [f.name for f in registry.get_fields("posts", ["title", "id"])]
        assert names == ["id", "title"]

    def test_registered_collections_survive_refresh(self, registry):
        registry.register(Collection(name="extra", fields=(Field(name="id", kind="integer", primary_key=True),)))
        registry.refresh()
        assert registry.has_collection("extra")

    def test_refresh_picks_up_new_files(self, registry, schema_dir):
        (schema_dir / "collections" / "tags.yaml").write_text(
            "collection: tags\nfields:\n  - name: id\n    type: integer\n"
        )
        assert not registry.has_collection("tags")
        registry.refresh()
        assert registry.has_collection("tags")

    def test_unknown_relation_target_is_logged(self, tmp_path, caplog):
        (tmp_path / "collections").mkdir()
        (tmp_path / "collections" / "a.yaml").write_text(
            "collection: a\nfields:\n  - name: b\n    type: relation\n    relation:\n      collection: missing\n"
        )
        with caplog.at_level(logging.WARNING, logger="contentforge.schema.loader"):
            SchemaRegistry(tmp_path).load_all()
        assert "unknown collection 'missing'" in caplog.text

    def test_describe(self, registry):
        description = registry.describe("comments")
        assert description["collection"] == "comments"
        assert description["fields"][1]["relation"] == {
            "collection": "posts",
            "cardinality": "many_to_one",
            "joinColumn": None,
        }


class TestValidator:
    def _write(self, tmp_path, text, name="sample.yaml"):
        path = tmp_path / name
        path.write_text(text)
        return path

    def test_sample_schema_is_valid(self, schema_dir):
        assert validate_schema_dir(schema_dir) == []

    def test_missing_fields(self, tmp_path):
        issues = validate_yaml_file(self._write(tmp_path, "collection: a\n"))
        assert len(issues) == 1
        assert "fields" in issues[0].message

    def test_relation_requires_descriptor(self, tmp_path):
        issues = validate_yaml_file(self._write(tmp_path, "collection: a\nfields:\n  - name: b\n    type: relation\n"))
        assert issues
        assert issues[0].path == "fields[0]"

    def test_one_to_many_requires_join_column(self, tmp_path):
        text = (
            "collection: a\nfields:\n  - name: id\n  - name: b\n    type: relation\n"
            "    relation:\n      collection: c\n      cardinality: one_to_many\n"
        )
        assert validate_yaml_file(self._write(tmp_path, text))

    def test_unknown_binding(self, tmp_path):
        issues = validate_yaml_file(self._write(tmp_path, "collection: a\nstatusField: state\nfields:\n  - name: id\n"))
        assert [i.path for i in issues] == ["statusField"]

    def test_duplicate_fields(self, tmp_path):
        issues = validate_yaml_file(self._write(tmp_path, "collection: a\nfields:\n  - name: id\n  - name: id\n"))
        assert "Duplicate field 'id'" in issues[0].message

    def test_missing_primary_key_is_a_warning(self, tmp_path):
        issues = validate_yaml_file(self._write(tmp_path, "collection: a\nfields:\n  - name: title\n"))
        assert [i.severity for i in issues] == ["warning"]

    def test_strict_escalates_warnings(self, tmp_path):
        (tmp_path / "collections").mkdir()
        self._write(tmp_path / "collections", "collection: a\nfields:\n  - name: title\n")
        assert [i.severity for i in validate_schema_dir(tmp_path)] == ["warning"]
        assert [i.severity for i in validate_schema_dir(tmp_path, strict=True)] == ["error"]

    def test_yaml_parse_error(self, tmp_path):
        issues = validate_yaml_file(self._write(tmp_path, "collection: [unclosed\n"))
        assert "YAML parse error" in issues[0].message

    def test_empty_file(self, tmp_path):
        issues = validate_yaml_file(self._write(tmp_path, ""))
        assert "empty" in issues[0].message

    def test_missing_directory(self, tmp_path):
        issues = validate_schema_dir(tmp_path / "nope")
        assert "does not exist" in issues[0].message
