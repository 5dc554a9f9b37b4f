"""Field kind registry with storage defaults."""

from dataclasses import dataclass


@dataclass
class FieldKind:
    name: str
    storage_type: str
    query_operators: list[str]
    codec: str | None = None  # "json", "array" or "boolean"
    has_column: bool = True


_COMPARISON = ["eq", "neq", "gt", "gte", "lt", "lte", "between", "in", "notIn", "isNull", "isNotNull"]
_TEXTUAL = ["eq", "neq", "contains", "startsWith", "in", "notIn", "isNull", "isNotNull"]


# Built-in field kinds
FIELD_KINDS: dict[str, FieldKind] = {
    "string": FieldKind(
        name="string",
        storage_type="TEXT",
        query_operators=_TEXTUAL,
    ),
    "text": FieldKind(
        name="text",
        storage_type="TEXT",
        query_operators=["contains", "isNull", "isNotNull"],
    ),
    "uuid": FieldKind(
        name="uuid",
        storage_type="TEXT",
        query_operators=["eq", "in", "isNull"],
    ),
    "integer": FieldKind(
        name="integer",
        storage_type="INTEGER",
        query_operators=_COMPARISON,
    ),
    "number": FieldKind(
        name="number",
        storage_type="REAL",
        query_operators=_COMPARISON,
    ),
    "boolean": FieldKind(
        name="boolean",
        storage_type="INTEGER",  # 0/1
        query_operators=["eq", "neq", "isNull", "isNotNull"],
        codec="boolean",
    ),
    "json": FieldKind(
        name="json",
        storage_type="TEXT",  # JSON document stored as text
        query_operators=["contains", "isNull", "isNotNull"],
        codec="json",
    ),
    "array": FieldKind(
        name="array",
        storage_type="TEXT",  # comma-delimited list
        query_operators=["contains", "isNull", "isNotNull"],
        codec="array",
    ),
    "date": FieldKind(
        name="date",
        storage_type="TEXT",  # ISO format
        query_operators=_COMPARISON,
    ),
    "datetime": FieldKind(
        name="datetime",
        storage_type="TEXT",  # ISO format
        query_operators=_COMPARISON,
    ),
    "relation": FieldKind(
        name="relation",
        storage_type="INTEGER",  # replaced by the target key type for many-to-one
        query_operators=["eq", "in", "notIn", "isNull", "isNotNull"],
    ),
}


def get_field_kind(kind_name: str) -> FieldKind:
    """Get field kind definition, defaulting to string if unknown."""
    return FIELD_KINDS.get(kind_name, FIELD_KINDS["string"])


def get_storage_type(kind_name: str) -> str:
    """Get the storage type for a field kind."""
    return get_field_kind(kind_name).storage_type
