"""Query options and filter normalization.

Filters use one shape throughout::

    {"operator": "and", "conditions": [
        {"field": "status", "operator": "eq", "value": "published"},
        {"operator": "or", "conditions": [...]},
    ]}

``normalize_filter`` also accepts shorthand mappings such as
``{"id": [1, 2]}`` or ``{"id": {"in": [1, 2]}}`` and single conditions.
"""

from dataclasses import dataclass, replace
from typing import Any

OPERATORS = {
    "eq", "neq", "gt", "gte", "lt", "lte", "in", "notIn",
    "contains", "startsWith", "isNull", "isNotNull", "between",
}


def _is_group(value: Any) -> bool:
    return isinstance(value, dict) and "conditions" in value


def _is_condition(value: Any) -> bool:
    return isinstance(value, dict) and "field" in value and "operator" in value


def normalize_filter(conditions: Any) -> dict | None:
    """Normalize any accepted filter shape into a condition group.

    Raises:
        ValueError: For unknown operators or unsupported shapes
    """
    if conditions is None or conditions == {}:
        return None
    if _is_group(conditions):
        operator = conditions.get("operator", "and").lower()
        if operator not in ("and", "or"):
            raise ValueError(f"Unsupported group operator '{operator}'")
        return {
            "operator": operator,
            "conditions": [
                _normalize_member(c) for c in conditions["conditions"] if c is not None
            ],
        }
    if _is_condition(conditions):
        return {"operator": "and", "conditions": [_normalize_member(conditions)]}
    if isinstance(conditions, dict):
        members: list[dict] = []
        for name, value in conditions.items():
            members.extend(_shorthand(name, value))
        return {"operator": "and", "conditions": members}
    raise ValueError(f"Unsupported filter: {conditions!r}")


def _normalize_member(member: dict) -> dict:
    if _is_group(member):
        return normalize_filter(member)
    if _is_condition(member):
        if member["operator"] not in OPERATORS:
            raise ValueError(f"Unsupported filter operator '{member['operator']}'")
        return dict(member)
    return normalize_filter(member)


def _shorthand(name: str, value: Any) -> list[dict]:
    if isinstance(value, dict):
        members = []
        for operator, operand in value.items():
            if operator not in OPERATORS:
                raise ValueError(f"Unsupported filter operator '{operator}'")
            members.append({"field": name, "operator": operator, "value": operand})
        return members
    if isinstance(value, (list, tuple, set)):
        return [{"field": name, "operator": "in", "value": list(value)}]
    if value is None:
        return [{"field": name, "operator": "isNull"}]
    return [{"field": name, "operator": "eq", "value": value}]


def combine_filters(*filters: dict | None) -> dict | None:
    """AND together any number of filters, skipping empty ones."""
    parts = [f for f in (normalize_filter(f) for f in filters) if f]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return {"operator": "and", "conditions": parts}


def filter_fields(conditions: dict | None) -> set[str]:
    """Return every field name a normalized filter refers to."""
    names: set[str] = set()
    if not conditions:
        return names
    for member in conditions.get("conditions", []):
        if _is_group(member):
            names |= filter_fields(member)
        else:
            names.add(member["field"])
    return names


def _split(value: Any) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return list(value)


def _parse_sort(value: Any) -> list[dict] | None:
    if not value:
        return None
    sort = []
    for item in _split(value) if isinstance(value, str) else value:
        if isinstance(item, dict):
            sort.append({"field": item["field"], "direction": item.get("direction", "asc")})
        elif item.startswith("-"):
            sort.append({"field": item[1:], "direction": "desc"})
        else:
            sort.append({"field": item, "direction": "asc"})
    return sort


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


@dataclass(frozen=True)
class QueryOptions:
    """Options recognised by reads.

    Attributes:
        fields: Field selection, None (or ``["*"]``) for every field
        filter: Filter predicates, normalized on construction
        sort: ``[{"field", "direction"}]`` entries
        limit/offset: Pagination
        depth: How many levels of relations to expand (0 disables expansion)
        lang: Language code selecting one row of each translation field
        status: Status values to include; None excludes soft-deleted rows
        meta: Include a ``meta`` envelope in results
    """

    fields: tuple[str, ...] | None = None
    filter: dict | None = None
    sort: tuple[dict, ...] | None = None
    limit: int | None = None
    offset: int = 0
    depth: int = 1
    lang: str | None = None
    status: tuple[str, ...] | None = None
    meta: bool = False

    def __post_init__(self) -> None:
        if self.fields is not None:
            names = tuple(self.fields)
            object.__setattr__(self, "fields", None if names in ((), ("*",)) else names)
        object.__setattr__(self, "filter", normalize_filter(self.filter))
        if self.sort is not None:
            object.__setattr__(self, "sort", tuple(_parse_sort(list(self.sort)) or ()))
        if self.status is not None:
            object.__setattr__(self, "status", tuple(self.status))
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must not be negative")
        if self.offset < 0:
            raise ValueError("offset must not be negative")

    @classmethod
    def from_params(cls, params: dict[str, Any] | None) -> "QueryOptions":
        """Build options from transport query parameters."""
        params = params or {}
        fields = params.get("fields")
        status = params.get("status")
        sort = _parse_sort(params.get("sort"))
        limit = params.get("limit")
        return cls(
            fields=tuple(_split(fields)) if fields else None,
            filter=params.get("filter"),
            sort=tuple(sort) if sort else None,
            limit=int(limit) if limit not in (None, "") else None,
            offset=int(params.get("offset") or 0),
            depth=int(params.get("depth", 1)),
            lang=params.get("lang"),
            status=tuple(_split(status)) if status else None,
            meta=_truthy(params.get("meta", False)),
        )

    def where(self, conditions: Any) -> "QueryOptions":
        """Return options with ``conditions`` ANDed into the filter."""
        return replace(self, filter=combine_filters(self.filter, conditions))

    def with_fields(self, fields: list[str] | None) -> "QueryOptions":
        return replace(self, fields=tuple(fields) if fields is not None else None)

    def to_key(self) -> dict[str, Any]:
        """Stable, JSON-serializable description used for cache fingerprints."""
        return {
            "fields": list(self.fields) if self.fields else None,
            "filter": self.filter,
            "sort": list(self.sort) if self.sort else None,
            "limit": self.limit,
            "offset": self.offset,
            "depth": self.depth,
            "lang": self.lang,
            "status": list(self.status) if self.status else None,
            "meta": self.meta,
        }
