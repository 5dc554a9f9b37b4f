"""Hook system types for ContentForge.

Defines the core data structures for the hook pipeline:
- Payload: immutable, versioned value threaded through filter handlers
- Subscription: a handler registered against an event name
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

# Priorities: higher numbers run first
PRIORITY_HIGH = 10
PRIORITY_NORMAL = 0
PRIORITY_LOW = -10


def _frozen(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Payload:
    """Envelope passed through a filter chain.

    Attributes:
        data: The record, list of records or query description being filtered.
            Handlers must not mutate it in place; they return a new Payload.
        attributes: Fixed context set by the publisher (collection name,
            operation, acting access control). Read-only for the whole chain.
        metadata: Free-form annotations handlers may add.
        version: Incremented every time a handler produces a new value.
    """

    data: Any = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", _frozen(self.attributes))
        object.__setattr__(self, "metadata", _frozen(self.metadata))

    def attribute(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def replace(self, data: Any) -> "Payload":
        """Return a new payload carrying ``data``."""
        return replace(self, data=data, version=self.version + 1)

    def get(self, key: str, default: Any = None) -> Any:
        if isinstance(self.data, Mapping):
            return self.data.get(key, default)
        return default

    def has(self, key: str) -> bool:
        return isinstance(self.data, Mapping) and key in self.data

    def set(self, key: str, value: Any) -> "Payload":
        """Return a new payload with ``data[key] = value``."""
        data = dict(self.data or {})
        data[key] = value
        return self.replace(data)

    def remove(self, *keys: str) -> "Payload":
        """Return a new payload without the given data keys."""
        if not any(self.has(k) for k in keys):
            return self
        data = {k: v for k, v in self.data.items() if k not in keys}
        return self.replace(data)

    def with_metadata(self, **values: Any) -> "Payload":
        merged = {**self.metadata, **values}
        return replace(self, metadata=merged, version=self.version + 1)


# Filter handlers map a payload to a new payload; action handlers observe.
FilterFn = Callable[[Payload], Payload]
ActionFn = Callable[..., Any]


@dataclass(frozen=True)
class Subscription:
    """A handler registered against an event name.

    Attributes:
        event: Exact event name (generic or collection-qualified)
        handler: The callable
        priority: Ordering key, higher runs first
        sequence: Registration order, tie-breaker among equal priorities
        best_effort: Errors are logged and swallowed instead of propagated
    """

    event: str
    handler: Callable[..., Any]
    priority: int = PRIORITY_NORMAL
    sequence: int = 0
    best_effort: bool = False

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))


def split_event(event: str) -> tuple[str, str | None]:
    """Split ``noun.verb[.collection][:phase]`` into base name and phase."""
    base, sep, phase = event.partition(":")
    return base, (phase if sep else None)


def generic_event(event: str) -> str | None:
    """Return the collection-agnostic form of a qualified event name.

    ``collection.insert.posts:before`` -> ``collection.insert:before``.
    Returns None when the event is not collection-qualified.
    """
    base, phase = split_event(event)
    parts = base.split(".", 2)
    if len(parts) < 3:
        return None
    generic = f"{parts[0]}.{parts[1]}"
    return f"{generic}:{phase}" if phase else generic


def qualified_event(noun: str, verb: str, collection: str | None = None, phase: str | None = None) -> str:
    """Build an event name from its parts."""
    name = f"{noun}.{verb}"
    if collection:
        name = f"{name}.{collection}"
    if phase:
        name = f"{name}:{phase}"
    return name


@dataclass(frozen=True)
class MutationEvent:
    """Argument passed to ``collection.<verb>:after`` actions.

    Attributes:
        collection_name: The mutated collection
        operation: "insert", "update" or "delete"
        ids: Primary keys of every affected row
        data: The values written (after the before-filters ran)
        acl: The acting AccessControl, None for internal writes
        metadata: Annotations the before-filters attached to the payload
    """

    collection_name: str
    operation: str
    ids: tuple[Any, ...]
    data: Any = None
    acl: Any = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
