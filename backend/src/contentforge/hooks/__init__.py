"""ContentForge hook pipeline.

Lifecycle events are named ``<noun>.<verb>[.<collection>][:before|:after]``.
Filters receive and return a Payload; actions observe and return nothing.

Usage:
    from contentforge.hooks import HookPipeline, Payload, PRIORITY_HIGH

    pipeline = HookPipeline()

    @pipeline.on("collection.insert.posts:before", priority=PRIORITY_HIGH)
    def add_slug(payload: Payload) -> Payload:
        return payload.set("slug", slugify(payload.get("title")))

Built-in policy handlers live in ``contentforge.hooks.builtins``.
"""

from contentforge.hooks.pipeline import HookPipeline
from contentforge.hooks.types import (
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_NORMAL,
    MutationEvent,
    Payload,
    Subscription,
    generic_event,
    qualified_event,
)

__all__ = [
    "HookPipeline",
    "MutationEvent",
    "PRIORITY_HIGH",
    "PRIORITY_LOW",
    "PRIORITY_NORMAL",
    "Payload",
    "Subscription",
    "generic_event",
    "qualified_event",
]
