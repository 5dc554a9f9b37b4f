"""Hook pipeline for ContentForge.

An ordered action/filter bus keyed by lifecycle event names of the form
``<noun>.<verb>[.<collection>][:before|:after]``.

Publishing a collection-qualified event runs the handlers subscribed to the
exact name together with those subscribed to its generic form, interleaved
by priority (higher first) and by registration order among equals.
"""

import itertools
import logging
from collections.abc import Callable
from typing import Any

from contentforge.hooks.types import (
    PRIORITY_NORMAL,
    ActionFn,
    FilterFn,
    Payload,
    Subscription,
    generic_event,
)

logger = logging.getLogger(__name__)


class HookPipeline:
    """Registry and dispatcher for hook subscriptions.

    Example:
        pipeline = HookPipeline()

        @pipeline.on("collection.insert.posts:before")
        def add_slug(payload: Payload) -> Payload:
            return payload.set("slug", slugify(payload.get("title")))

        payload = pipeline.publish_filter("collection.insert.posts:before", payload)
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._sequence = itertools.count()

    def subscribe(
        self,
        event: str,
        handler: Callable[..., Any],
        priority: int = PRIORITY_NORMAL,
        best_effort: bool = False,
    ) -> Subscription:
        """Register a handler for an event.

        Args:
            event: Exact event name, generic or collection-qualified
            handler: Filter (Payload -> Payload) or action (*args -> None)
            priority: Higher numbers run earlier
            best_effort: Log and swallow handler errors instead of raising

        Returns:
            The created subscription (pass it to ``unsubscribe`` to remove it)
        """
        subscription = Subscription(
            event=event,
            handler=handler,
            priority=priority,
            sequence=next(self._sequence),
            best_effort=best_effort,
        )
        self._subscriptions.setdefault(event, []).append(subscription)
        return subscription

    def on(
        self, event: str, priority: int = PRIORITY_NORMAL, best_effort: bool = False
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of ``subscribe``."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.subscribe(event, fn, priority=priority, best_effort=best_effort)
            return fn

        return decorator

    def unsubscribe(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.event, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)

    def subscriptions(self, event: str) -> list[Subscription]:
        """Return the subscriptions a published event would run, in order."""
        matched = list(self._subscriptions.get(event, []))
        generic = generic_event(event)
        if generic:
            matched.extend(self._subscriptions.get(generic, []))
        return sorted(matched, key=lambda s: (-s.priority, s.sequence))

    def has_subscribers(self, event: str) -> bool:
        return bool(self.subscriptions(event))

    def publish_action(self, event: str, *args: Any) -> None:
        """Run every matching action handler; return values are discarded.

        Errors propagate and stop the remaining handlers, except for
        best-effort subscriptions whose errors are logged.
        """
        for subscription in self.subscriptions(event):
            handler: ActionFn = subscription.handler
            try:
                handler(*args)
            except Exception:
                if not subscription.best_effort:
                    raise
                logger.exception(
                    "Best-effort hook '%s' failed on '%s'", subscription.name, event
                )

    def publish_filter(self, event: str, payload: Payload) -> Payload:
        """Thread a payload through every matching filter handler.

        Each handler's output becomes the next handler's input. A handler
        error aborts the rest of the chain and propagates to the caller.

        Raises:
            TypeError: If a handler does not return a Payload
        """
        for subscription in self.subscriptions(event):
            handler: FilterFn = subscription.handler
            try:
                result = handler(payload)
            except Exception:
                if not subscription.best_effort:
                    raise
                logger.exception(
                    "Best-effort filter '%s' failed on '%s'", subscription.name, event
                )
                continue

            if not isinstance(result, Payload):
                raise TypeError(
                    f"Filter '{subscription.name}' on '{event}' must return a Payload, "
                    f"got {type(result).__name__}"
                )
            payload = result

        return payload

    def clear(self) -> None:
        """Remove all subscriptions. Primarily for testing."""
        self._subscriptions.clear()
