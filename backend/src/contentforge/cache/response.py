"""Tag-indexed response cache.

Entries are keyed by a request fingerprint and tagged with the collections
and rows they were built from:

- ``table_<collection>``
- ``entity_<collection>_<id>``
- ``permissions_collection_<collection>``

Writes invalidate by tag. Every invalidation also bumps a generation
counter; a read remembers the generation it started under and its result
is only stored if no invalidation happened in between.

The cache is an optimization only. When a pool is unreachable, reads miss
and writes are skipped.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Iterable
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)


def table_tag(collection: str) -> str:
    return f"table_{collection}"


def entity_tag(collection: str, id: Any) -> str:
    return f"entity_{collection}_{id}"


def permissions_tag(collection: str) -> str:
    return f"permissions_collection_{collection}"


class CacheUnavailableError(Exception):
    """Raised by a pool when its backend cannot be reached."""


class CachePool(Protocol):
    """Storage backend for cached responses.

    Values are serialized strings. ``set`` stores only if the generation is
    still ``generation``, atomically with respect to ``invalidate_tags``.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, tags: Iterable[str], ttl: int | None, generation: int) -> bool: ...

    def invalidate_tags(self, tags: Iterable[str]) -> None: ...

    def generation(self) -> int: ...

    def clear(self) -> None: ...


class VoidCachePool:
    """Caches nothing."""

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str, tags: Iterable[str], ttl: int | None, generation: int) -> bool:
        return False

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        return None

    def generation(self) -> int:
        return 0

    def clear(self) -> None:
        return None


class MemoryCachePool:
    """Process-local pool with TTL expiry. Thread-safe."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, tuple[str, float | None, frozenset[str]]] = {}
        self._tags: dict[str, set[str]] = {}
        self._generation = 0

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at, _ = entry
            if expires_at is not None and time.monotonic() > expires_at:
                self._drop(key)
                return None
            return value

    def set(self, key: str, value: str, tags: Iterable[str], ttl: int | None, generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            tags = frozenset(tags)
            self._drop(key)
            expires_at = time.monotonic() + ttl if ttl else None
            self._entries[key] = (value, expires_at, tags)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)
            return True

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry[2]:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        with self._lock:
            self._generation += 1
            for tag in tags:
                for key in list(self._tags.get(tag, ())):
                    self._drop(key)

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tags.clear()
            self._generation += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCachePool:
    """Pool shared between processes through Redis.

    Tag membership is kept in Redis sets; the generation counter is a
    plain integer key guarded with WATCH when storing.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", prefix: str = "contentforge:cache:", client: Any = None):
        self._client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self._prefix = prefix

    def _entry_key(self, key: str) -> str:
        return f"{self._prefix}entry:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}tag:{tag}"

    @property
    def _generation_key(self) -> str:
        return f"{self._prefix}generation"

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(self._entry_key(key))
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def set(self, key: str, value: str, tags: Iterable[str], ttl: int | None, generation: int) -> bool:
        try:
            with self._client.pipeline() as pipe:
                pipe.watch(self._generation_key)
                if int(pipe.get(self._generation_key) or 0) != generation:
                    pipe.unwatch()
                    return False
                pipe.multi()
                if ttl:
                    pipe.set(self._entry_key(key), value, ex=ttl)
                else:
                    pipe.set(self._entry_key(key), value)
                for tag in tags:
                    pipe.sadd(self._tag_key(tag), self._entry_key(key))
                pipe.execute()
                return True
        except redis.WatchError:
            return False
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        try:
            self._client.incr(self._generation_key)
            for tag in tags:
                tag_key = self._tag_key(tag)
                keys = self._client.smembers(tag_key)
                if keys:
                    self._client.delete(*keys)
                self._client.delete(tag_key)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def generation(self) -> int:
        try:
            return int(self._client.get(self._generation_key) or 0)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def clear(self) -> None:
        try:
            keys = [k for k in self._client.scan_iter(f"{self._prefix}*") if k != self._generation_key]
            if keys:
                self._client.delete(*keys)
            self._client.incr(self._generation_key)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc


def create_pool(adapter: str, redis_url: str | None = None) -> CachePool:
    """Create a pool by adapter name ("void", "memory" or "redis").

    Raises:
        ValueError: For unknown adapters
    """
    if adapter in ("", "void", None):
        return VoidCachePool()
    if adapter in ("memory", "array"):
        return MemoryCachePool()
    if adapter == "redis":
        return RedisCachePool(redis_url or "redis://localhost:6379/0")
    raise ValueError(f"Valid cache adapters are 'void', 'memory', 'redis', got '{adapter}'")


class ResponseCache:
    """Caches JSON-serializable read results by fingerprint."""

    def __init__(self, pool: CachePool | None = None, ttl: int | None = 300):
        # An empty MemoryCachePool is falsy
        self.pool = pool if pool is not None else VoidCachePool()
        self.ttl = ttl

    @staticmethod
    def canonical(value: Any) -> Any:
        """The value as a cache hit would return it.

        Reads return this form on a miss too, so cached and uncached
        results are equal (integer mapping keys become strings).
        """
        return json.loads(json.dumps(value, default=str))

    @staticmethod
    def fingerprint(collection: str, options: Any = None, context: Any = None) -> str:
        """Stable key for (collection, query options, role context)."""
        if hasattr(options, "to_key"):
            options = options.to_key()
        raw = json.dumps(
            {"collection": collection, "options": options, "context": context},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(raw.encode()).hexdigest()

    def marker(self) -> int | None:
        """Generation to pass to ``set`` for a read starting now.

        None when the pool is unreachable; such reads are not stored.
        """
        try:
            return self.pool.generation()
        except CacheUnavailableError as exc:
            logger.warning("Cache unavailable, skipping: %s", exc)
            return None

    def get(self, key: str) -> Any | None:
        try:
            raw = self.pool.get(key)
        except CacheUnavailableError as exc:
            logger.warning("Cache unavailable, treating as miss: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable cache entry %s", key)
            return None

    def set(self, key: str, value: Any, tags: Iterable[str], marker: int | None) -> bool:
        """Store a value unless an invalidation happened since ``marker``.

        ``marker`` comes from ``marker()`` taken before the read; None skips
        storing.

        Returns:
            True if the value was stored
        """
        if marker is None:
            return False
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError):
            logger.warning("Not caching unserializable value for %s", key)
            return False
        try:
            return self.pool.set(key, raw, list(tags), self.ttl, marker)
        except CacheUnavailableError as exc:
            logger.warning("Cache unavailable, not storing: %s", exc)
            return False

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        tags = list(tags)
        if not tags:
            return
        try:
            self.pool.invalidate_tags(tags)
        except CacheUnavailableError as exc:
            logger.error("Cache invalidation failed for %s: %s", tags, exc)
        else:
            logger.debug("Invalidated cache tags %s", tags)

    def clear(self) -> None:
        try:
            self.pool.clear()
        except CacheUnavailableError as exc:
            logger.error("Cache clear failed: %s", exc)
