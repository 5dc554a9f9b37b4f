"""Response caching with tag-based invalidation."""

from contentforge.cache.response import (
    CacheUnavailableError,
    MemoryCachePool,
    RedisCachePool,
    ResponseCache,
    VoidCachePool,
    create_pool,
    entity_tag,
    permissions_tag,
    table_tag,
)

__all__ = [
    "CacheUnavailableError",
    "MemoryCachePool",
    "RedisCachePool",
    "ResponseCache",
    "VoidCachePool",
    "create_pool",
    "entity_tag",
    "permissions_tag",
    "table_tag",
]
