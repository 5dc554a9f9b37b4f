"""Application settings read from the environment."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from contentforge.persistence.config import DatabaseConfig

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


@dataclass
class Settings:
    """Settings for one process.

    Attributes:
        database: Database connection configuration
        schema_path: Directory holding ``collections/*.yaml``
        cache_adapter: "void", "memory" or "redis"
        cache_ttl: Seconds a cached response lives (0 for no expiry)
        redis_url: Redis URL for the "redis" cache adapter
        files_url: Base URL prepended to file names on reads
        thumbnail_url: Base URL for file thumbnails
        bcrypt_rounds: bcrypt work factor for password hashing
        providers: Provider name -> provider configuration
    """

    database: DatabaseConfig = field(default_factory=lambda: DatabaseConfig(url="sqlite://"))
    schema_path: Path | None = None
    cache_adapter: str = "void"
    cache_ttl: int = 300
    redis_url: str | None = None
    files_url: str = "/storage/uploads"
    thumbnail_url: str = "/thumbnail"
    bcrypt_rounds: int = 12
    providers: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> Settings:
        """Create settings from environment variables.

        Variables:
            DATABASE_URL (see DatabaseConfig.from_env)
            CONTENTFORGE_SCHEMA_PATH (default: {base_path}/schema when it exists)
            CONTENTFORGE_CACHE_ADAPTER, CONTENTFORGE_CACHE_TTL, CONTENTFORGE_REDIS_URL
            CONTENTFORGE_FILES_URL, CONTENTFORGE_THUMBNAIL_URL
            CONTENTFORGE_BCRYPT_ROUNDS
            CONTENTFORGE_PROVIDERS (JSON object)
        """
        schema_path = os.environ.get("CONTENTFORGE_SCHEMA_PATH")
        if schema_path:
            resolved_schema: Path | None = Path(schema_path)
        elif base_path is not None and (base_path / "schema").is_dir():
            resolved_schema = base_path / "schema"
        else:
            resolved_schema = None

        providers: dict[str, Any] = {}
        raw_providers = os.environ.get("CONTENTFORGE_PROVIDERS")
        if raw_providers:
            try:
                providers = json.loads(raw_providers)
            except json.JSONDecodeError as exc:
                raise ValueError(f"CONTENTFORGE_PROVIDERS is not valid JSON: {exc}") from exc
            if not isinstance(providers, dict):
                raise ValueError("CONTENTFORGE_PROVIDERS must be a JSON object")

        return cls(
            database=DatabaseConfig.from_env(base_path),
            schema_path=resolved_schema,
            cache_adapter=os.environ.get("CONTENTFORGE_CACHE_ADAPTER", "void").strip().lower(),
            cache_ttl=_int_env("CONTENTFORGE_CACHE_TTL", 300),
            redis_url=os.environ.get("CONTENTFORGE_REDIS_URL"),
            files_url=os.environ.get("CONTENTFORGE_FILES_URL", "/storage/uploads"),
            thumbnail_url=os.environ.get("CONTENTFORGE_THUMBNAIL_URL", "/thumbnail"),
            bcrypt_rounds=_int_env("CONTENTFORGE_BCRYPT_ROUNDS", 12),
            providers=providers,
        )
