"""Database configuration and engine factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Supports sqlite:/// and postgresql:// URL schemes.
    """

    url: str
    echo: bool = False

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. DATABASE_URL env var (standard)
        2. CONTENTFORGE_DB_PATH env var (converted to a sqlite:/// URL)
        3. Default: sqlite:///{base_path}/data/contentforge.db
        """
        echo = os.environ.get("CONTENTFORGE_DB_ECHO", "").lower() in ("1", "true", "yes")

        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url, echo=echo)

        db_path = os.environ.get("CONTENTFORGE_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}", echo=echo)

        if base_path:
            return cls(url=f"sqlite:///{base_path / 'data' / 'contentforge.db'}", echo=echo)

        return cls(url="sqlite:///contentforge.db", echo=echo)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and self.url.rstrip("/") in ("sqlite:", "sqlite:///:memory:", "sqlite://")

    @property
    def sqlalchemy_url(self) -> str:
        """URL suitable for SQLAlchemy engine creation.

        Ensures postgresql:// URLs use the psycopg (v3) driver since
        the project depends on psycopg[binary], not psycopg2.
        """
        if self.url.startswith("postgresql://"):
            return self.url.replace("postgresql://", "postgresql+psycopg://", 1)
        return self.url


def create_engine_from_config(config: DatabaseConfig) -> Engine:
    """Create the process-wide SQLAlchemy engine.

    In-memory SQLite databases share one connection (StaticPool) so every
    checkout sees the same tables.

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_memory:
        return create_engine(
            "sqlite://",
            echo=config.echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if config.is_sqlite:
        db_file = config.url.split(":///", 1)[-1]
        if db_file and db_file != config.url:
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(
            config.sqlalchemy_url,
            echo=config.echo,
            connect_args={"check_same_thread": False},
        )

    if config.is_postgresql:
        return create_engine(config.sqlalchemy_url, echo=config.echo, pool_pre_ping=True)

    raise ValueError(f"Unsupported database URL scheme: {config.url}")
