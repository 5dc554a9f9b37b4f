"""Persistence layer - table definitions and relational gateways."""

from contentforge.persistence.config import DatabaseConfig, create_engine_from_config
from contentforge.persistence.gateway import GatewayFactory, RelationalGateway
from contentforge.persistence.query import QueryOptions, normalize_filter
from contentforge.persistence.store import Store

__all__ = [
    "DatabaseConfig",
    "GatewayFactory",
    "QueryOptions",
    "RelationalGateway",
    "Store",
    "create_engine_from_config",
    "normalize_filter",
]
