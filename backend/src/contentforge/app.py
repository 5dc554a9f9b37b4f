"""Application assembly.

Every component receives its collaborators explicitly; ``build_application``
wires them once per process.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from contentforge.auth.password import PasswordService
from contentforge.auth.permissions import AccessControl, PermissionRepository
from contentforge.auth.types import UserContext
from contentforge.cache.response import ResponseCache, create_pool
from contentforge.config import Settings
from contentforge.files import FileStorage
from contentforge.hooks.builtins import BuiltinHooks
from contentforge.hooks.pipeline import HookPipeline
from contentforge.persistence.config import create_engine_from_config
from contentforge.persistence.gateway import GatewayFactory
from contentforge.persistence.store import Store
from contentforge.providers import ProviderFactory, ProviderRegistry, build_registry
from contentforge.schema.loader import SchemaRegistry
from contentforge.services.entries import EntriesService

logger = logging.getLogger(__name__)


@dataclass
class Application:
    """The assembled pipeline for one process."""

    settings: Settings
    registry: SchemaRegistry
    store: Store
    hooks: HookPipeline
    gateways: GatewayFactory
    cache: ResponseCache
    passwords: PasswordService
    permissions: PermissionRepository
    providers: ProviderRegistry

    def access_control_for(self, user: UserContext | None) -> AccessControl:
        """Load the acting user's permissions for one request."""
        return self.permissions.access_control_for(user)

    def entries_for(self, user: UserContext | None) -> EntriesService:
        """Create the entries service for one request."""
        return EntriesService(self.registry, self.gateways, self.cache, self.access_control_for(user))

    def schema_changed(self) -> None:
        """Announce a schema change so the registry reloads."""
        self.hooks.publish_action("schema.changed")


def build_application(
    settings: Settings | None = None,
    files: FileStorage | None = None,
    available_providers: Mapping[str, ProviderFactory] | None = None,
    create_tables: bool = True,
) -> Application:
    """Assemble every component.

    Args:
        settings: Process settings (defaults to ``Settings.from_env()``)
        files: File storage used when file records carry data
        available_providers: Factories the provider configuration may enable
        create_tables: Create missing tables for every collection
    """
    settings = settings or Settings.from_env()

    registry = SchemaRegistry(settings.schema_path)
    registry.load_all()

    store = Store(create_engine_from_config(settings.database), registry)
    hooks = HookPipeline()
    gateways = GatewayFactory(store, registry, hooks)
    cache = ResponseCache(create_pool(settings.cache_adapter, settings.redis_url), settings.cache_ttl)
    passwords = PasswordService(rounds=settings.bcrypt_rounds)

    BuiltinHooks(
        registry,
        gateways,
        passwords,
        cache,
        files=files,
        files_url=settings.files_url,
        thumbnail_url=settings.thumbnail_url,
    ).install(hooks)

    if create_tables:
        store.create_all()

    providers = build_registry(settings.providers, available_providers or {})
    logger.info(
        "ContentForge ready: %d collections, cache=%s",
        len(registry.list_collections()),
        settings.cache_adapter,
    )

    return Application(
        settings=settings,
        registry=registry,
        store=store,
        hooks=hooks,
        gateways=gateways,
        cache=cache,
        passwords=passwords,
        permissions=PermissionRepository(gateways),
        providers=providers,
    )
