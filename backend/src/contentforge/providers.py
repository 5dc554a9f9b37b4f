"""Registry of pluggable providers (SSO, embeds, ...).

Providers are enabled by explicit configuration and built from a fixed map
of factories supplied at startup. Nothing is discovered on the filesystem.

Example:
    available = {"github": GithubProvider}
    registry = build_registry({"github": {"client_id": "..."}}, available)
    registry.get("github").authenticate(...)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Protocol

from contentforge.errors import NotFoundError

logger = logging.getLogger(__name__)


class Provider(Protocol):
    name: str


ProviderFactory = Callable[[str, dict[str, Any]], Provider]


class ProviderRegistry:
    """Providers enabled for this process, by name."""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    def register(self, name: str, provider: Provider) -> None:
        if name in self._providers:
            raise ValueError(f"Provider '{name}' is already registered")
        self._providers[name] = provider

    def get(self, name: str) -> Provider:
        """Get an enabled provider.

        Raises:
            NotFoundError: If no provider is enabled under the name
        """
        provider = self._providers.get(name)
        if provider is None:
            raise NotFoundError(f"Provider '{name}' is not enabled")
        return provider

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)


def build_registry(
    config: Mapping[str, Any],
    available: Mapping[str, ProviderFactory],
) -> ProviderRegistry:
    """Build the registry from configuration.

    Entries that are not mappings or that set ``enabled: false`` are
    skipped.

    Raises:
        ValueError: If an enabled provider has no factory
    """
    registry = ProviderRegistry()
    for name, provider_config in config.items():
        if not isinstance(provider_config, Mapping):
            logger.warning("Ignoring provider '%s': configuration is not a mapping", name)
            continue
        if provider_config.get("enabled") is False:
            continue

        factory = available.get(name)
        if factory is None:
            raise ValueError(f"Provider '{name}' is configured but not available")
        registry.register(name, factory(name, dict(provider_config)))
        logger.info("Enabled provider '%s'", name)
    return registry
