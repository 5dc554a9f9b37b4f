"""Request-level services."""

from contentforge.services.entries import EntriesService

__all__ = ["EntriesService"]
