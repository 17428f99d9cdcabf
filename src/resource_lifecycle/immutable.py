"""Resolution of properties that can never appear in an update.

A property is immutable when the type schema declares it read-only
(server-assigned) or create-only (fixed at creation). Only the derived name
list is cached, never the full schema.

CACHE POLICY:
Entries never expire; a type's schema is treated as stable for the lifetime
of the backing store. A stale entry can only over- or under-restrict patch
generation. Call invalidate() to force a refresh. Concurrent first lookups
may both hit the registry; the last write simply stores the same list again.
"""

from __future__ import annotations

import logging

from .provider import ProviderError, SchemaRegistry, strip_property_marker
from .store import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "nonupdatable:"


def cache_key(type_name: str) -> str:
    """Cache key holding the immutable property names of a type."""
    return f"{CACHE_KEY_PREFIX}{type_name}"


class ImmutablePropertyResolver:
    """Resolves and caches immutable property names per resource type."""

    def __init__(self, registry: SchemaRegistry, cache: KeyValueStore | None = None) -> None:
        self._registry = registry
        self._cache: KeyValueStore = cache if cache is not None else InMemoryKeyValueStore()

    async def resolve(self, type_name: str) -> frozenset[str]:
        """Return the read-only and create-only property names of a type.

        A registry failure is not fatal: a warning is logged, an empty set is
        returned and nothing is cached, so the next call tries again.
        """
        key = cache_key(type_name)
        cached = self._cache.get(key)
        if cached is not None:
            return frozenset(cached)

        try:
            schema = await self._registry.describe_type(type_name)
        except (ProviderError, TimeoutError) as e:
            logger.warning(
                "Could not retrieve immutable properties, continuing without them",
                extra={"type_name": type_name, "error": str(e)},
            )
            return frozenset()

        names = sorted(
            {
                strip_property_marker(path)
                for path in [*schema.read_only_properties, *schema.create_only_properties]
            }
        )
        self._cache.set(key, names)

        logger.debug(
            "Cached immutable properties",
            extra={"type_name": type_name, "properties": names},
        )
        return frozenset(names)

    def invalidate(self, type_name: str) -> None:
        """Drop the cached entry of a type so the next resolve() refetches it."""
        self._cache.delete([cache_key(type_name)])
