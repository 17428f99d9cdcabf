"""Tests for the immutable-property resolver."""

from __future__ import annotations

import logging

import pytest
from azure_mock import MockCloud

from resource_lifecycle.immutable import ImmutablePropertyResolver, cache_key
from resource_lifecycle.provider import ProviderError, TypeSchema
from resource_lifecycle.store import InMemoryKeyValueStore

BUCKET = "Microsoft.Storage/storageAccounts"


@pytest.fixture
def cloud() -> MockCloud:
    return MockCloud(
        schemas={
            BUCKET: TypeSchema(
                type_name=BUCKET,
                read_only_properties=["/properties/Arn", "/properties/DomainName"],
                create_only_properties=["/properties/BucketName", "/properties/Arn"],
            )
        }
    )


class TestImmutablePropertyResolver:
    """Tests for ImmutablePropertyResolver."""

    @pytest.mark.asyncio
    async def test_union_with_marker_stripped(self, cloud: MockCloud) -> None:
        """Read-only and create-only paths are unioned without the marker."""
        resolver = ImmutablePropertyResolver(cloud)

        keys = await resolver.resolve(BUCKET)

        assert keys == frozenset({"Arn", "DomainName", "BucketName"})

    @pytest.mark.asyncio
    async def test_second_call_uses_cache(self, cloud: MockCloud) -> None:
        """Only the first call per type reaches the registry."""
        resolver = ImmutablePropertyResolver(cloud)

        first = await resolver.resolve(BUCKET)
        second = await resolver.resolve(BUCKET)

        assert first == second
        assert cloud.describe_calls == 1

    @pytest.mark.asyncio
    async def test_only_derived_list_cached(self, cloud: MockCloud) -> None:
        """The cache holds the sorted name list under the per-type key."""
        cache = InMemoryKeyValueStore()
        resolver = ImmutablePropertyResolver(cloud, cache)

        await resolver.resolve(BUCKET)

        assert cache.keys() == [cache_key(BUCKET)]
        assert cache.get(f"nonupdatable:{BUCKET}") == ["Arn", "BucketName", "DomainName"]

    @pytest.mark.asyncio
    async def test_cache_is_injectable(self, cloud: MockCloud) -> None:
        """A pre-populated backing store is used without any registry call."""
        cache = InMemoryKeyValueStore({cache_key(BUCKET): ["Custom"]})
        resolver = ImmutablePropertyResolver(cloud, cache)

        assert await resolver.resolve(BUCKET) == frozenset({"Custom"})
        assert cloud.describe_calls == 0

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, cloud: MockCloud) -> None:
        """Invalidating a type makes the next call refetch its schema."""
        resolver = ImmutablePropertyResolver(cloud)
        await resolver.resolve(BUCKET)

        resolver.invalidate(BUCKET)
        await resolver.resolve(BUCKET)

        assert cloud.describe_calls == 2

    @pytest.mark.asyncio
    async def test_types_are_cached_independently(self, cloud: MockCloud) -> None:
        """Each type gets its own cache entry."""
        resolver = ImmutablePropertyResolver(cloud)

        assert await resolver.resolve("Microsoft.Network/virtualNetworks") == frozenset()
        assert await resolver.resolve(BUCKET) != frozenset()
        assert cloud.describe_calls == 2

    @pytest.mark.asyncio
    async def test_registry_failure_degrades_to_empty_set(
        self, cloud: MockCloud, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failing registry yields an empty set, a warning and no cache entry."""
        cache = InMemoryKeyValueStore()
        cloud.schema_error = ProviderError("registry unavailable")
        resolver = ImmutablePropertyResolver(cloud, cache)

        with caplog.at_level(logging.WARNING, logger="resource_lifecycle.immutable"):
            keys = await resolver.resolve(BUCKET)

        assert keys == frozenset()
        assert cache.keys() == []
        assert any("immutable properties" in r.getMessage() for r in caplog.records)

        # Recovers once the registry is back
        cloud.schema_error = None
        assert "Arn" in await resolver.resolve(BUCKET)
