"""Contracts for the remote systems the engines talk to.

The engines never import a cloud SDK directly. They drive a ResourceApi
(create/update/delete/get/poll) and read type metadata from a
SchemaRegistry. Azure implementations live in azure_provider.py.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import ProgressEvent
from .patch import PatchOperation

# Marker prefixed to property paths in type schemas
PROPERTY_PATH_MARKER = "/properties/"


class ProviderError(Exception):
    """Raised when a remote API call fails outright.

    Distinct from a FAILED ProgressEvent: the call itself did not complete.
    """

    pass


class MalformedStateError(ProviderError):
    """Raised when the remote API returns properties that cannot be parsed."""

    pass


@dataclass(frozen=True)
class TypeSchema:
    """Property mutability metadata for a resource type.

    Paths carry the PROPERTY_PATH_MARKER prefix, e.g. "/properties/name".
    """

    type_name: str
    read_only_properties: list[str] = field(default_factory=list)
    create_only_properties: list[str] = field(default_factory=list)


class ResourceApi(Protocol):
    """Asynchronous, poll-based remote resource API."""

    async def create(self, type_name: str, state: dict[str, Any]) -> ProgressEvent:
        ...

    async def update(
        self, type_name: str, identifier: str, patch: list[PatchOperation]
    ) -> ProgressEvent:
        ...

    async def delete(self, type_name: str, identifier: str) -> ProgressEvent:
        ...

    async def get(self, type_name: str, identifier: str) -> dict[str, Any]:
        ...

    async def poll_operation(self, token: str) -> ProgressEvent:
        ...


class SchemaRegistry(Protocol):
    """Source of resource type schemas."""

    async def describe_type(self, type_name: str) -> TypeSchema:
        ...


# Resource APIs are scoped to a region, like the SDK clients behind them
ResourceApiFactory = Callable[[str], ResourceApi]


def strip_property_marker(path: str) -> str:
    """Turn "/properties/Name" into "Name"."""
    if path.startswith(PROPERTY_PATH_MARKER):
        return path[len(PROPERTY_PATH_MARKER):]
    return path
