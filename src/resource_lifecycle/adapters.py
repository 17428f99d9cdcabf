"""Resource adapters: how a caller's config maps onto the shared engine.

There is one engine for every resource type. What differs per type is
captured by a small capability record instead of a subclass.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .immutable import ImmutablePropertyResolver

# Config keys that route a resource rather than describe it
ROUTING_KEYS = frozenset({"region", "reconcileOnDrift"})


@dataclass(frozen=True)
class ResourceAdapter:
    """Capabilities the engine needs for one family of resources.

    Attributes:
        type_name_of: Extracts the remote type name from a caller config.
        desired_state_of: Extracts the desired remote properties.
        resolve_immutable_keys: Returns the property names that must never
            be patched for a type.
    """

    type_name_of: Callable[[Mapping[str, Any]], str]
    desired_state_of: Callable[[Mapping[str, Any]], dict[str, Any]]
    resolve_immutable_keys: Callable[[str], Awaitable[frozenset[str]]]


def generic_adapter(resolver: ImmutablePropertyResolver) -> ResourceAdapter:
    """Adapter for configs that carry their own type name.

    Expects ``{"typeName": ..., "state": {...}}``.
    """

    def type_name_of(config: Mapping[str, Any]) -> str:
        return str(config["typeName"])

    def desired_state_of(config: Mapping[str, Any]) -> dict[str, Any]:
        return copy.deepcopy(dict(config.get("state") or {}))

    return ResourceAdapter(
        type_name_of=type_name_of,
        desired_state_of=desired_state_of,
        resolve_immutable_keys=resolver.resolve,
    )


def typed_adapter(type_name: str, resolver: ImmutablePropertyResolver) -> ResourceAdapter:
    """Adapter bound to a single resource type.

    The config itself holds the resource properties; routing keys such as
    ``region`` are not sent to the remote API.
    """

    def type_name_of(config: Mapping[str, Any]) -> str:
        return type_name

    def desired_state_of(config: Mapping[str, Any]) -> dict[str, Any]:
        return {k: copy.deepcopy(v) for k, v in config.items() if k not in ROUTING_KEYS}

    return ResourceAdapter(
        type_name_of=type_name_of,
        desired_state_of=desired_state_of,
        resolve_immutable_keys=resolver.resolve,
    )
