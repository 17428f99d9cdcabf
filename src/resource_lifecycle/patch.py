"""JSON Patch (RFC 6902) generation for resource updates.

Patches only ever touch top-level properties. Each operation targets a
distinct path, so consumers do not depend on the order operations are
emitted in.

Two rules keep updates safe:
- Immutable properties (read-only or create-only) never appear in a patch.
- A key absent from the desired state is only removed when the caller had
  explicitly configured it. Server-populated defaults the caller never asked
  to manage are left untouched.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .deep_diff import deep_equal

_MISSING = object()


class PatchOp(str, Enum):
    """Supported JSON Patch operations."""

    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"


@dataclass(frozen=True)
class PatchOperation:
    """A single JSON Patch operation on a top-level property."""

    op: PatchOp
    path: str
    value: Any = None

    @property
    def key(self) -> str:
        """Property name targeted by this operation."""
        return unescape_pointer(self.path[1:])

    def to_dict(self) -> dict[str, Any]:
        """Render as an RFC 6902 operation object."""
        if self.op == PatchOp.REMOVE:
            return {"op": self.op.value, "path": self.path}
        return {"op": self.op.value, "path": self.path, "value": self.value}


def escape_pointer(key: str) -> str:
    """Escape a property name for use as a JSON Pointer segment (RFC 6901)."""
    return key.replace("~", "~0").replace("/", "~1")


def unescape_pointer(segment: str) -> str:
    """Reverse escape_pointer."""
    return segment.replace("~1", "/").replace("~0", "~")


def generate_patch(
    observed: Mapping[str, Any] | None,
    desired: Mapping[str, Any] | None,
    immutable_keys: Iterable[str] = (),
    explicit_keys: Iterable[str] | None = None,
) -> list[PatchOperation]:
    """Generate the minimal patch transforming observed state into desired state.

    Args:
        observed: Current remote properties.
        desired: Target properties.
        immutable_keys: Properties that must never be patched.
        explicit_keys: Properties the caller has explicitly configured. Only
            these may be removed when they are absent from the desired state.

    Returns:
        Ordered list of operations. Empty when no update call is needed.
    """
    current = observed or {}
    target = desired or {}
    immutable = frozenset(immutable_keys)
    explicit = frozenset(explicit_keys or ())

    # dict.fromkeys keeps first-seen order while de-duplicating
    candidate_keys = dict.fromkeys([*target, *(explicit_keys or ())])

    operations: list[PatchOperation] = []
    for key in candidate_keys:
        if key in immutable:
            continue

        old_value = current.get(key, _MISSING)
        new_value = target.get(key, _MISSING)
        path = "/" + escape_pointer(key)

        if new_value is _MISSING:
            if old_value is not _MISSING and key in explicit:
                operations.append(PatchOperation(PatchOp.REMOVE, path))
        elif old_value is _MISSING:
            operations.append(PatchOperation(PatchOp.ADD, path, copy.deepcopy(new_value)))
        elif not deep_equal(old_value, new_value):
            operations.append(PatchOperation(PatchOp.REPLACE, path, copy.deepcopy(new_value)))

    return operations


def apply_patch(
    document: Mapping[str, Any] | None,
    operations: Iterable[PatchOperation],
) -> dict[str, Any]:
    """Apply top-level patch operations to a copy of a document.

    Raises:
        ValueError: If an operation targets a nested path.
    """
    result = copy.deepcopy(dict(document or {}))

    for operation in operations:
        if not operation.path.startswith("/") or "/" in operation.path[1:]:
            raise ValueError(f"Only top-level patch paths are supported: {operation.path}")

        key = operation.key
        match operation.op:
            case PatchOp.ADD | PatchOp.REPLACE:
                result[key] = copy.deepcopy(operation.value)
            case PatchOp.REMOVE:
                result.pop(key, None)

    return result


def patch_document(operations: Iterable[PatchOperation]) -> list[dict[str, Any]]:
    """Render a list of operations as a JSON Patch document."""
    return [operation.to_dict() for operation in operations]
