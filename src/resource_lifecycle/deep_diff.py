"""Structural comparison of JSON-like resource states.

Resource properties come back from the remote API as plain JSON values
(dicts, lists, strings, numbers, booleans, None). Two states are equal when
they are structurally identical once the excluded top-level keys are
dropped. Excluded keys name resource properties, so a nested value that
happens to use the same name is still compared. Key order never matters;
list order always does.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any


def _is_number(value: Any) -> bool:
    # bool is an int subclass but a distinct JSON type
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, str | bytes)


def deep_equal(a: Any, b: Any, exclude_keys: Iterable[str] = ()) -> bool:
    """Check whether two JSON-like values are structurally equal.

    Args:
        a: First value.
        b: Second value.
        exclude_keys: Top-level mapping keys ignored on both sides.

    Returns:
        True if the values are equal once excluded keys are dropped.
    """
    excluded = frozenset(exclude_keys)
    if excluded and isinstance(a, Mapping) and isinstance(b, Mapping):
        a = {k: v for k, v in a.items() if k not in excluded}
        b = {k: v for k, v in b.items() if k not in excluded}
    return _deep_equal(a, b)


def _deep_equal(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None

    if _is_number(a) and _is_number(b):
        return a == b

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if set(a) != set(b):
            return False
        return all(_deep_equal(a[k], b[k]) for k in a)

    if _is_sequence(a) and _is_sequence(b):
        if len(a) != len(b):
            return False
        return all(_deep_equal(x, y) for x, y in zip(a, b, strict=True))

    if type(a) is not type(b):
        return False

    return bool(a == b)


def diff_keys(
    a: Mapping[str, Any] | None,
    b: Mapping[str, Any] | None,
    exclude_keys: Iterable[str] = (),
) -> set[str]:
    """Return the top-level keys whose values differ between two states.

    A key present on only one side counts as differing. Missing states are
    treated as empty mappings.
    """
    excluded = frozenset(exclude_keys)
    left = a or {}
    right = b or {}

    changed: set[str] = set()
    for key in set(left) | set(right):
        if key in excluded:
            continue
        if key not in left or key not in right:
            changed.add(key)
        elif not _deep_equal(left[key], right[key]):
            changed.add(key)
    return changed
