"""Tests for structural comparison of resource states."""

from __future__ import annotations

import pytest

from resource_lifecycle.azure_provider import ARM_CREATE_ONLY_PROPERTIES, ARM_READ_ONLY_PROPERTIES
from resource_lifecycle.deep_diff import deep_equal, diff_keys


class TestDeepEqual:
    """Tests for deep_equal."""

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("x", "x"),
            (1, 1.0),
            (True, True),
            (None, None),
            ([1, 2, 3], [1, 2, 3]),
            ({"a": 1, "b": 2}, {"b": 2, "a": 1}),
            ({"a": [{"b": {"c": None}}]}, {"a": [{"b": {"c": None}}]}),
        ],
    )
    def test_equal_values(self, a: object, b: object) -> None:
        """Structurally identical values are equal."""
        assert deep_equal(a, b)
        assert deep_equal(b, a)

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("x", "y"),
            (1, 2),
            (None, {}),
            (None, 0),
            (None, ""),
            (True, 1),
            (False, 0),
            ("1", 1),
            ([1, 2], [2, 1]),
            ([1, 2], [1, 2, 3]),
            ({"a": 1}, {"a": 1, "b": 2}),
            ({"a": {"b": 1}}, {"a": {"b": 2}}),
            ([1], {"0": 1}),
        ],
    )
    def test_unequal_values(self, a: object, b: object) -> None:
        """Any structural difference makes values unequal."""
        assert not deep_equal(a, b)
        assert not deep_equal(b, a)

    def test_excluded_top_level_key(self) -> None:
        """Excluded keys are ignored whether they differ or are missing."""
        a = {"Name": "a", "Arn": "arn:1"}
        b = {"Name": "a", "Arn": "arn:2"}
        c = {"Name": "a"}

        assert deep_equal(a, b, {"Arn"})
        assert deep_equal(a, c, {"Arn"})
        assert not deep_equal(a, b)

    def test_exclusion_is_top_level_only(self) -> None:
        """A nested key sharing an excluded name is still compared."""
        a = {"Id": 1, "Config": {"Id": "x", "Size": 1}}
        b = {"Id": 2, "Config": {"Id": "y", "Size": 1}}

        assert not deep_equal(a, b, ["Id"])
        assert deep_equal(a, {"Id": 3, "Config": {"Id": "x", "Size": 1}}, ["Id"])

    def test_nested_change_under_arm_envelope_names(self) -> None:
        """Nested sku and identity changes count even though name and type are excluded."""
        excluded = {*ARM_READ_ONLY_PROPERTIES, *ARM_CREATE_ONLY_PROPERTIES}
        observed = {
            "name": "st1",
            "location": "westeurope",
            "sku": {"name": "Standard_LRS"},
            "identity": {"type": "SystemAssigned"},
        }
        actual = {
            "name": "st1",
            "location": "westeurope",
            "sku": {"name": "Premium_LRS"},
            "identity": {"type": "None"},
        }

        assert not deep_equal(actual, observed, excluded)
        assert diff_keys(actual, observed, excluded) == {"sku", "identity"}

    def test_exclusion_does_not_hide_other_differences(self) -> None:
        """Only the excluded keys are ignored."""
        a = {"Id": 1, "Size": 1}
        b = {"Id": 2, "Size": 2}

        assert not deep_equal(a, b, ["Id"])


class TestDiffKeys:
    """Tests for diff_keys."""

    def test_identical_states(self) -> None:
        """No keys differ between identical states."""
        state = {"Name": "a", "Size": 1, "Tags": [{"Key": "k"}]}
        assert diff_keys(state, dict(state)) == set()

    def test_changed_added_and_removed_keys(self) -> None:
        """Changed, added and removed top-level keys are all reported."""
        a = {"Name": "a", "Size": 1, "Old": True}
        b = {"Name": "a", "Size": 2, "New": True}

        assert diff_keys(a, b) == {"Size", "Old", "New"}

    def test_nested_change_reports_top_level_key(self) -> None:
        """A nested change is reported under its top-level key."""
        a = {"Config": {"Inner": {"Value": 1}}}
        b = {"Config": {"Inner": {"Value": 2}}}

        assert diff_keys(a, b) == {"Config"}

    def test_excluded_keys_never_reported(self) -> None:
        """Excluded keys are never part of the result."""
        a = {"Name": "a", "Arn": "1"}
        b = {"Name": "b", "Arn": "2"}

        assert diff_keys(a, b, {"Arn"}) == {"Name"}

    def test_missing_side_is_empty(self) -> None:
        """A None state is treated as an empty mapping."""
        assert diff_keys(None, {"Name": "a"}) == {"Name"}
        assert diff_keys({"Name": "a"}, None) == {"Name"}
        assert diff_keys(None, None) == set()

    def test_consistent_with_deep_equal(self) -> None:
        """diff_keys is empty exactly when the mappings are deep-equal."""
        pairs = [
            ({"a": 1}, {"a": 1}),
            ({"a": 1}, {"a": 1.0}),
            ({"a": [1]}, {"a": [1, 2]}),
            ({"a": {"b": None}}, {"a": {}}),
        ]
        for a, b in pairs:
            assert (diff_keys(a, b) == set()) == deep_equal(a, b)
