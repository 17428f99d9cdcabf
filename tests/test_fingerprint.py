"""Tests for desired-config fingerprints."""

from __future__ import annotations

from resource_lifecycle.fingerprint import canonical_json, config_fingerprint


class TestConfigFingerprint:
    """Tests for config_fingerprint."""

    def test_key_order_does_not_matter(self) -> None:
        """Configs that differ only in key order share a fingerprint."""
        c1 = {"Name": "a", "Size": 1, "Tags": {"env": "dev", "team": "x"}}
        c2 = {"Tags": {"team": "x", "env": "dev"}, "Size": 1, "Name": "a"}

        assert config_fingerprint(c1) == config_fingerprint(c2)

    def test_value_change_changes_fingerprint(self) -> None:
        """Changing any single value changes the fingerprint."""
        base = {"Name": "a", "Size": 1, "Nested": {"List": [1, 2, 3]}}
        variants = [
            {**base, "Name": "b"},
            {**base, "Size": 2},
            {**base, "Nested": {"List": [1, 2, 4]}},
            {**base, "Nested": {"List": [3, 2, 1]}},
            {**base, "Extra": None},
        ]

        fingerprints = {config_fingerprint(base)} | {config_fingerprint(v) for v in variants}
        assert len(fingerprints) == len(variants) + 1

    def test_is_sha256_hex(self) -> None:
        """Fingerprints are 64 lowercase hex characters."""
        fingerprint = config_fingerprint({"Name": "a"})

        assert len(fingerprint) == 64
        assert all(c in "0123456789abcdef" for c in fingerprint)

    def test_deterministic(self) -> None:
        """The same config always produces the same fingerprint."""
        config = {"Name": "a", "Size": 1}
        assert config_fingerprint(config) == config_fingerprint(dict(config))

    def test_empty_config(self) -> None:
        """An empty config has a stable fingerprint of its own."""
        assert config_fingerprint({}) == config_fingerprint({})
        assert config_fingerprint({}) != config_fingerprint({"Name": ""})


class TestCanonicalJson:
    """Tests for canonical_json."""

    def test_sorted_compact(self) -> None:
        """Keys are sorted at every level with compact separators."""
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'

    def test_non_ascii_preserved(self) -> None:
        """Non-ASCII characters are kept as-is."""
        assert canonical_json({"name": "zürich"}) == '{"name":"zürich"}'
