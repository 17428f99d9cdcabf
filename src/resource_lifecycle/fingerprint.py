"""Stable fingerprints of desired-state configurations.

The fingerprint answers one question cheaply: did the caller's intent change
since the last time it was applied? It is not a security boundary.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any


def canonical_json(config: Mapping[str, Any]) -> str:
    """Serialize a configuration with keys sorted at every level."""
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def config_fingerprint(config: Mapping[str, Any]) -> str:
    """Compute the SHA-256 fingerprint of a configuration.

    Args:
        config: Desired-state mapping.

    Returns:
        Hex digest, identical for configs that differ only in key order.
    """
    return hashlib.sha256(canonical_json(config).encode("utf-8")).hexdigest()
