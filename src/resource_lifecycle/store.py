"""Key-value persistence for lifecycle signals.

Each managed resource slot gets its own key scope. An invocation reads a
consistent snapshot through InstanceRepository.load(), works on local
copies, and writes the result back with a single save(). The scheduler is
responsible for never running two invocations for the same slot at once.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

from .models import ResourceInstance

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing store cannot be read or written."""

    pass


class FixedFieldError(Exception):
    """Raised when a field that is fixed after creation is changed."""

    pass


class KeyValueStore(Protocol):
    """Minimal key-value store contract."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def set_many(self, items: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        """Set every item and delete the removed keys as one write."""
        ...

    def delete(self, keys: Iterable[str]) -> None:
        ...


class InMemoryKeyValueStore:
    """Process-local store. Values are deep-copied in and out."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def set_many(self, items: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        for key, value in items.items():
            self._data[key] = copy.deepcopy(value)
        self.delete(removed)

    def delete(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileKeyValueStore:
    """JSON file backed store.

    Every write replaces the whole file atomically (temp file + rename), so a
    crash mid-write never leaves a half-written snapshot behind.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._data: dict[str, Any] = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to read state file {self._path}: {e}") from e
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StoreError(f"Invalid JSON in state file {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"State file must contain a JSON object: {self._path}")
        return data

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreError(f"Failed to write state file {self._path}: {e}") from e

    def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self._flush()

    def set_many(self, items: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        for key, value in items.items():
            self._data[key] = copy.deepcopy(value)
        for key in removed:
            self._data.pop(key, None)
        self._flush()

    def delete(self, keys: Iterable[str]) -> None:
        removed = False
        for key in keys:
            if key in self._data:
                del self._data[key]
                removed = True
        if removed:
            self._flush()

    def keys(self) -> list[str]:
        return list(self._data)


class ScopedKeyValueStore:
    """View of a store restricted to keys under one scope prefix."""

    def __init__(self, store: KeyValueStore, scope: str) -> None:
        self._store = store
        self._prefix = f"{scope}:"

    def _key(self, key: str) -> str:
        return self._prefix + key

    def get(self, key: str) -> Any | None:
        return self._store.get(self._key(key))

    def set(self, key: str, value: Any) -> None:
        self._store.set(self._key(key), value)

    def set_many(self, items: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        self._store.set_many(
            {self._key(k): v for k, v in items.items()},
            [self._key(k) for k in removed],
        )

    def delete(self, keys: Iterable[str]) -> None:
        self._store.delete([self._key(k) for k in keys])


# Signals persisted per resource slot
SIGNAL_KEYS: tuple[str, ...] = (
    "typeName",
    "region",
    "configFingerprint",
    "operationToken",
    "resourceIdentifier",
    "observedState",
    "drifted",
    "driftedFields",
    "managedKeys",
    "status",
    "statusDescription",
)


class InstanceRepository:
    """Loads and saves ResourceInstance snapshots, one scope per slot."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def _scoped(self, slot: str) -> ScopedKeyValueStore:
        return ScopedKeyValueStore(self._store, f"instance:{slot}")

    def signals(self, slot: str) -> dict[str, Any]:
        """Return the raw persisted signals of a slot (absent keys omitted)."""
        scoped = self._scoped(slot)
        signals = {}
        for key in SIGNAL_KEYS:
            value = scoped.get(key)
            if value is not None:
                signals[key] = value
        return signals

    def exists(self, slot: str) -> bool:
        return bool(self.signals(slot))

    def load(
        self,
        slot: str,
        *,
        type_name: str,
        region: str,
        desired_config: dict[str, Any],
        reconcile_on_drift: bool = True,
    ) -> ResourceInstance:
        """Load the snapshot of a slot combined with current caller intent.

        Raises:
            FixedFieldError: If the type or region changed after the remote
                resource was created or an operation was started.
        """
        signals = self.signals(slot)

        if signals.get("resourceIdentifier") or signals.get("operationToken"):
            for key, requested in (("typeName", type_name), ("region", region)):
                persisted = signals.get(key)
                if persisted and persisted != requested:
                    raise FixedFieldError(
                        f"{key} of '{slot}' cannot change after creation "
                        f"(was {persisted!r}, requested {requested!r})"
                    )

        return ResourceInstance.from_signals(
            signals,
            type_name=type_name,
            region=region,
            desired_config=desired_config,
            reconcile_on_drift=reconcile_on_drift,
        )

    def save(self, slot: str, instance: ResourceInstance) -> None:
        """Write back every persisted signal; cleared signals are deleted."""
        signals = instance.to_signals()
        present = {k: v for k, v in signals.items() if v is not None}
        cleared = [k for k, v in signals.items() if v is None]

        self._scoped(slot).set_many(present, cleared)

        logger.debug(
            "Saved instance snapshot",
            extra={"slot": slot, "status": instance.status.value, "cleared": cleared},
        )

    def discard(self, slot: str) -> None:
        """Forget a slot entirely (after its resource has been drained)."""
        self._scoped(slot).delete(SIGNAL_KEYS)
        logger.info("Discarded instance record", extra={"slot": slot})
