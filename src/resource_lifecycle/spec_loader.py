"""Resource spec and schema override loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SCHEMA_OVERRIDES_FILE_SIZE_BYTES, MAX_SPEC_FILE_SIZE_BYTES
from .models import ResourceSpec

logger = logging.getLogger(__name__)

SPEC_FILE_SUFFIXES = (".yaml", ".yml")


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def _read_yaml_mapping(path: Path, max_size: int, what: str) -> dict[str, Any]:
    """Read a size-limited YAML file that must contain a mapping."""
    if not path.exists():
        raise SpecLoadError(f"{what} not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {what.lower()} {path}: {e}") from e

    if file_size > max_size:
        raise SpecLoadError(f"{what} exceeds maximum size of {max_size} bytes: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {what.lower()} {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"{what} must contain a YAML mapping: {path}")

    return raw_data


def _format_validation_error(path: Path, error: ValidationError) -> str:
    errors = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        errors.append(f"  - {loc}: {item['msg']}")
    return f"Validation failed for {path}:\n" + "\n".join(errors)


def load_resource_spec(path: Path) -> ResourceSpec:
    """Load and validate one resource spec from YAML.

    Accepts a flat mapping or a Kubernetes-style wrapper with
    ``apiVersion``/``kind``/``metadata``/``spec``. The slot name defaults to
    ``metadata.name`` and then to the file stem.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    raw_data = _read_yaml_mapping(path, MAX_SPEC_FILE_SIZE_BYTES, "Spec file")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec")
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
        spec_data = dict(spec_data)
        metadata = raw_data.get("metadata") or {}
        if "name" not in spec_data and isinstance(metadata, dict) and metadata.get("name"):
            spec_data["name"] = metadata["name"]
    else:
        spec_data = dict(raw_data)

    spec_data.setdefault("name", path.stem)

    try:
        spec = ResourceSpec.model_validate(spec_data)
    except ValidationError as e:
        raise SpecLoadError(_format_validation_error(path, e)) from e

    logger.debug("Loaded resource spec '%s' from %s", spec.name, path)
    return spec


def load_resource_specs(specs_dir: Path) -> dict[str, ResourceSpec]:
    """Load every resource spec in a directory, keyed by slot name.

    Raises:
        SpecLoadError: If the directory is missing, a file is invalid, or two
            files declare the same name.
    """
    if not specs_dir.is_dir():
        raise SpecLoadError(f"Specs directory not found: {specs_dir}")

    specs: dict[str, ResourceSpec] = {}
    origins: dict[str, Path] = {}

    for path in sorted(specs_dir.iterdir()):
        if not path.is_file() or path.suffix not in SPEC_FILE_SUFFIXES:
            continue
        spec = load_resource_spec(path)
        if spec.name in specs:
            raise SpecLoadError(
                f"Duplicate resource name '{spec.name}' in {path} (already defined in {origins[spec.name]})"
            )
        specs[spec.name] = spec
        origins[spec.name] = path

    logger.info("Loaded %d resource specs from %s", len(specs), specs_dir)
    return specs


def load_schema_overrides(path: Path) -> dict[str, dict[str, list[str]]]:
    """Load per-type immutable property overrides.

    Expected layout::

        Microsoft.Storage/storageAccounts:
          createOnlyProperties:
            - /properties/kind

    Raises:
        SpecLoadError: If the file is invalid.
    """
    raw_data = _read_yaml_mapping(path, MAX_SCHEMA_OVERRIDES_FILE_SIZE_BYTES, "Schema overrides file")

    overrides: dict[str, dict[str, list[str]]] = {}
    for type_name, entry in raw_data.items():
        if not isinstance(entry, dict):
            raise SpecLoadError(f"Override for '{type_name}' must be a mapping: {path}")
        parsed: dict[str, list[str]] = {}
        for key in ("readOnlyProperties", "createOnlyProperties"):
            values = entry.get(key) or []
            if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise SpecLoadError(f"{type_name}.{key} must be a list of strings: {path}")
            parsed[key] = values
        unknown = set(entry) - {"readOnlyProperties", "createOnlyProperties"}
        if unknown:
            raise SpecLoadError(f"Unknown keys for '{type_name}': {sorted(unknown)}: {path}")
        overrides[str(type_name)] = parsed

    logger.info("Loaded schema overrides for %d types from %s", len(overrides), path)
    return overrides
