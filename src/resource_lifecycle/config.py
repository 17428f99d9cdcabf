"""Configuration management with validation.

Every setting is validated when the configuration is constructed so that a
misconfigured controller fails at start-up rather than halfway through a
reconciliation step.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_POLL_INTERVAL_SECONDS = 10
MIN_POLL_INTERVAL_SECONDS = 1
MAX_POLL_INTERVAL_SECONDS = 300

DEFAULT_RESYNC_INTERVAL_SECONDS = 300
MIN_RESYNC_INTERVAL_SECONDS = 30
MAX_RESYNC_INTERVAL_SECONDS = 3600

DEFAULT_SPECS_DIR = "/specs"
DEFAULT_STATE_FILE = "/var/lib/resource-lifecycle/state.json"

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file
MAX_SCHEMA_OVERRIDES_FILE_SIZE_BYTES = 1024 * 1024
MAX_RESOURCE_GROUP_NAME_LENGTH = 90

# Input validation patterns
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_LOCATION_PATTERN = r"^[a-z]{2,}[a-z0-9]*$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w._()]+$"


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    subscription_id: str
    resource_group_name: str
    location: str

    # Paths
    specs_dir: Path = field(default_factory=lambda: Path(DEFAULT_SPECS_DIR))
    state_file: Path = field(default_factory=lambda: Path(DEFAULT_STATE_FILE))
    schema_overrides_file: Path | None = None

    # Timing
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS

    # Behavior
    reconcile_on_drift: bool = True
    managed_identity_client_id: str | None = None
    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not self.resource_group_name:
            errors.append("RESOURCE_GROUP_NAME is required")
        elif len(self.resource_group_name) > MAX_RESOURCE_GROUP_NAME_LENGTH:
            errors.append(
                f"RESOURCE_GROUP_NAME exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}"
            )
        elif not re.match(VALID_RESOURCE_GROUP_PATTERN, self.resource_group_name):
            errors.append(f"RESOURCE_GROUP_NAME contains invalid characters: {self.resource_group_name}")

        if not self.location:
            errors.append("AZURE_LOCATION is required")
        elif not re.match(VALID_LOCATION_PATTERN, self.location.lower()):
            errors.append(f"AZURE_LOCATION must be a valid Azure region: {self.location}")

        if not (
            MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS
        ):
            errors.append(
                f"POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if not (
            MIN_RESYNC_INTERVAL_SECONDS
            <= self.resync_interval_seconds
            <= MAX_RESYNC_INTERVAL_SECONDS
        ):
            errors.append(
                f"RESYNC_INTERVAL must be between {MIN_RESYNC_INTERVAL_SECONDS} "
                f"and {MAX_RESYNC_INTERVAL_SECONDS} seconds"
            )

        if not self.specs_dir.exists():
            errors.append(f"Specs directory does not exist: {self.specs_dir}")

        if self.schema_overrides_file is not None and not self.schema_overrides_file.exists():
            errors.append(f"Schema overrides file does not exist: {self.schema_overrides_file}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Subscription that owns the managed resources
            RESOURCE_GROUP_NAME: Resource group the resources are created in
            AZURE_LOCATION: Default region when a spec does not name one
            SPECS_DIR: Path to YAML resource specs (default: /specs)
            STATE_FILE: JSON file holding persisted lifecycle signals
            SCHEMA_OVERRIDES_FILE: Optional YAML with per-type immutable properties
            POLL_INTERVAL: Seconds between polls of an in-flight operation (default: 10)
            RESYNC_INTERVAL: Seconds between drift checks of a ready resource (default: 300)
            RECONCILE_ON_DRIFT: If "false", drift is reported but not corrected
            MANAGED_IDENTITY_CLIENT_ID: Client ID of a user-assigned identity
            ENABLE_AUDIT_LOGGING: Emit one provenance record per step (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        overrides = os.environ.get("SCHEMA_OVERRIDES_FILE")

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            resource_group_name=os.environ.get("RESOURCE_GROUP_NAME", ""),
            location=os.environ.get("AZURE_LOCATION", ""),
            specs_dir=Path(os.environ.get("SPECS_DIR", DEFAULT_SPECS_DIR)),
            state_file=Path(os.environ.get("STATE_FILE", DEFAULT_STATE_FILE)),
            schema_overrides_file=Path(overrides) if overrides else None,
            poll_interval_seconds=get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            resync_interval_seconds=get_int("RESYNC_INTERVAL", DEFAULT_RESYNC_INTERVAL_SECONDS),
            reconcile_on_drift=get_bool("RECONCILE_ON_DRIFT", True),
            managed_identity_client_id=os.environ.get("MANAGED_IDENTITY_CLIENT_ID") or None,
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
