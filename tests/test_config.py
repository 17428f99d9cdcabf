"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from resource_lifecycle.config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RESYNC_INTERVAL_SECONDS,
    Config,
    ConfigurationError,
)

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


def make_config(specs_dir: Path, **overrides) -> Config:
    values = {
        "subscription_id": SUBSCRIPTION_ID,
        "resource_group_name": "rg-lifecycle",
        "location": "westeurope",
        "specs_dir": specs_dir,
    }
    values.update(overrides)
    return Config(**values)


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self, tmp_path: Path) -> None:
        """Test creating a valid configuration."""
        config = make_config(tmp_path)

        assert config.resource_group_name == "rg-lifecycle"
        assert config.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS
        assert config.resync_interval_seconds == DEFAULT_RESYNC_INTERVAL_SECONDS
        assert config.reconcile_on_drift is True
        assert config.schema_overrides_file is None

    def test_invalid_subscription_id(self, tmp_path: Path) -> None:
        """Test that a non-GUID subscription raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path, subscription_id="not-a-guid")

        assert "AZURE_SUBSCRIPTION_ID" in str(exc_info.value)

    def test_missing_resource_group(self, tmp_path: Path) -> None:
        """Test that a missing resource group raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path, resource_group_name="")

        assert "RESOURCE_GROUP_NAME" in str(exc_info.value)

    def test_invalid_location(self, tmp_path: Path) -> None:
        """Test that a malformed region raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path, location="west europe!")

        assert "AZURE_LOCATION" in str(exc_info.value)

    def test_invalid_poll_interval(self, tmp_path: Path) -> None:
        """Test that out-of-range poll interval raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path, poll_interval_seconds=0)

        assert "POLL_INTERVAL" in str(exc_info.value)

    def test_invalid_resync_interval(self, tmp_path: Path) -> None:
        """Test that out-of-range resync interval raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path, resync_interval_seconds=10)  # Too low

        assert "RESYNC_INTERVAL" in str(exc_info.value)

    def test_missing_specs_dir(self, tmp_path: Path) -> None:
        """Test that a missing specs directory raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path / "missing")

        assert "Specs directory" in str(exc_info.value)

    def test_missing_schema_overrides_file(self, tmp_path: Path) -> None:
        """Test that a configured but missing overrides file raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path, schema_overrides_file=tmp_path / "overrides.yaml")

        assert "Schema overrides file" in str(exc_info.value)

    def test_all_errors_reported_together(self, tmp_path: Path) -> None:
        """Test that every validation failure is listed at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(tmp_path, subscription_id="", location="", poll_interval_seconds=0)

        message = str(exc_info.value)
        assert "AZURE_SUBSCRIPTION_ID" in message
        assert "AZURE_LOCATION" in message
        assert "POLL_INTERVAL" in message

    def test_from_env(self, tmp_path: Path) -> None:
        """Test loading configuration from environment."""
        overrides = tmp_path / "overrides.yaml"
        overrides.write_text("{}")

        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "RESOURCE_GROUP_NAME": "rg-lifecycle",
            "AZURE_LOCATION": "northeurope",
            "SPECS_DIR": str(tmp_path),
            "STATE_FILE": str(tmp_path / "state.json"),
            "SCHEMA_OVERRIDES_FILE": str(overrides),
            "POLL_INTERVAL": "15",
            "RECONCILE_ON_DRIFT": "false",
            "ENABLE_AUDIT_LOGGING": "0",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.location == "northeurope"
        assert config.state_file == tmp_path / "state.json"
        assert config.schema_overrides_file == overrides
        assert config.poll_interval_seconds == 15
        assert config.resync_interval_seconds == DEFAULT_RESYNC_INTERVAL_SECONDS
        assert config.reconcile_on_drift is False
        assert config.enable_audit_logging is False
        assert config.managed_identity_client_id is None

    def test_from_env_non_integer(self, tmp_path: Path) -> None:
        """Test that a non-numeric interval raises error."""
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "RESOURCE_GROUP_NAME": "rg-lifecycle",
            "AZURE_LOCATION": "westeurope",
            "SPECS_DIR": str(tmp_path),
            "POLL_INTERVAL": "soon",
        }

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError, match="POLL_INTERVAL must be an integer"):
                Config.from_env()
