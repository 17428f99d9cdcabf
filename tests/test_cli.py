"""Tests for the lifecycle CLI."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from azure_mock import MockAzureContext
from click.testing import CliRunner

from resource_lifecycle.cli import cli
from resource_lifecycle.fingerprint import config_fingerprint

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"
STORAGE = "Microsoft.Storage/storageAccounts"
ACCOUNT_ID = (
    f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/rg-lifecycle"
    f"/providers/{STORAGE}/stlifecycle001"
)

SPEC = f"""
name: storage
typeName: {STORAGE}
state:
  name: stlifecycle001
  kind: StorageV2
  sku:
    name: Standard_LRS
"""


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    """The CLI installs a handler on the root logger; put things back."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    specs_dir = tmp_path / "specs"
    specs_dir.mkdir()
    (specs_dir / "storage.yaml").write_text(SPEC)
    return tmp_path


@pytest.fixture
def env(workspace: Path) -> dict[str, str | None]:
    return {
        "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
        "RESOURCE_GROUP_NAME": "rg-lifecycle",
        "AZURE_LOCATION": "westeurope",
        "SPECS_DIR": str(workspace / "specs"),
        "STATE_FILE": str(workspace / "state.json"),
        "POLL_INTERVAL": "1",
        "AZURE_CLIENT_SECRET": None,
    }


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestShowAndFingerprint:
    """Tests for the read-only commands."""

    def test_show_without_state(self, runner: CliRunner, env: dict) -> None:
        result = runner.invoke(cli, ["show", "storage"], env=env)

        assert result.exit_code == 1
        assert "No persisted state for 'storage'" in result.output

    def test_show_prints_signals(self, runner: CliRunner, env: dict, workspace: Path) -> None:
        (workspace / "state.json").write_text(
            json.dumps(
                {
                    "instance:storage:status": "ready",
                    "instance:storage:resourceIdentifier": ACCOUNT_ID,
                }
            )
        )

        result = runner.invoke(cli, ["show", "storage"], env=env)

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"status": "ready", "resourceIdentifier": ACCOUNT_ID}

    def test_fingerprint_before_first_sync(self, runner: CliRunner, env: dict) -> None:
        result = runner.invoke(cli, ["fingerprint", "storage"], env=env)

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["applied"] is None
        assert data["changed"] is True
        assert data["desired"] == config_fingerprint(
            {"name": "stlifecycle001", "kind": "StorageV2", "sku": {"name": "Standard_LRS"}}
        )

    def test_unknown_spec(self, runner: CliRunner, env: dict) -> None:
        result = runner.invoke(cli, ["fingerprint", "nope"], env=env)

        assert result.exit_code == 1
        assert "No resource spec named 'nope' (known: storage)" in result.output

    def test_configuration_error(self, runner: CliRunner, env: dict) -> None:
        result = runner.invoke(cli, ["show", "storage"], env={**env, "AZURE_SUBSCRIPTION_ID": "bad"})

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output


class TestSyncAndDrain:
    """Tests for the commands that drive the state machines."""

    def test_sync_and_drain(self, runner: CliRunner, env: dict) -> None:
        with MockAzureContext(pending_reads=0) as ctx:
            first = runner.invoke(cli, ["sync", "storage"], env=env)
            assert first.exit_code == 0, first.output
            assert "storage: in_progress (Creating), next check in 1s" in first.output

            settled = runner.invoke(cli, ["sync", "storage", "--wait"], env=env)
            assert settled.exit_code == 0, settled.output
            assert "storage: ready" in settled.output
            assert ctx.state.resource_count == 1

            shown = runner.invoke(cli, ["show", "storage"], env=env)
            assert json.loads(shown.stdout)["resourceIdentifier"] == ACCOUNT_ID

            drained = runner.invoke(cli, ["drain", "storage", "--wait"], env=env)
            assert drained.exit_code == 0, drained.output
            assert "storage: drained" in drained.output
            assert ctx.state.resource_count == 0

    def test_failed_sync_exits_non_zero(self, runner: CliRunner, env: dict) -> None:
        with MockAzureContext() as ctx:
            ctx.state.reject_writes = "Quota exceeded"

            result = runner.invoke(cli, ["sync", "storage"], env=env)

        assert result.exit_code == 1
        assert "storage: failed (Creation failed: Quota exceeded)" in result.output

    def test_secretless_violation(self, runner: CliRunner, env: dict) -> None:
        result = runner.invoke(cli, ["sync", "storage"], env={**env, "AZURE_CLIENT_SECRET": "s3cret"})

        assert result.exit_code == 1
        assert "AZURE_CLIENT_SECRET" in result.output


class TestLookup:
    """Tests for the lookup command."""

    def test_existing_resource(self, runner: CliRunner, env: dict) -> None:
        initial = {ACCOUNT_ID: {"location": "westeurope", "kind": "StorageV2"}}

        with MockAzureContext(initial_resources=initial):
            result = runner.invoke(cli, ["lookup", STORAGE, ACCOUNT_ID], env=env)

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["kind"] == "StorageV2"
        assert data["id"] == ACCOUNT_ID

    def test_missing_resource(self, runner: CliRunner, env: dict) -> None:
        with MockAzureContext():
            result = runner.invoke(cli, ["lookup", STORAGE, ACCOUNT_ID, "-r", "northeurope"], env=env)

        assert result.exit_code == 1
        assert "Failed to fetch resource state" in result.output
