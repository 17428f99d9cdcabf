"""Resource lifecycle CLI (lifecycle).

Operates on the same specs directory and state file as the daemon, one
step or one slot at a time.

Usage:
    lifecycle run                     # Run the controller until interrupted
    lifecycle sync storage --wait     # Reconcile one slot until it settles
    lifecycle drain storage --wait    # Tear one slot down
    lifecycle show storage            # Print persisted signals
    lifecycle fingerprint storage     # Compare desired vs applied config
    lifecycle lookup Microsoft.Storage/storageAccounts <id> --region westeurope

Configuration is read from the same environment variables as the daemon.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from .azure_provider import azure_client_factory
from .config import Config, ConfigurationError
from .controller import ResourceController
from .data_source import observe_resource
from .fingerprint import config_fingerprint
from .main import main as daemon_main
from .main import setup_logging
from .models import ResourceSpec, StepResult
from .security import SecretlessViolationError
from .spec_loader import SpecLoadError, load_resource_specs
from .store import FileKeyValueStore, FixedFieldError, InstanceRepository, StoreError

STATUS_COLORS = {
    "ready": "green",
    "drifted-reported": "yellow",
    "in_progress": "cyan",
    "draining": "cyan",
    "drained": "green",
    "failed": "red",
}


def load_config() -> Config:
    """Load configuration from the environment for a CLI command."""
    try:
        return Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def load_spec(config: Config, name: str) -> ResourceSpec:
    """Load the spec of one slot from the specs directory."""
    try:
        specs = load_resource_specs(config.specs_dir)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    spec = specs.get(name)
    if spec is None:
        known = ", ".join(sorted(specs)) or "none"
        raise click.ClickException(f"No resource spec named '{name}' (known: {known})")
    return spec


def build_controller(config: Config) -> ResourceController:
    try:
        return ResourceController(config)
    except (SecretlessViolationError, SpecLoadError, StoreError) as e:
        raise click.ClickException(str(e)) from e


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def echo_result(name: str, result: StepResult) -> None:
    status = result.status.value
    line = f"{name}: {status}"
    if result.description:
        line += f" ({result.description})"
    if result.requeue:
        line += f", next check in {result.next_delay_seconds}s"
    click.secho(line, fg=STATUS_COLORS.get(status))


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="lifecycle")
@click.option("--verbose", "-v", is_flag=True, help="Emit JSON logs at INFO level")
def cli(verbose: bool) -> None:
    """Resource lifecycle CLI.

    Drives Azure resources toward the desired state declared in YAML specs.
    """
    setup_logging(logging.INFO if verbose else logging.WARNING, stream=sys.stderr)


@cli.command()
def run() -> None:
    """Run the controller until interrupted (same as lifecycle-controller)."""
    sys.exit(asyncio.run(daemon_main()))


@cli.command()
@click.argument("name")
@click.option("--wait", is_flag=True, help="Keep polling until no further check is requested")
def sync(name: str, wait: bool) -> None:
    """Run a reconciliation step for one resource spec."""
    config = load_config()
    spec = load_spec(config, name)
    controller = build_controller(config)

    step = controller.sync_until_settled if wait else controller.sync_once
    try:
        result = asyncio.run(step(spec))
    except FixedFieldError as e:
        raise click.ClickException(str(e)) from e

    echo_result(name, result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("name")
@click.option("--wait", is_flag=True, help="Keep polling until drained or failed")
def drain(name: str, wait: bool) -> None:
    """Run a teardown step for one resource spec."""
    config = load_config()
    spec = load_spec(config, name)
    controller = build_controller(config)

    step = controller.drain_until_done if wait else controller.drain_once
    try:
        result = asyncio.run(step(spec))
    except FixedFieldError as e:
        raise click.ClickException(str(e)) from e

    echo_result(name, result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("name")
def show(name: str) -> None:
    """Print the persisted lifecycle signals of a slot."""
    config = load_config()
    try:
        signals = InstanceRepository(FileKeyValueStore(config.state_file)).signals(name)
    except StoreError as e:
        raise click.ClickException(str(e)) from e

    if not signals:
        raise click.ClickException(f"No persisted state for '{name}'")
    echo_json(signals)


@cli.command()
@click.argument("name")
def fingerprint(name: str) -> None:
    """Compare the desired config fingerprint with the last applied one."""
    config = load_config()
    spec = load_spec(config, name)
    try:
        signals = InstanceRepository(FileKeyValueStore(config.state_file)).signals(name)
    except StoreError as e:
        raise click.ClickException(str(e)) from e

    desired = config_fingerprint(spec.state)
    applied = signals.get("configFingerprint")
    echo_json({"desired": desired, "applied": applied, "changed": desired != applied})


@cli.command()
@click.argument("type_name")
@click.argument("identifier")
@click.option("--region", "-r", default=None, help="Region of the resource (default: AZURE_LOCATION)")
def lookup(type_name: str, identifier: str, region: str | None) -> None:
    """Print the current properties of a resource without managing it."""
    config = load_config()
    try:
        client_for_region, _ = azure_client_factory(config)
    except SecretlessViolationError as e:
        raise click.ClickException(str(e)) from e

    region = region or config.location
    result = asyncio.run(
        observe_resource(client_for_region(region), type_name, identifier, region=region)
    )
    if not result.success:
        raise click.ClickException(result.description or "Lookup failed")
    echo_json(result.instance.observed_state)


if __name__ == "__main__":
    cli()
