"""Scheduler around the state machines.

The controller plays the caller role for every resource slot:
1. Load the persisted snapshot of the slot plus the current spec
2. Run exactly one sync or drain step
3. Save the returned snapshot, emit the returned event, log provenance
4. Call again after the requested delay, or after the resync interval

Invocations for one slot are serialized by a per-slot lock and, in run(),
by running each slot in its own task. Different slots never share state
except the immutable-property cache.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from .adapters import ResourceAdapter, generic_adapter
from .azure_provider import AzureSchemaRegistry, azure_client_factory
from .config import Config
from .drain import DrainEngine
from .engine import ReconciliationEngine
from .events import EventEmitter, LoggingEventEmitter
from .immutable import ImmutablePropertyResolver
from .models import LifecycleStatus, ResourceInstance, ResourceSpec, StepResult
from .provenance import get_provenance_logger
from .provider import ResourceApiFactory, SchemaRegistry
from .spec_loader import load_resource_specs, load_schema_overrides
from .store import FileKeyValueStore, FixedFieldError, InstanceRepository, KeyValueStore

logger = logging.getLogger(__name__)


class ResourceController:
    """Runs sync and drain steps for resource specs against a store."""

    def __init__(
        self,
        config: Config,
        *,
        client_for_region: ResourceApiFactory | None = None,
        schema_registry: SchemaRegistry | None = None,
        store: KeyValueStore | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        """Initialize the controller.

        Collaborators default to the Azure implementations and a JSON state
        file. Tests inject in-memory ones.

        Raises:
            SecretlessViolationError: If Azure clients are built and credential
                variables are present.
            SpecLoadError: If the schema overrides file is invalid.
        """
        self._config = config

        if client_for_region is None or schema_registry is None:
            factory, catalog = azure_client_factory(config)
            if client_for_region is None:
                client_for_region = factory
            if schema_registry is None:
                overrides = (
                    load_schema_overrides(config.schema_overrides_file)
                    if config.schema_overrides_file
                    else {}
                )
                schema_registry = AzureSchemaRegistry(catalog, overrides)

        self._store = store if store is not None else FileKeyValueStore(config.state_file)
        self._repository = InstanceRepository(self._store)
        self._resolver = ImmutablePropertyResolver(schema_registry, self._store)
        self._adapter = generic_adapter(self._resolver)
        self._engine = ReconciliationEngine(
            client_for_region, self._adapter, config.poll_interval_seconds
        )
        self._drain_engine = DrainEngine(client_for_region, config.poll_interval_seconds)
        self._emitter = emitter or LoggingEventEmitter()

        self._locks: dict[str, asyncio.Lock] = {}
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def adapter(self) -> ResourceAdapter:
        return self._adapter

    @property
    def repository(self) -> InstanceRepository:
        return self._repository

    @property
    def resolver(self) -> ImmutablePropertyResolver:
        return self._resolver

    # -------------------------------------------------------------------------
    # Single steps
    # -------------------------------------------------------------------------

    def load_instance(self, spec: ResourceSpec) -> ResourceInstance:
        """Combine the persisted snapshot of a slot with its current spec.

        Raises:
            FixedFieldError: If the spec moved an existing resource to another
                type or region.
        """
        config = spec.to_config(self._config.location, self._config.reconcile_on_drift)
        return self._repository.load(
            spec.name,
            type_name=self._adapter.type_name_of(config),
            region=config["region"],
            desired_config=self._adapter.desired_state_of(config),
            reconcile_on_drift=config["reconcileOnDrift"],
        )

    async def sync_once(self, spec: ResourceSpec) -> StepResult:
        """Run one reconciliation step for a spec."""
        async with self._lock(spec.name):
            instance = self.load_instance(spec)
            result = await self._engine.sync(instance)
            self._commit(spec.name, "sync", result)
            return result

    async def drain_once(self, spec: ResourceSpec) -> StepResult:
        """Run one teardown step; forget the slot once it is drained."""
        async with self._lock(spec.name):
            instance = self.load_instance(spec)
            result = await self._drain_engine.drain(instance)
            self._commit(spec.name, "drain", result)
            if result.status == LifecycleStatus.DRAINED:
                self._repository.discard(spec.name)
            return result

    async def sync_until_settled(self, spec: ResourceSpec) -> StepResult:
        """Repeat sync steps, honoring delays, until no re-poll is requested."""
        result = await self.sync_once(spec)
        while result.requeue and not self._shutdown_event.is_set():
            await self._wait(result.next_delay_seconds)
            result = await self.sync_once(spec)
        return result

    async def drain_until_done(self, spec: ResourceSpec) -> StepResult:
        """Repeat drain steps until the slot is ``drained`` or ``failed``."""
        result = await self.drain_once(spec)
        while result.requeue and not self._shutdown_event.is_set():
            await self._wait(result.next_delay_seconds)
            result = await self.drain_once(spec)
        return result

    def show(self, name: str) -> dict[str, Any]:
        """Return the persisted signals of a slot."""
        return self._repository.signals(name)

    # -------------------------------------------------------------------------
    # Control loop
    # -------------------------------------------------------------------------

    async def run(self, specs: Mapping[str, ResourceSpec] | None = None) -> None:
        """Reconcile every spec until shutdown.

        Args:
            specs: Specs keyed by slot name. Loaded from the specs directory
                when omitted.

        Raises:
            SpecLoadError: If the specs directory cannot be loaded.
        """
        if specs is None:
            specs = load_resource_specs(self._config.specs_dir)

        logger.info(
            "Starting resource controller",
            extra={
                "resource_group": self._config.resource_group_name,
                "slots": sorted(specs),
                "poll_interval_seconds": self._config.poll_interval_seconds,
                "resync_interval_seconds": self._config.resync_interval_seconds,
                "reconcile_on_drift": self._config.reconcile_on_drift,
            },
        )

        tasks = [
            asyncio.create_task(self._run_slot(spec), name=f"slot:{name}")
            for name, spec in specs.items()
        ]
        if tasks:
            await asyncio.gather(*tasks)
        else:
            logger.warning("No resource specs found", extra={"specs_dir": str(self._config.specs_dir)})
            await self._shutdown_event.wait()

        logger.info("Resource controller shutdown complete")

    def shutdown(self) -> None:
        """Signal every slot loop to stop after its current step."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def _run_slot(self, spec: ResourceSpec) -> None:
        while not self._shutdown_event.is_set():
            delay = self._config.resync_interval_seconds
            try:
                result = await self.sync_once(spec)
                if result.requeue:
                    delay = result.next_delay_seconds
            except FixedFieldError as e:
                logger.error("Spec change rejected", extra={"slot": spec.name, "error": str(e)})
            except Exception as e:
                # Keep the other slots running; the next pass starts from the saved state
                logger.exception("Unexpected error in sync step", extra={"slot": spec.name, "error": str(e)})

            await self._wait(delay)

    async def _wait(self, seconds: int | None) -> None:
        """Sleep until the delay passes or shutdown is requested."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds or 0)
        except TimeoutError:
            pass

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _lock(self, slot: str) -> asyncio.Lock:
        lock = self._locks.get(slot)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[slot] = lock
        return lock

    def _commit(self, slot: str, phase: str, result: StepResult) -> None:
        self._repository.save(slot, result.instance)

        if result.event is not None:
            self._emitter.emit(result.event, slot=slot)

        if self._config.enable_audit_logging:
            provenance_logger = get_provenance_logger()
            provenance = provenance_logger.record_step(
                slot,
                phase,
                result,
                subscription_id=self._config.subscription_id,
                resource_group=self._config.resource_group_name,
            )
            provenance_logger.log_provenance(provenance)

        self._log_result(slot, phase, result)

    def _log_result(self, slot: str, phase: str, result: StepResult) -> None:
        extra = {
            "slot": slot,
            "phase": phase,
            "status": result.status.value,
            "description": result.description,
            "next_delay_seconds": result.next_delay_seconds,
            "duration_seconds": result.duration_seconds,
        }
        if result.success:
            logger.info(f"{phase.capitalize()} step completed", extra=extra)
        else:
            logger.error(f"{phase.capitalize()} step failed", extra={**extra, "error": str(result.error)})
