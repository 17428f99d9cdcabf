"""Reconciliation state machine.

Every call to ReconciliationEngine.sync() is one bounded step. The step
reads the persisted signals carried by the instance, performs at most a few
remote calls, and returns a StepResult with the updated instance, the new
status and, when an operation is still running, the delay after which the
scheduler should call again. Remote operations are never awaited to
completion in-process.

BRANCHES (exactly one per step):
1. No operation token and no identifier: submit a create.
2. Operation token present: poll it.
3. Identifier present: check for drift and desired-config changes, and
   submit an update when needed.
4. Nothing changed: report ready.

ERROR HANDLING:
- A FAILED progress event or a ProviderError ends the step as ``failed``.
  The short description is persisted; the full detail is only logged.
- MalformedStateError leaves the instance exactly as it was loaded and asks
  to be retried after the poll interval.
- Schema lookups never fail a step (see immutable.py).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from .adapters import ResourceAdapter
from .deep_diff import deep_equal, diff_keys
from .fingerprint import config_fingerprint
from .models import (
    ChangeEvent,
    LifecycleStatus,
    OperationStatus,
    ProgressEvent,
    ResourceInstance,
    StepResult,
)
from .patch import generate_patch, patch_document
from .provider import MalformedStateError, ProviderError, ResourceApi, ResourceApiFactory

logger = logging.getLogger(__name__)

# Re-poll delay for in-flight operations
DEFAULT_POLL_INTERVAL_SECONDS = 10

# Provider messages are truncated before they are persisted
MAX_DESCRIPTION_MESSAGE_LENGTH = 200


def describe_failure(action: str, message: str | None) -> str:
    """Build the short, persisted description of a failed operation."""
    if not message:
        return f"{action} failed, see logs"
    if len(message) > MAX_DESCRIPTION_MESSAGE_LENGTH:
        message = message[: MAX_DESCRIPTION_MESSAGE_LENGTH - 3] + "..."
    return f"{action} failed: {message}"


def operation_name(event: ProgressEvent, default: str) -> str:
    """Human readable name of the operation a progress event belongs to."""
    if event.operation is None:
        return default
    return event.operation.value.capitalize()


class ReconciliationEngine:
    """Drives one resource instance toward its desired configuration.

    The engine holds no per-instance state. The instance passed in is never
    mutated; a modified copy is returned inside the StepResult together with
    the change event to emit, if any.
    """

    def __init__(
        self,
        client_for_region: ResourceApiFactory,
        adapter: ResourceAdapter,
        poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._client_for_region = client_for_region
        self._adapter = adapter
        self._poll_interval = poll_interval_seconds

    @property
    def adapter(self) -> ResourceAdapter:
        return self._adapter

    @property
    def poll_interval_seconds(self) -> int:
        return self._poll_interval

    async def sync(self, instance: ResourceInstance) -> StepResult:
        """Run one reconciliation step.

        Args:
            instance: Snapshot loaded by the caller, including the current
                desired config.

        Returns:
            StepResult carrying the updated instance. Remote failures are
            converted into a status; nothing is raised to the scheduler.
            Drift that is only reported settles as ``drifted-reported``, a
            ready-class status whose description lists the drifted fields.
        """
        current = instance.copy()
        result = StepResult(instance=current, status=current.status)

        try:
            if current.status == LifecycleStatus.DRAINING:
                # A teardown owns the operation token until it finishes
                result.status = LifecycleStatus.DRAINING
                result.description = "Drain in progress"
                result.next_delay_seconds = self._poll_interval
            else:
                if current.status == LifecycleStatus.DRAINED:
                    current = self._reset_drained(current)
                    result.instance = current

                api = self._client_for_region(current.region)
                if not current.operation_token and not current.resource_identifier:
                    await self._create(api, current, result)
                elif current.operation_token:
                    await self._poll(api, current, result)
                else:
                    await self._check(api, current, result)

        except MalformedStateError as e:
            logger.warning(
                "Remote state could not be parsed, keeping previous state",
                extra={
                    "type_name": instance.type_name,
                    "resource_identifier": instance.resource_identifier,
                    "error": str(e),
                },
            )
            result.instance = instance.copy()
            result.status = instance.status
            result.description = "Remote state could not be parsed, will retry"
            result.next_delay_seconds = self._poll_interval
            result.event = None
            result.error = e

        except ProviderError as e:
            logger.error(
                "Remote call failed during sync",
                extra={
                    "type_name": current.type_name,
                    "resource_identifier": current.resource_identifier,
                    "error": str(e),
                },
            )
            self._finish(result, LifecycleStatus.FAILED, describe_failure("Sync", None))
            result.next_delay_seconds = None
            result.event = None
            result.error = e

        result.end_time = datetime.now(UTC)
        return result

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------

    async def _create(self, api: ResourceApi, current: ResourceInstance, result: StepResult) -> None:
        desired = current.desired_config
        logger.info(
            "Creating resource",
            extra={"type_name": current.type_name, "region": current.region},
        )

        event = await api.create(current.type_name, desired)

        if event.status == OperationStatus.FAILED:
            logger.error(
                "Resource creation failed",
                extra={"type_name": current.type_name, "message": event.message},
            )
            self._finish(result, LifecycleStatus.FAILED, describe_failure("Creation", event.message))
            return

        if not event.token and not event.identifier:
            raise ProviderError("Create returned neither an operation token nor an identifier")

        current.operation_token = event.token
        if not event.token:
            # Completed synchronously; the next step refreshes the state
            current.resource_identifier = event.identifier
        current.config_fingerprint = config_fingerprint(desired)
        current.managed_keys = list(desired)
        self._finish(result, LifecycleStatus.IN_PROGRESS, "Creating")
        result.next_delay_seconds = self._poll_interval

    async def _poll(self, api: ResourceApi, current: ResourceInstance, result: StepResult) -> None:
        event = await api.poll_operation(current.operation_token)
        operation = operation_name(event, "Operation")

        if event.status == OperationStatus.FAILED:
            logger.error(
                "Remote operation failed",
                extra={
                    "type_name": current.type_name,
                    "operation": operation,
                    "message": event.message,
                },
            )
            current.operation_token = None
            self._finish(result, LifecycleStatus.FAILED, describe_failure(operation, event.message))
            return

        if event.status == OperationStatus.PENDING:
            if event.token:
                current.operation_token = event.token
            self._finish(result, LifecycleStatus.IN_PROGRESS, f"{operation} in progress")
            result.next_delay_seconds = self._poll_interval
            return

        identifier = self._settle_identifier(current, event.identifier)
        immutable = await self._adapter.resolve_immutable_keys(current.type_name)
        properties = await api.get(current.type_name, identifier)

        previous = current.observed_state
        current.operation_token = None
        current.resource_identifier = identifier
        current.observed_state = properties
        current.drifted = False
        current.drifted_fields = []
        self._finish(result, LifecycleStatus.READY, None)

        if not deep_equal(properties, previous, immutable):
            result.event = ChangeEvent(state=properties, resource_identifier=identifier)

        logger.info(
            "Remote operation completed",
            extra={
                "type_name": current.type_name,
                "resource_identifier": identifier,
                "operation": operation,
            },
        )

    async def _check(self, api: ResourceApi, current: ResourceInstance, result: StepResult) -> None:
        """Compare the remote state with the baseline and the desired config.

        Without a baseline (a create that completed synchronously) there is
        nothing to drift from: the first observation becomes the baseline.

        The patch treats the keys of the previous desired config
        (``managed_keys``) as explicit too, so a key dropped from the desired
        config is removed remotely while server defaults stay untouched.
        """
        identifier = current.resource_identifier
        desired = current.desired_config
        immutable = await self._adapter.resolve_immutable_keys(current.type_name)
        actual = await api.get(current.type_name, identifier)
        baseline = current.observed_state

        fingerprint = config_fingerprint(desired)
        drift_detected = baseline is not None and not deep_equal(actual, baseline, immutable)
        config_changed = fingerprint != current.config_fingerprint

        if not drift_detected and not config_changed:
            current.drifted = False
            current.drifted_fields = []
            if not deep_equal(actual, baseline):
                # No baseline yet, or only immutable properties moved
                current.observed_state = actual
                result.event = ChangeEvent(state=actual, resource_identifier=identifier)
            self._finish(result, LifecycleStatus.READY, None)
            return

        if drift_detected and not config_changed and not current.reconcile_on_drift:
            self._report_drift(current, result, actual, baseline, immutable)
            return

        explicit_keys = [*desired, *current.managed_keys]
        patch = generate_patch(actual, desired, immutable, explicit_keys)

        if not patch:
            current.config_fingerprint = fingerprint
            current.managed_keys = list(desired)
            current.observed_state = actual
            current.drifted = False
            current.drifted_fields = []
            if not deep_equal(actual, baseline):
                result.event = ChangeEvent(state=actual, resource_identifier=identifier)
            self._finish(result, LifecycleStatus.READY, None)
            return

        logger.info(
            "Updating resource",
            extra={
                "type_name": current.type_name,
                "resource_identifier": identifier,
                "drift_detected": drift_detected,
                "config_changed": config_changed,
                "patch": patch_document(patch),
            },
        )

        event = await api.update(current.type_name, identifier, patch)

        if event.status == OperationStatus.FAILED:
            logger.error(
                "Resource update failed",
                extra={
                    "type_name": current.type_name,
                    "resource_identifier": identifier,
                    "message": event.message,
                },
            )
            self._finish(result, LifecycleStatus.FAILED, describe_failure("Update", event.message))
            return

        current.operation_token = event.token
        current.config_fingerprint = fingerprint
        current.managed_keys = list(desired)
        self._finish(result, LifecycleStatus.IN_PROGRESS, "Updating")
        result.next_delay_seconds = self._poll_interval

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _report_drift(
        self,
        current: ResourceInstance,
        result: StepResult,
        actual: dict,
        baseline: dict | None,
        immutable: frozenset[str],
    ) -> None:
        """Report drift without correcting it.

        The stored observed state stays the baseline, so the drifted field
        list is always relative to the last state this engine produced.
        """
        fields = sorted(diff_keys(actual, baseline, immutable))
        changed = not current.drifted or fields != current.drifted_fields

        current.drifted = True
        current.drifted_fields = fields
        self._finish(
            result,
            LifecycleStatus.DRIFTED_REPORTED,
            f"Drift detected in: {', '.join(fields)}",
        )

        if changed:
            result.event = ChangeEvent(
                state=actual,
                resource_identifier=current.resource_identifier,
                drifted=True,
            )
            logger.warning(
                "Drift detected, reconciliation disabled",
                extra={
                    "type_name": current.type_name,
                    "resource_identifier": current.resource_identifier,
                    "drifted_fields": fields,
                },
            )

    def _settle_identifier(self, current: ResourceInstance, reported: str | None) -> str:
        """Pick the identifier to keep after a successful operation."""
        existing = current.resource_identifier
        if existing:
            if reported and reported != existing:
                logger.warning(
                    "Provider reported a different identifier, keeping the original",
                    extra={"resource_identifier": existing, "reported_identifier": reported},
                )
            return existing
        if not reported:
            raise ProviderError("Operation succeeded without a resource identifier")
        return reported

    @staticmethod
    def _reset_drained(drained: ResourceInstance) -> ResourceInstance:
        """Start over for an instance whose resource was already torn down."""
        logger.info(
            "Resource was drained, starting a new lifecycle",
            extra={"type_name": drained.type_name, "region": drained.region},
        )
        return ResourceInstance(
            type_name=drained.type_name,
            region=drained.region,
            desired_config=drained.desired_config,
            reconcile_on_drift=drained.reconcile_on_drift,
        )

    @staticmethod
    def _finish(result: StepResult, status: LifecycleStatus, description: str | None) -> None:
        result.status = status
        result.description = description
        result.instance.status = status
        result.instance.status_description = description
