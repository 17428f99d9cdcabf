"""Teardown state machine.

Mirrors the reconciliation engine for deletion and shares its polling
discipline. Draining runs whatever the prior status was, including
``failed``, so a resource that acquired an identifier before its creation
failed is still cleaned up.

When draining starts while a create or update is still in flight, the
outstanding operation is polled first. Once it settles the delete is
issued on the next step, so a create that completes late is not leaked.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from .engine import DEFAULT_POLL_INTERVAL_SECONDS, describe_failure, operation_name
from .models import (
    LifecycleStatus,
    OperationKind,
    OperationStatus,
    ResourceInstance,
    StepResult,
)
from .provider import ProviderError, ResourceApi, ResourceApiFactory

logger = logging.getLogger(__name__)


class DrainEngine:
    """Drives one resource instance to ``drained``."""

    def __init__(
        self,
        client_for_region: ResourceApiFactory,
        poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._client_for_region = client_for_region
        self._poll_interval = poll_interval_seconds

    async def drain(self, instance: ResourceInstance) -> StepResult:
        """Run one teardown step.

        Returns:
            StepResult with status ``drained``, ``draining`` (plus a delay)
            or ``failed``.
        """
        current = instance.copy()
        result = StepResult(instance=current, status=current.status)

        try:
            if not current.operation_token and not current.resource_identifier:
                self._finish(result, LifecycleStatus.DRAINED, None)
            elif current.status == LifecycleStatus.DRAINED and not current.operation_token:
                self._finish(result, LifecycleStatus.DRAINED, None)
            else:
                api = self._client_for_region(current.region)
                if current.operation_token:
                    await self._poll(api, current, result)
                else:
                    await self._delete(api, current, result)

        except ProviderError as e:
            logger.error(
                "Remote call failed during drain",
                extra={
                    "type_name": current.type_name,
                    "resource_identifier": current.resource_identifier,
                    "error": str(e),
                },
            )
            self._finish(result, LifecycleStatus.FAILED, describe_failure("Deletion", None))
            result.next_delay_seconds = None
            result.error = e

        result.end_time = datetime.now(UTC)
        return result

    async def _delete(self, api: ResourceApi, current: ResourceInstance, result: StepResult) -> None:
        logger.info(
            "Deleting resource",
            extra={
                "type_name": current.type_name,
                "resource_identifier": current.resource_identifier,
            },
        )

        event = await api.delete(current.type_name, current.resource_identifier)

        match event.status:
            case OperationStatus.FAILED:
                logger.error(
                    "Resource deletion failed",
                    extra={
                        "type_name": current.type_name,
                        "resource_identifier": current.resource_identifier,
                        "message": event.message,
                    },
                )
                self._finish(result, LifecycleStatus.FAILED, describe_failure("Deletion", event.message))
            case OperationStatus.SUCCESS:
                current.operation_token = None
                self._finish(result, LifecycleStatus.DRAINED, None)
            case _:
                current.operation_token = event.token
                self._finish(result, LifecycleStatus.DRAINING, "Deleting")
                result.next_delay_seconds = self._poll_interval

    async def _poll(self, api: ResourceApi, current: ResourceInstance, result: StepResult) -> None:
        event = await api.poll_operation(current.operation_token)
        operation = operation_name(event, "Deletion")
        deleting = event.operation in (None, OperationKind.DELETE)

        if event.status == OperationStatus.PENDING:
            if event.token:
                current.operation_token = event.token
            self._finish(result, LifecycleStatus.DRAINING, f"{operation} in progress")
            result.next_delay_seconds = self._poll_interval
            return

        current.operation_token = None

        if deleting:
            if event.status == OperationStatus.FAILED:
                logger.error(
                    "Resource deletion failed",
                    extra={
                        "type_name": current.type_name,
                        "resource_identifier": current.resource_identifier,
                        "message": event.message,
                    },
                )
                self._finish(result, LifecycleStatus.FAILED, describe_failure("Deletion", event.message))
            else:
                self._finish(result, LifecycleStatus.DRAINED, None)
            return

        # A create or update settled first; delete whatever it left behind
        if not current.resource_identifier and event.identifier:
            current.resource_identifier = event.identifier

        if not current.resource_identifier:
            logger.info(
                "In-flight operation left no resource behind",
                extra={"type_name": current.type_name, "operation": operation},
            )
            self._finish(result, LifecycleStatus.DRAINED, None)
            return

        self._finish(result, LifecycleStatus.DRAINING, f"{operation} settled, deleting next")
        result.next_delay_seconds = self._poll_interval

    @staticmethod
    def _finish(result: StepResult, status: LifecycleStatus, description: str | None) -> None:
        result.status = status
        result.description = description
        result.instance.status = status
        result.instance.status_description = description
