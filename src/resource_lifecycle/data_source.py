"""Read-only lookup of a resource the engines do not manage."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from .models import ChangeEvent, LifecycleStatus, ResourceInstance, StepResult
from .provider import ProviderError, ResourceApi

logger = logging.getLogger(__name__)


async def observe_resource(
    api: ResourceApi,
    type_name: str,
    identifier: str,
    *,
    region: str = "",
) -> StepResult:
    """Fetch the current properties of an existing resource.

    Nothing is created, updated or deleted. The returned instance only
    carries the identifier and the observed state.

    Returns:
        ``ready`` with a change event holding the properties, or ``failed``
        with a short description when the read fails.
    """
    instance = ResourceInstance(type_name=type_name, region=region, resource_identifier=identifier)
    result = StepResult(instance=instance, status=LifecycleStatus.PENDING)

    try:
        state = await api.get(type_name, identifier)
    except ProviderError as e:
        logger.error(
            "Failed to fetch resource state",
            extra={"type_name": type_name, "resource_identifier": identifier, "error": str(e)},
        )
        instance.status = LifecycleStatus.FAILED
        instance.status_description = "Failed to fetch resource state, see logs"
        result.status = instance.status
        result.description = instance.status_description
        result.error = e
    else:
        instance.observed_state = state
        instance.status = LifecycleStatus.READY
        result.status = LifecycleStatus.READY
        result.event = ChangeEvent(state=state, resource_identifier=identifier)

    result.end_time = datetime.now(UTC)
    return result
