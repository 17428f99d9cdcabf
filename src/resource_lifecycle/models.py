"""Domain models for resource lifecycle management.

These models provide:
1. Type-safe parsing of resource specs (pydantic, validated at the boundary)
2. The explicit ResourceInstance struct passed into and out of every
   state-machine step
3. Step results and change events returned instead of side effects
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Status enums
# =============================================================================


class LifecycleStatus(str, Enum):
    """Lifecycle status of a managed resource instance."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    DRIFTED_REPORTED = "drifted-reported"
    DRAINING = "draining"
    DRAINED = "drained"
    FAILED = "failed"

    @property
    def settled(self) -> bool:
        """True when no remote operation is outstanding and nothing failed."""
        return self in (LifecycleStatus.READY, LifecycleStatus.DRIFTED_REPORTED)

    @property
    def terminal(self) -> bool:
        """True for statuses that end a lifecycle direction."""
        return self in (LifecycleStatus.DRAINED, LifecycleStatus.FAILED)


class OperationStatus(str, Enum):
    """Status of an asynchronous remote operation."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"

    @classmethod
    def parse(cls, value: str | None) -> OperationStatus:
        """Parse a provider status value.

        Anything other than SUCCESS or FAILED means the operation is still
        running.
        """
        normalized = (value or "").upper()
        if normalized == cls.SUCCESS.value:
            return cls.SUCCESS
        if normalized == cls.FAILED.value:
            return cls.FAILED
        return cls.PENDING


class OperationKind(str, Enum):
    """Kind of remote mutation an operation token refers to."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# =============================================================================
# Remote progress and change events
# =============================================================================


@dataclass(frozen=True)
class ProgressEvent:
    """Progress of a remote create/update/delete operation.

    Attributes:
        status: SUCCESS, FAILED or PENDING.
        token: Opaque handle for polling the operation (may rotate).
        identifier: Remote resource identifier, once known.
        operation: Which mutation the token belongs to.
        message: Provider status message, mostly set on failure.
    """

    status: OperationStatus
    token: str | None = None
    identifier: str | None = None
    operation: OperationKind | None = None
    message: str | None = None


@dataclass(frozen=True)
class ChangeEvent:
    """Notification that the observed state of a resource changed."""

    state: dict[str, Any]
    resource_identifier: str | None
    drifted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "resourceIdentifier": self.resource_identifier,
            "drifted": self.drifted,
        }


# =============================================================================
# Resource instance
# =============================================================================


@dataclass
class ResourceInstance:
    """The unit the engines manage.

    Type name, region, desired config and the drift policy come from the
    caller on every invocation. Everything else is persisted between
    invocations and only ever changed by the state machines.
    """

    type_name: str
    region: str
    desired_config: dict[str, Any] = field(default_factory=dict)
    reconcile_on_drift: bool = True

    # Persisted signals
    config_fingerprint: str | None = None
    operation_token: str | None = None
    resource_identifier: str | None = None
    observed_state: dict[str, Any] | None = None
    drifted: bool = False
    drifted_fields: list[str] = field(default_factory=list)
    managed_keys: list[str] = field(default_factory=list)
    status: LifecycleStatus = LifecycleStatus.PENDING
    status_description: str | None = None

    def copy(self) -> ResourceInstance:
        """Return an independent deep copy."""
        return replace(
            self,
            desired_config=copy.deepcopy(self.desired_config),
            observed_state=copy.deepcopy(self.observed_state),
            drifted_fields=list(self.drifted_fields),
            managed_keys=list(self.managed_keys),
        )

    def to_signals(self) -> dict[str, Any]:
        """Persisted fields keyed by their signal names."""
        return {
            "typeName": self.type_name,
            "region": self.region,
            "configFingerprint": self.config_fingerprint,
            "operationToken": self.operation_token,
            "resourceIdentifier": self.resource_identifier,
            "observedState": self.observed_state,
            "drifted": self.drifted,
            "driftedFields": list(self.drifted_fields),
            "managedKeys": list(self.managed_keys),
            "status": self.status.value,
            "statusDescription": self.status_description,
        }

    @classmethod
    def from_signals(
        cls,
        signals: dict[str, Any],
        *,
        type_name: str,
        region: str,
        desired_config: dict[str, Any],
        reconcile_on_drift: bool = True,
    ) -> ResourceInstance:
        """Rebuild an instance from persisted signals plus caller intent."""
        status = signals.get("status") or LifecycleStatus.PENDING.value
        return cls(
            type_name=type_name,
            region=region,
            desired_config=desired_config,
            reconcile_on_drift=reconcile_on_drift,
            config_fingerprint=signals.get("configFingerprint"),
            operation_token=signals.get("operationToken"),
            resource_identifier=signals.get("resourceIdentifier"),
            observed_state=signals.get("observedState"),
            drifted=bool(signals.get("drifted", False)),
            drifted_fields=list(signals.get("driftedFields") or []),
            managed_keys=list(signals.get("managedKeys") or []),
            status=LifecycleStatus(status),
            status_description=signals.get("statusDescription"),
        )


@dataclass
class StepResult:
    """Result of a single state-machine step."""

    instance: ResourceInstance
    status: LifecycleStatus
    description: str | None = None
    next_delay_seconds: int | None = None
    event: ChangeEvent | None = None
    error: Exception | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def requeue(self) -> bool:
        """True when the engine asked to be invoked again after a delay."""
        return self.next_delay_seconds is not None

    @property
    def success(self) -> bool:
        """Check if the step completed without an error."""
        return self.error is None and self.status != LifecycleStatus.FAILED


# =============================================================================
# Resource specs
# =============================================================================


class ResourceSpec(BaseModel):
    """Caller intent for one managed resource slot."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=128, pattern=r"^[a-zA-Z0-9][\w.-]*$")]
    type_name: Annotated[str, Field(min_length=3, alias="typeName")]
    region: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
    reconcile_on_drift: bool | None = Field(None, alias="reconcileOnDrift")

    @field_validator("type_name")
    @classmethod
    def validate_type_name(cls, v: str) -> str:
        # Namespace/type, optionally nested (Microsoft.Network/virtualNetworks/subnets)
        parts = v.split("/")
        if len(parts) < 2 or not all(parts):
            raise ValueError("typeName must look like 'Namespace/resourceType'")
        return v

    def to_config(self, default_region: str, default_reconcile_on_drift: bool = True) -> dict[str, Any]:
        """Flatten into the block-style config consumed by resource adapters."""
        reconcile = self.reconcile_on_drift
        return {
            "typeName": self.type_name,
            "region": self.region or default_region,
            "state": copy.deepcopy(self.state),
            "reconcileOnDrift": default_reconcile_on_drift if reconcile is None else reconcile,
        }
