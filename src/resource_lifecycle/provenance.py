"""Audit trail of state-machine steps.

Every sync or drain step the controller runs produces one provenance
record answering: which slot, which resource, what phase, what outcome,
and which build of the controller and specs was running.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from .models import LifecycleStatus, StepResult

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
CONTROLLER_VERSION = os.environ.get("CONTROLLER_VERSION", "dev")


@dataclass
class StepProvenance:
    """Provenance record for a single state-machine step."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    slot: str = ""
    controller_version: str = CONTROLLER_VERSION
    controller_instance_id: str = ""
    git_commit_sha: str = ""

    # Resource
    subscription_id: str = ""
    resource_group: str = ""
    type_name: str = ""
    region: str = ""
    resource_identifier: str | None = None
    config_fingerprint: str | None = None

    # Outcome
    phase: str = "sync"  # sync or drain
    status: str = LifecycleStatus.PENDING.value
    description: str | None = None
    drifted: bool = False
    drifted_fields: list[str] = field(default_factory=list)
    event_emitted: bool = False
    next_delay_seconds: int | None = None
    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Writes provenance records to the structured log."""

    def __init__(self) -> None:
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")
        self._instance_id = os.environ.get("CONTAINER_INSTANCE_ID", "")

    def record_step(
        self,
        slot: str,
        phase: str,
        result: StepResult,
        subscription_id: str = "",
        resource_group: str = "",
    ) -> StepProvenance:
        """Build the provenance record of a finished step."""
        instance = result.instance
        return StepProvenance(
            slot=slot,
            controller_instance_id=self._instance_id,
            git_commit_sha=self._git_commit_sha,
            subscription_id=subscription_id,
            resource_group=resource_group,
            type_name=instance.type_name,
            region=instance.region,
            resource_identifier=instance.resource_identifier,
            config_fingerprint=instance.config_fingerprint,
            phase=phase,
            status=result.status.value,
            description=result.description,
            drifted=instance.drifted,
            drifted_fields=list(instance.drifted_fields),
            event_emitted=result.event is not None,
            next_delay_seconds=result.next_delay_seconds,
            duration_seconds=result.duration_seconds,
            error=str(result.error) if result.error else None,
            error_type=type(result.error).__name__ if result.error else None,
        )

    def log_provenance(self, provenance: StepProvenance) -> None:
        """Log a completed provenance record.

        Failed steps log at ERROR, reported drift at WARNING, the rest at INFO.
        """
        log_level = logging.INFO
        if provenance.error or provenance.status == LifecycleStatus.FAILED.value:
            log_level = logging.ERROR
        elif provenance.drifted:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Step provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "slot": provenance.slot,
                "phase": provenance.phase,
                "status": provenance.status,
                "resource_identifier": provenance.resource_identifier,
                "git_commit": provenance.git_commit_sha,
                "controller_version": provenance.controller_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
