"""Delivery of change events returned by the state machines."""

from __future__ import annotations

import logging
from typing import Protocol

from .models import ChangeEvent

logger = logging.getLogger(__name__)


class EventEmitter(Protocol):
    """Fire-and-forget sink for change events."""

    def emit(self, event: ChangeEvent, *, slot: str | None = None) -> None:
        ...


class LoggingEventEmitter:
    """Writes one structured log line per change event."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def emit(self, event: ChangeEvent, *, slot: str | None = None) -> None:
        message = "Resource drift reported" if event.drifted else "Resource state changed"
        self._log.info(
            message,
            extra={
                "slot": slot,
                "resource_identifier": event.resource_identifier,
                "drifted": event.drifted,
                "properties": sorted(event.state),
            },
        )
