"""Daemon entry point for the resource lifecycle controller.

SECRETLESS ARCHITECTURE:
The controller authenticates with a managed identity only. Credential
environment variables abort start-up with exit code 2.

Exit codes:
    0: Clean shutdown
    1: Configuration, spec or unexpected error
    2: Security violation
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TextIO

from .config import Config, ConfigurationError
from .controller import ResourceController
from .security import SecretlessViolationError
from .spec_loader import SpecLoadError, load_resource_specs
from .store import StoreError

# LogRecord attributes that are not structured context
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO, stream: TextIO | None = None) -> None:
    """Configure structured logging with JSON output for production.

    Calling it again replaces the JSON handler installed earlier.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def main() -> int:
    """Run the controller until SIGTERM or SIGINT.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    logger.info(
        "Starting resource lifecycle controller",
        extra={
            "subscription_id": config.subscription_id,
            "resource_group": config.resource_group_name,
            "location": config.location,
        },
    )

    try:
        specs = load_resource_specs(config.specs_dir)
        controller = ResourceController(config)
    except SpecLoadError as e:
        logger.error("Failed to load specs", extra={"error": str(e), "specs_dir": str(config.specs_dir)})
        return 1
    except StoreError as e:
        logger.error("Failed to open state file", extra={"error": str(e), "state_file": str(config.state_file)})
        return 1
    except SecretlessViolationError as e:
        # SECURITY: Credential detected - fatal security error
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        controller.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await controller.run(specs)
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Controller stopped")
    return 0


def run() -> None:
    """Entry point for the lifecycle-controller command."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
