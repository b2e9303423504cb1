"""Main entry point for the Azure MySQL Server Operator.

One invocation converges the declared server once: load the desired state
and local state, read the server, apply whatever is needed, save the new
state. Every blocking call observes one cancellation event, set by the
invocation deadline or by SIGTERM/SIGINT.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from azure.core.exceptions import AzureError

from .client import create_mysql_client
from .config import Config, ConfigurationError
from .errors import ImmutableFieldChangeError, OperationCancelledError, OperatorError
from .reconciler import ServerReconciler
from .security import SecretlessViolationError, redact
from .spec_loader import SpecLoadError, load_spec
from .state import StateFileError, StateStore
from .waiter import OperationWaiter

T = TypeVar("T")

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SECURITY_VIOLATION = 2
EXIT_CANCELLED = 130

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
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_ATTRS
        }
        log_data.update(redact(extra))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def run_with_deadline(
    operation: Callable[[asyncio.Event], Awaitable[T]],
    timeout_seconds: float,
) -> T:
    """Run ``operation`` with a cancellation event tied to a deadline and signals.

    The event fires when the deadline passes or on SIGTERM/SIGINT; the
    operation is expected to observe it and raise OperationCancelledError.
    """
    logger = logging.getLogger(__name__)
    loop = asyncio.get_running_loop()
    cancel_event = asyncio.Event()

    def cancel(reason: str) -> None:
        if not cancel_event.is_set():
            logger.warning("Cancelling operation", extra={"reason": reason})
            cancel_event.set()

    deadline = loop.call_later(timeout_seconds, cancel, "deadline")

    installed: list[signal.Signals] = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, cancel, sig.name)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are only available on the main thread of Unix loops
            pass

    try:
        return await operation(cancel_event)
    finally:
        deadline.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)


async def main() -> int:
    """Converge the configured MySQL server once.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_FAILURE

    logger.info(
        "Starting Azure MySQL Server Operator",
        extra={
            "subscription_id": config.subscription_id,
            "spec_file": str(config.spec_file),
            "state_file": str(config.state_file),
        },
    )

    try:
        desired = load_spec(config.spec_file)
        store = StateStore(config.state_file)
        state = store.load()
        reconciler = ServerReconciler(
            create_mysql_client(config),
            waiter=OperationWaiter(config.poll_interval_seconds),
            require_import=config.require_import,
        )

        result = await run_with_deadline(
            lambda cancel_event: reconciler.converge(
                state,
                desired,
                allow_replace=config.allow_replace,
                cancel_event=cancel_event,
            ),
            config.operation_timeout_seconds,
        )
        store.save(result.state)

    except (SpecLoadError, StateFileError) as e:
        logger.error("Failed to load operator files", extra={"error": str(e)})
        return EXIT_FAILURE

    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return EXIT_SECURITY_VIOLATION

    except OperationCancelledError as e:
        logger.warning("Reconciliation cancelled", extra={"error": str(e)})
        return EXIT_CANCELLED

    except ImmutableFieldChangeError as e:
        logger.error(
            "Server must be replaced; set ALLOW_REPLACE=true to delete and recreate it",
            extra={"fields": e.fields},
        )
        return EXIT_FAILURE

    except OperatorError as e:
        logger.error(
            "Reconciliation failed",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return EXIT_FAILURE

    except AzureError as e:
        logger.error(
            "Azure request failed",
            extra={"error": e.message, "error_type": type(e).__name__},
        )
        return EXIT_FAILURE

    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return EXIT_FAILURE

    logger.info(
        "Reconciliation result",
        extra={
            "action": result.action.value,
            "changes": result.changes,
            "resource_id": result.state.id,
            "fqdn": result.state.fully_qualified_domain_name,
            "duration_seconds": result.duration_seconds,
        },
    )
    return EXIT_OK


def run() -> None:
    """Entry point for the operator."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
