"""Blocking waits on Azure long-running operations.

Azure acknowledges create/update/delete requests immediately and completes
them asynchronously. The SDK returns an LROPoller for each; this module turns
that poller into a call that only returns once the operation is terminal.

Termination is driven only by the operation's own terminal state or by the
caller's cancellation event (for example an invocation deadline). There is no
iteration cap.

Blocking SDK calls run in the default executor so the cancellation event can
be observed while they are in flight.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from azure.core.exceptions import HttpResponseError

from .errors import OperationCancelledError, OperationFailedError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 10.0

# Terminal LRO statuses that are not a success
FAILED_STATUSES = frozenset({"failed", "canceled", "cancelled"})

T = TypeVar("T")


class Poller(Protocol):
    """The subset of azure.core.polling.LROPoller used here."""

    def done(self) -> bool: ...

    def status(self) -> str: ...

    def result(self, timeout: float | None = None) -> Any: ...


def _error_detail(error: HttpResponseError) -> str:
    # Prefer the ARM error body (code: message) over the generic HTTP text
    odata = getattr(error, "error", None)
    if odata is not None and getattr(odata, "code", None):
        return f"{odata.code}: {odata.message}"
    return error.message or str(error)


async def run_cancellable(
    func: Callable[..., T],
    *args: Any,
    cancel_event: asyncio.Event | None = None,
    operation: str = "Azure call",
    **kwargs: Any,
) -> T:
    """Run a blocking call in the executor, abandoning it if cancelled.

    Exceptions raised by ``func`` propagate unchanged.

    Raises:
        OperationCancelledError: If the cancellation event fires first.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(operation)

    loop = asyncio.get_running_loop()
    call = loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    if cancel_event is None:
        return await call

    cancelled = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({call, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not cancelled.done():
            cancelled.cancel()

    if call.done():
        return call.result()

    # The executor thread cannot be interrupted; its result is discarded
    call.cancel()
    raise OperationCancelledError(operation)


class OperationWaiter:
    """Waits for an LROPoller to reach a terminal state."""

    def __init__(self, poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS) -> None:
        if poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must not be negative")
        self._poll_interval_seconds = poll_interval_seconds

    @property
    def poll_interval_seconds(self) -> float:
        """Seconds between status checks."""
        return self._poll_interval_seconds

    async def wait(
        self,
        poller: Poller,
        *,
        operation: str,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Block until the operation behind ``poller`` is terminal.

        Args:
            poller: The poller returned by a ``begin_*`` SDK call.
            operation: Human-readable operation name for errors and logs.
            cancel_event: Optional event that aborts the wait when set.

        Returns:
            The operation's result.

        Raises:
            OperationFailedError: If the operation ends in a failed state.
            OperationCancelledError: If ``cancel_event`` is set before completion.
        """
        start = time.monotonic()
        polls = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Wait cancelled",
                    extra={"operation": operation, "polls": polls},
                )
                raise OperationCancelledError(operation)

            if poller.done():
                break

            polls += 1
            logger.debug(
                "Operation in progress",
                extra={"operation": operation, "status": poller.status(), "polls": polls},
            )

            if cancel_event is None:
                await asyncio.sleep(self._poll_interval_seconds)
                continue

            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=self._poll_interval_seconds)
            except TimeoutError:
                # Normal timeout, poll again
                pass

        status = poller.status()
        try:
            result = await run_cancellable(
                poller.result, cancel_event=cancel_event, operation=operation
            )
        except HttpResponseError as e:
            logger.error(
                "Operation failed",
                extra={"operation": operation, "status": status, "error": _error_detail(e)},
            )
            raise OperationFailedError(operation, _error_detail(e)) from e

        # Some pollers report a failed terminal status without raising
        if isinstance(status, str) and status.lower() in FAILED_STATUSES:
            raise OperationFailedError(operation, f"operation finished with status {status}")

        logger.info(
            "Operation completed",
            extra={
                "operation": operation,
                "duration_seconds": round(time.monotonic() - start, 3),
                "polls": polls,
            },
        )
        return result
