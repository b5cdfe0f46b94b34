"""
Waiter for provider long-running operations (GCP compute operations).

`OperationPoller.wait` checks the operation straight away, then re-checks
every interval until one of three things happens:

  1. the operation reaches a terminal state (DONE / DONE_WITH_ERROR),
  2. the overall timeout elapses, or
  3. the caller's `RequestContext` is cancelled.

Ticks, the deadline and cancellation all wake the same
``cancel_event.wait(...)`` call, so whichever fires first wins.  An initial
status that is already terminal returns without any fetch.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from cloudnet.context import RequestContext
from cloudnet.errors import (
    InternalError,
    NetworkError,
    OperationCancelledError,
    OperationTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_TIMEOUT = 30 * 60.0


class OperationState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    DONE_WITH_ERROR = "DONE_WITH_ERROR"

    @property
    def terminal(self) -> bool:
        return self in (OperationState.DONE, OperationState.DONE_WITH_ERROR)


@dataclass
class OperationHandle:
    """Provider-assigned operation id plus what it is acting on."""

    name: str
    kind: str
    target: str
    # None for global operations
    region: Optional[str] = None


@dataclass
class OperationStatus:
    state: OperationState
    error: Optional[dict] = None
    raw: dict = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.state == OperationState.DONE_WITH_ERROR or bool(self.error)


StatusFetcher = Callable[[OperationHandle], OperationStatus]


class OperationPoller:
    def __init__(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self.timeout = timeout
        self._clock = clock

    def wait(
        self,
        handle: OperationHandle,
        fetch: StatusFetcher,
        ctx: RequestContext,
        initial: Optional[OperationStatus] = None,
    ) -> OperationStatus:
        """
        Block until *handle* completes.

        Parameters
        ----------
        handle : OperationHandle
            The operation returned by the mutating provider call.
        fetch : callable
            Returns the current `OperationStatus` for *handle*.
        ctx : RequestContext
            Carries the cancellation signal.
        initial : OperationStatus, optional
            Status already returned by the mutating call.  A terminal one is
            resolved without waiting.

        Raises
        ------
        InternalError
            The operation finished with an error payload or its status could
            not be fetched.
        OperationTimeoutError
            The operation did not finish within ``timeout`` seconds.
        OperationCancelledError
            The request context was cancelled while waiting.
        """
        if initial is not None and (initial.state.terminal or initial.error):
            return self._resolve(handle, initial)

        deadline = self._clock() + self.timeout
        logger.info(
            "Waiting for %s operation %s on %s (interval=%ss, timeout=%ss)",
            handle.kind, handle.name, handle.target, self.interval, self.timeout,
        )

        while True:
            if ctx.cancelled:
                raise self._cancelled(handle)
            status = self._fetch(handle, fetch)
            if status.state.terminal or status.error:
                return self._resolve(handle, status)
            logger.debug("Operation %s is %s", handle.name, status.state.value)

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise self._timeout(handle)
            if ctx.cancel_event.wait(min(self.interval, remaining)):
                raise self._cancelled(handle)
            if self._clock() >= deadline:
                raise self._timeout(handle)

    # ── Internal helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _fetch(handle: OperationHandle, fetch: StatusFetcher) -> OperationStatus:
        try:
            return fetch(handle)
        except NetworkError:
            raise
        except Exception as exc:
            raise InternalError(
                f"Failed to get operation status: {exc}",
                details={"operation": handle.name},
            ) from exc

    @staticmethod
    def _cancelled(handle: OperationHandle) -> OperationCancelledError:
        logger.warning("Stopped waiting for operation %s: request cancelled", handle.name)
        return OperationCancelledError(
            f"Cancelled while waiting for operation {handle.name}",
            details={"operation": handle.name, "target": handle.target},
        )

    def _resolve(self, handle: OperationHandle, status: OperationStatus) -> OperationStatus:
        if status.failed:
            logger.error("Operation %s failed: %s", handle.name, status.error)
            raise InternalError(
                f"Operation failed: {status.error}",
                details={"operation": handle.name, "target": handle.target, "error": status.error},
            )
        logger.info("Operation %s on %s completed", handle.name, handle.target)
        return status

    def _timeout(self, handle: OperationHandle) -> OperationTimeoutError:
        logger.error("Operation %s timed out after %ss", handle.name, self.timeout)
        return OperationTimeoutError(
            "Operation timeout",
            details={"operation": handle.name, "target": handle.target, "timeout_seconds": self.timeout},
        )
