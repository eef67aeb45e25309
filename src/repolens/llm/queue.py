"""Process-wide serialization point for calls to the inference endpoint.

The external rate limit (a handful of requests per minute per API key)
applies to the whole process, so every outbound call goes through one
``RequestQueue``:

- operations run one at a time, in the order ``schedule()`` was called;
- each operation starts at least ``min_interval`` seconds after the start
  of the previous one;
- operations that make more than one call (retries) go through ``pace()``
  before each call, so the spacing holds between calls, not just slots;
- a failing operation never blocks the ones queued behind it;
- nothing is cancellable once scheduled.

The queue is an explicit object injected into the pipeline.  A default
instance is available through ``get_default_queue()`` for callers that do
not manage their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Free tier is ~15 requests/minute: one call every 4s, minus a little slack
# because retries back off on their own.
DEFAULT_MIN_INTERVAL = 3.5


class RequestQueue:
    """FIFO queue enforcing minimum spacing between operation starts.

    Parameters
    ----------
    min_interval
        Minimum number of seconds between the starts of two operations.
    clock
        Monotonic time source (seconds).
    sleep
        Coroutine used to wait; tests inject a fake that advances *clock*.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_start: Optional[float] = None
        self._slot_unused = False
        self._tail: Optional[asyncio.Future] = None
        self._submitted = 0

    @property
    def pending(self) -> int:
        """Operations scheduled but not finished yet."""
        return self._submitted

    def schedule(self, operation: Callable[[], Awaitable[T]]) -> asyncio.Task[T]:
        """Queue *operation* and return a task resolving to its result.

        Must be called from a running event loop.  The position in the queue
        is fixed by this call, not by when the returned task is awaited.
        """
        loop = asyncio.get_running_loop()
        previous = self._tail
        task = loop.create_task(self._run_after(previous, operation))
        self._tail = task
        self._submitted += 1
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Future) -> None:
        self._submitted -= 1
        if self._tail is task:
            self._tail = None

    async def _run_after(
        self,
        previous: Optional[asyncio.Future],
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        if previous is not None and not previous.done():
            # asyncio.wait never raises the predecessor's exception.
            await asyncio.wait({previous})
        await self._wait_for_slot()
        self._last_start = self._clock()
        self._slot_unused = True
        try:
            return await operation()
        finally:
            self._slot_unused = False

    async def pace(self) -> None:
        """Wait until the next outbound call may go out, then record it.

        The first call of a running operation is covered by the operation's
        own start and does not wait again.
        """
        if self._slot_unused:
            self._slot_unused = False
            return
        await self._wait_for_slot()
        self._last_start = self._clock()

    async def _wait_for_slot(self) -> None:
        if self._last_start is None:
            return
        elapsed = self._clock() - self._last_start
        if elapsed < self.min_interval:
            wait = self.min_interval - elapsed
            logger.debug("Request queue: waiting %.2fs before next call", wait)
            await self._sleep(wait)


_default_queue: RequestQueue | None = None


def get_default_queue() -> RequestQueue:
    """Return (and lazily create) the process-wide queue."""
    global _default_queue
    if _default_queue is None:
        _default_queue = RequestQueue()
    return _default_queue


def reset_default_queue() -> None:
    """Forget the process-wide queue (useful for testing)."""
    global _default_queue
    _default_queue = None
