"""Admission control for concurrent Graph API requests.

Microsoft Graph allows at most four concurrent requests per mailbox. The
AdmissionController bounds how many logical requests may be in flight at
once and keeps a sliding one-minute window of admission timestamps for
throughput accounting.

Waiting callers poll at a fixed interval rather than queueing, so there is
no FIFO fairness: under sustained saturation a caller may be overtaken.

Example:
    admission = AdmissionController(max_concurrent=4)

    async with admission.admit():
        response = await send_request()
"""

import asyncio
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from outlook_mcp.core.logging import get_logger

logger = get_logger(__name__)

# Per-mailbox concurrency ceiling documented for Microsoft Graph
DEFAULT_MAX_CONCURRENT = 4
DEFAULT_POLL_INTERVAL = 0.1  # seconds
DEFAULT_WINDOW_SECONDS = 60.0


class AdmissionController:
    """Counting gate that admits at most ``max_concurrent`` callers at a time.

    Check-and-increment happens under an asyncio.Lock so two coroutines can
    never both observe the last free slot before either claims it.

    Attributes:
        max_concurrent: Maximum number of admitted callers
        poll_interval: Seconds between re-checks while at the ceiling
        window_seconds: Age after which window timestamps are purged
        active: Number of currently admitted callers
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")

        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.window_seconds = window_seconds
        self.active = 0
        self._window: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def requests_in_window(self) -> int:
        """Number of admissions recorded in the current sliding window."""
        self._purge_window(time.monotonic())
        return len(self._window)

    async def acquire(self) -> None:
        """Wait until a slot is free, then claim it."""
        waited = False
        while True:
            async with self._lock:
                now = time.monotonic()
                self._purge_window(now)
                if self.active < self.max_concurrent:
                    self.active += 1
                    self._window.append(now)
                    return

            if not waited:
                logger.debug(
                    "admission_waiting",
                    active=self.active,
                    max_concurrent=self.max_concurrent,
                )
                waited = True
            await asyncio.sleep(self.poll_interval)

    def release(self) -> None:
        """Give back a slot claimed by acquire().

        Raises:
            RuntimeError: If called more times than acquire()
        """
        if self.active <= 0:
            raise RuntimeError("AdmissionController.release() called without a matching acquire()")
        self.active -= 1

    @asynccontextmanager
    async def admit(self) -> AsyncIterator[None]:
        """Hold a slot for the duration of the block, releasing it on every exit path."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def _purge_window(self, now: float) -> None:
        """Drop admission timestamps older than the window."""
        cutoff = now - self.window_seconds
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()
