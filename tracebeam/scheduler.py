"""
Decides when the flush worker drains the queue.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class FlushScheduler:
    """
    Runs every drain on a single worker coroutine.

    Triggers only set flags and wake the worker, so overlapping requests are
    coalesced and never drain concurrently. A forced request drains the whole
    queue; a threshold request drains full batches only.

    All methods must be called on the worker loop.
    """

    def __init__(
        self,
        drain: Callable[[bool], Awaitable[None]],
        flush_interval: float,
    ):
        """
        Args:
            drain: Coroutine function draining the queue, called with the force flag
            flush_interval: Seconds before an armed timer forces a flush, 0 disables it
        """
        self._drain = drain
        self.flush_interval = flush_interval
        self._wakeup = asyncio.Event()
        self._force = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._stopped = False
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def request(self, force: bool = False) -> None:
        """Wake the worker."""
        if self._closed:
            return
        if force:
            self._force = True
            self.disarm()
        self._wakeup.set()

    def arm(self) -> None:
        """Start the one-shot interval timer unless already armed or stopped."""
        if self._stopped or self._timer is not None or self.flush_interval <= 0:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.flush_interval, self._on_timer)

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        logger.debug("Flush interval elapsed")
        self.request(force=True)

    def stop(self) -> None:
        """Cancel the timer for good. Explicit requests still run."""
        self._stopped = True
        self.disarm()

    async def close(self) -> None:
        """Stop the worker once the drain in progress, if any, completes."""
        self.stop()
        self._closed = True
        self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            force, self._force = self._force, False
            if force or not self._closed:
                try:
                    await self._drain(force)
                except Exception:
                    logger.exception("Flush cycle failed")

            if self._closed:
                break
