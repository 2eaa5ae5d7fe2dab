"""
Cancel-and-reschedule debouncing on the asyncio event loop.
"""
import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional

from app.utils import get_logger


log = get_logger(__name__)


class Debouncer:
    """
    Run an async callback once the caller has been quiet for ``delay`` seconds.

    Each ``schedule()`` cancels the pending timer and starts a new one. Runs
    are serialised, so at most one callback is in flight at a time.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> bool:
        """A run is scheduled but has not started."""
        return self._handle is not None

    @property
    def busy(self) -> bool:
        """A run is scheduled or in flight."""
        return self.pending or bool(self._tasks)

    def schedule(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.ensure_future(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        async with self._lock:
            try:
                await self._callback()
            except Exception:
                log.exception("Debounced callback failed")

    async def flush(self) -> None:
        """Run a pending callback now and wait for in-flight runs to finish."""
        if self._handle is not None:
            self.cancel()
            await self._run()
        if self._tasks:
            await asyncio.gather(*self._tasks)
