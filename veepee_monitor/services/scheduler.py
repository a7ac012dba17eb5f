"""
Fixed-interval background loops.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set


class PeriodicTask:
    """
    Run an async callback every ``interval`` seconds.

    The next run is only armed after the previous one has finished, so a
    slow callback delays the schedule instead of overlapping itself.
    ``stop`` ends the loop without cancelling a callback that is already
    running; that call completes normally. A run started while a stopped
    one is still inside its callback waits for it, so callbacks never
    overlap.
    """

    def __init__(self, name: str, callback: Callable[[], Awaitable[None]], interval: float):
        self.name = name
        self.callback = callback
        self.interval = interval
        self.logger = logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self, immediate: bool = True) -> bool:
        """Start the loop. Returns False if it was already running."""
        if self.is_running:
            return False

        # each run gets its own event so a late stop cannot end a newer run
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event, immediate, self._task))
        self._tasks.add(self._task)
        self._task.add_done_callback(self._tasks.discard)
        self.logger.info(f"{self.name} started (interval: {self.interval}s)")
        return True

    def stop(self) -> bool:
        """Stop scheduling further runs. Returns False if it was not running."""
        if not self.is_running:
            return False
        self._stop_event.set()
        self.logger.info(f"{self.name} stopped")
        return True

    async def _run(self, stop_event: asyncio.Event, immediate: bool,
                   previous: Optional[asyncio.Task]) -> None:
        if previous is not None and not previous.done():
            await asyncio.gather(previous, return_exceptions=True)

        if not immediate and await self._wait(stop_event):
            return

        while not stop_event.is_set():
            try:
                await self.callback()
            except Exception as e:
                self.logger.error(f"{self.name} run failed: {e}", exc_info=True)

            if await self._wait(stop_event):
                return

    async def _wait(self, stop_event: asyncio.Event) -> bool:
        """Sleep for one interval. Returns True if stopped meanwhile."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return stop_event.is_set()

    async def close(self) -> None:
        """Stop and wait for every loop, including any in-flight callback."""
        self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._task = None
