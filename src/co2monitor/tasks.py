"""Registry of cancelable timers, sleeps and tasks on the event loop."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Tracks every timer, sleep and task the engine schedules.

    ``cancel_all`` cancels them together so nothing fires after shutdown.
    """

    def __init__(self) -> None:
        self._handles: set[asyncio.TimerHandle] = set()
        self._sleepers: set[asyncio.Future[None]] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of timers, sleeps and tasks not yet finished."""
        return len(self._handles) + len(self._sleepers) + len(self._tasks)

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        """Run ``callback`` after ``delay`` seconds unless canceled first."""
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._handles.discard(handle)
            callback()

        handle = loop.call_later(max(0.0, delay), fire)
        self._handles.add(handle)
        return handle

    def cancel(self, handle: asyncio.TimerHandle | None) -> None:
        if handle is None:
            return
        handle.cancel()
        self._handles.discard(handle)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def sleep(self, seconds: float) -> None:
        """Sleep that ``cancel_all`` interrupts with CancelledError."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def wake() -> None:
            if not waiter.done():
                waiter.set_result(None)

        handle = self.call_later(seconds, wake)
        self._sleepers.add(waiter)
        try:
            await waiter
        finally:
            self._sleepers.discard(waiter)
            self.cancel(handle)

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        for waiter in list(self._sleepers):
            waiter.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._handles.clear()

    async def shutdown(self) -> None:
        """Cancel everything and wait for canceled tasks to unwind."""
        tasks = list(self._tasks)
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Task registry shut down, %d pending", self.pending)
