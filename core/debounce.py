"""Coalesce rapid successive async calls behind a short quiet window."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Run the latest submitted coroutine per key once *delay* has elapsed.

    Submitting again for the same key before the window closes cancels the
    pending call, so only the newest one reaches the network. With a zero
    delay, ``submit`` awaits the call directly.
    """

    def __init__(self, delay: float) -> None:
        self.delay = max(delay, 0.0)
        self._pending: dict[str, asyncio.Task] = {}

    async def submit(self, key: str, factory: Callable[[], Awaitable[None]]) -> None:
        if self.delay == 0:
            await factory()
            return

        previous = self._pending.pop(key, None)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.debug("Superseded pending call for key=%r", key)

        task = asyncio.get_running_loop().create_task(self._run_later(factory))
        self._pending[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))

    async def _run_later(self, factory: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(self.delay)
        await factory()

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Debounced call for key=%r failed", key, exc_info=exc)

    def pending(self, key: str) -> bool:
        task = self._pending.get(key)
        return task is not None and not task.done()

    async def flush(self, key: str) -> None:
        """Wait until no call is pending for *key*, including ones submitted meanwhile."""
        while True:
            task = self._pending.get(key)
            if task is None or task.done():
                return
            await asyncio.wait({task})

    def cancel_all(self) -> None:
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
