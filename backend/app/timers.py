from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerRegistry:
    """Single-shot delayed callbacks, at most one armed per key."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def arm(self, key: str, delay: float, callback: TimerCallback) -> None:
        self.cancel(key)
        self._tasks[key] = asyncio.create_task(self._run(key, delay, callback))

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def is_armed(self, key: str) -> bool:
        return key in self._tasks

    async def _run(self, key: str, delay: float, callback: TimerCallback):
        await asyncio.sleep(delay)

        # detach before firing so the callback is free to arm the next timer
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]

        try:
            await callback()
        except Exception:
            logger.exception("Timer callback for %s failed", key)
