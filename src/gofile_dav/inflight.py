"""
gofile_dav/inflight.py - Per-key request coalescing
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any

logger = logging.getLogger(__name__)


class InflightMap:
    """
    Shares one running task per key between all concurrent callers.

    The first caller for a key starts ``factory()`` as a task; later callers
    await the same task. Waiters are shielded, so one cancelled waiter does
    not cancel the fetch for the others. The key is released as soon as the
    task finishes, successfully or not.
    """

    def __init__(self):
        self._tasks: dict[Hashable, asyncio.Task] = {}
        self.stats = {"started": 0, "joined": 0}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        # Mark the exception retrieved when nobody is left waiting
        if not task.cancelled():
            task.exception()

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
            self.stats["started"] += 1
        else:
            self.stats["joined"] += 1
            logger.debug(f"Joining in-flight request for {key!r}")
        return await asyncio.shield(task)

    def discard(self, key: Hashable) -> None:
        """Forget the task for ``key`` without cancelling it"""
        self._tasks.pop(key, None)

    def cancel_all(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks.clear()
