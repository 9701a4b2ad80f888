"""
Process-local timers for ready-check deadlines, veto turns and display refresh.

Every timer is an asyncio.Task stored under a key such as
("ready_check_deadline", 12) or ("veto_turn", 7). Scheduling a key replaces
whatever was scheduled under it. A one-shot timer drops its own handle before
running the callback, so a callback that cancels or reschedules its own key
never cancels itself.

Timers do not survive a restart. Callbacks must re-read the entity they act
on and do nothing if it has already moved on.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from matchbot.utils.logger import setup_logger

logger = setup_logger(__name__)

TimerCallback = Callable[..., Awaitable[Any]]


class TimerRegistry:
    """Cancellable one-shot and periodic timers keyed by entity."""

    def __init__(self):
        self._tasks: Dict[Hashable, asyncio.Task] = {}

    def schedule(self, key: Hashable, delay: float, callback: TimerCallback, *args) -> asyncio.Task:
        """Run callback(*args) once after delay seconds, replacing any timer under key."""
        self.cancel(key)
        task = asyncio.create_task(self._run_once(key, delay, callback, args), name=f"timer:{key}")
        self._tasks[key] = task
        return task

    def schedule_periodic(self, key: Hashable, interval: float, callback: TimerCallback, *args) -> asyncio.Task:
        """Run callback(*args) every interval seconds until cancelled."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.cancel(key)
        task = asyncio.create_task(self._run_periodic(key, interval, callback, args), name=f"timer:{key}")
        self._tasks[key] = task
        return task

    def cancel(self, *keys: Hashable) -> int:
        """Cancel the timers under keys. Returns how many were still scheduled."""
        cancelled = 0
        for key in keys:
            task = self._tasks.pop(key, None)
            if task is None or task.done():
                continue
            if task is asyncio.current_task():
                continue
            task.cancel()
            cancelled += 1
        return cancelled

    def cancel_all(self) -> int:
        """Cancel every timer. Called at shutdown."""
        return self.cancel(*list(self._tasks))

    def is_scheduled(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def get(self, key: Hashable) -> Optional[asyncio.Task]:
        return self._tasks.get(key)

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def _run_once(self, key, delay, callback, args):
        await asyncio.sleep(max(delay, 0))
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        try:
            await callback(*args)
        except Exception:
            logger.error(f"Timer {key} failed", exc_info=True)

    async def _run_periodic(self, key, interval, callback, args):
        while True:
            await asyncio.sleep(interval)
            try:
                await callback(*args)
            except Exception:
                logger.error(f"Periodic timer {key} failed", exc_info=True)
            # Cancelled or replaced from inside the callback
            if self._tasks.get(key) is not asyncio.current_task():
                return
