"""In-process scheduling for webhook work.

Two kinds of background work go through here: fire-and-forget tasks
(``spawn``) and delayed retries (``schedule``). Both run on the current event
loop and neither survives a restart; pending retries are recovered from the
database by the delivery engine's due-retry sweep at startup.
"""

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Coroutine
from uuid import UUID

from hookrelay.core.clock import Clock, SystemClock
from hookrelay.core.metrics import webhook_retries_scheduled

logger = logging.getLogger(__name__)

RetryCallback = Callable[[UUID], Any]


class RetryScheduler:
    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._timers: dict[UUID, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def scheduled_ids(self) -> set[UUID]:
        return set(self._timers)

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    def schedule(self, delivery_id: UUID, at: datetime, callback: RetryCallback) -> None:
        """Run ``callback(delivery_id)`` at or after ``at``.

        A second schedule for the same delivery replaces the first, so a
        delivery never has more than one armed timer.
        """
        loop = asyncio.get_running_loop()
        delay = max((at - self._clock.now()).total_seconds(), 0.0)

        previous = self._timers.pop(delivery_id, None)
        if previous is not None:
            previous.cancel()

        self._timers[delivery_id] = loop.call_later(
            delay, self._fire, delivery_id, callback
        )
        webhook_retries_scheduled.set(len(self._timers))
        logger.debug(f"Retry for delivery {delivery_id} armed in {delay:.0f}s")

    def cancel(self, delivery_id: UUID) -> bool:
        handle = self._timers.pop(delivery_id, None)
        webhook_retries_scheduled.set(len(self._timers))
        if handle is None:
            return False
        handle.cancel()
        return True

    def spawn(self, coro: Coroutine, name: str | None = None) -> asyncio.Task:
        """Run a coroutine in the background; failures are logged, never raised."""
        task = asyncio.get_running_loop().create_task(
            self._guard(coro, name or "webhook-task"), name=name
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _fire(self, delivery_id: UUID, callback: RetryCallback) -> None:
        self._timers.pop(delivery_id, None)
        webhook_retries_scheduled.set(len(self._timers))
        self.spawn(
            self._run_callback(callback, delivery_id),
            name=f"webhook-retry-{delivery_id}",
        )

    @staticmethod
    async def _run_callback(callback: RetryCallback, delivery_id: UUID) -> None:
        result = callback(delivery_id)
        if inspect.isawaitable(result):
            await result

    @staticmethod
    async def _guard(coro: Coroutine, name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Background task {name} failed")

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Disarm all timers and cancel running tasks.

        Retries that were pending stay pending in the database.
        """
        for handle in self._timers.values():
            handle.cancel()
        disarmed = len(self._timers)
        self._timers.clear()
        webhook_retries_scheduled.set(0)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if disarmed or tasks:
            logger.info(
                f"Retry scheduler stopped ({disarmed} timers disarmed, "
                f"{len(tasks)} tasks cancelled)"
            )
