from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

from loguru import logger


class DebounceScheduler:
    """
    Single-slot delayed actions keyed by a logical operation id.

    Scheduling an occupied slot cancels the pending action and replaces it, so only the
    last call in a burst runs. Coroutine callbacks are started as tasks and tracked until
    they finish.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._slots: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, key: str, delay_s: float, callback: Callable[[], Any]) -> None:
        self.cancel(key)
        self._slots[key] = self.loop.call_later(max(0.0, float(delay_s)), self._fire, key, callback)

    def cancel(self, key: str) -> bool:
        handle = self._slots.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._slots):
            self.cancel(key)

    def is_pending(self, key: str) -> bool:
        return key in self._slots

    def has_pending(self) -> bool:
        return bool(self._slots)

    @property
    def running_tasks(self) -> set[asyncio.Task]:
        return set(self._tasks)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _fire(self, key: str, callback: Callable[[], Any]) -> None:
        self._slots.pop(key, None)
        result = callback()
        if inspect.isawaitable(result):
            self.track(asyncio.ensure_future(result))

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Debounced task failed")

    async def wait_idle(self) -> None:
        """
        Wait until no slot is pending and every started task has finished.
        """
        while self._slots or self._tasks:
            if self._tasks:
                await asyncio.wait(set(self._tasks))
            else:
                await asyncio.sleep(0.005)
