from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

from loguru import logger

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def build_cache_key(method: str, url: str, body: Any = None) -> str:
    serialized = "" if body is None else json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return f"{method.upper()}::{url}::{serialized}"


class RequestDeduplicator:
    """
    Single-flight for idempotent calls.

    Concurrent callers with the same (method, url, body) key share one underlying
    execution. The entry is dropped as soon as the call settles, so a later call always
    re-executes; this is a coalescer, not a response cache.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def should_dedupe(self, method: str, use_cache: bool | None = None) -> bool:
        if use_cache is not None:
            return bool(use_cache)
        return method.upper() in IDEMPOTENT_METHODS

    async def call(
        self,
        method: str,
        url: str,
        body: Any,
        execute: Callable[[], Awaitable[Any]],
        *,
        use_cache: bool | None = None,
    ) -> Any:
        if not self.should_dedupe(method, use_cache):
            return await execute()

        key = build_cache_key(method, url, body)
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(execute())
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"Joining in-flight request {key}")
        # Shield so one cancelled caller does not cancel the shared call.
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            # Mark retrieved; every waiter already received it through shield().
            task.exception()

    def reset(self) -> None:
        """
        Forget in-flight entries (running calls are not cancelled).
        """
        self._pending.clear()
