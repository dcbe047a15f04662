"""One physical upstream call per key at any instant."""
import asyncio
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger()


class UpstreamCoalescer:
    """Concurrent callers for the same key share a single in-flight task.

    The registry entry is dropped inside the task itself before it settles,
    so a failed call is never cached and the next caller starts afresh.
    Instance-local: across processes this only reduces load.
    """

    def __init__(self):
        self._inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def inflight(self, key: str) -> bool:
        return key in self._inflight

    async def coalesce(self, key: str, perform: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, perform))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        else:
            logger.info("coalesce.joined", key=key)
        # shield: a cancelled caller must not cancel the call others await
        return await asyncio.shield(task)

    async def _run(self, key: str, perform: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await perform()
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]


def _consume_exception(task: asyncio.Task) -> None:
    # Every waiter may have been cancelled; mark the exception retrieved.
    if not task.cancelled():
        task.exception()
