"""BackoffLedger — durable "do not call upstream X until T" records.

Records live in the shared key-value store so every instance honours them.
Writes are unlocked: two instances may race and one update may be lost,
which costs at most one extra upstream call.
"""
import time
from typing import Callable

import structlog

from src.core.data.errors import StoreUnavailable
from src.core.data.store.base import KeyValueStore

logger = structlog.get_logger()


class BackoffLedger:

    PREFIX = "backoff_"

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def _key(self, resource_id: str) -> str:
        return f"{self.PREFIX}{resource_id}"

    async def get_backoff(self, resource_id: str) -> float:
        """Epoch seconds until which *resource_id* is blocked, 0.0 if unblocked."""
        try:
            raw = await self._store.get(self._key(resource_id))
        except StoreUnavailable as e:
            logger.warning("backoff.read_failed", resource=resource_id, error=str(e))
            return 0.0
        if not raw:
            return 0.0
        try:
            return float(raw.decode() if isinstance(raw, bytes) else raw)
        except (UnicodeDecodeError, ValueError):
            logger.warning("backoff.unparseable", resource=resource_id)
            return 0.0

    async def set_backoff(self, resource_id: str, until: float) -> float:
        """Record a block until *until*; never shortens an existing block.

        Returns the effective blocked-until timestamp.
        """
        current = await self.get_backoff(resource_id)
        if current >= until:
            logger.info("backoff.kept", resource=resource_id, until=current, proposed=until)
            return current
        try:
            await self._store.put(self._key(resource_id), repr(float(until)).encode())
        except StoreUnavailable as e:
            logger.warning("backoff.write_failed", resource=resource_id, error=str(e))
            return current
        logger.warning("backoff.set", resource=resource_id, seconds=round(until - self._clock(), 2))
        return until

    async def blocked_for(self, resource_id: str) -> float:
        """Seconds remaining on the block, 0.0 once expired."""
        until = await self.get_backoff(resource_id)
        return max(0.0, until - self._clock())
