"""Cache entries as msgpack envelopes of {payload, provenance, fetched_at}."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

import msgpack
import structlog

from src.core.data.errors import CacheCorrupt
from src.core.data.store.base import KeyValueStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: dict
    provenance: str
    fetched_at: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.fetched_at)


class ResourceCache:

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    async def load(self, key: str) -> CacheEntry | None:
        """Return the stored entry, None when absent; raises CacheCorrupt."""
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            doc = msgpack.unpackb(raw, raw=False)
        except (ValueError, TypeError) as e:  # ExtraData, FormatError, bad utf-8
            raise CacheCorrupt(key, f"undecodable: {e}") from e
        if not isinstance(doc, dict) or not isinstance(doc.get("payload"), dict):
            raise CacheCorrupt(key, "missing payload")
        fetched_at = doc.get("fetched_at")
        if not isinstance(fetched_at, (int, float)):
            raise CacheCorrupt(key, "missing fetched_at")
        payload = doc["payload"]
        # Entries written before provenance tagging carry it in the payload only
        provenance = doc.get("provenance") or payload.get("source") or ""
        return CacheEntry(key, payload, str(provenance), float(fetched_at))

    async def store(
        self, key: str, payload: dict, provenance: str, fetched_at: float | None = None
    ) -> CacheEntry:
        entry = CacheEntry(key, payload, provenance, self._clock() if fetched_at is None else fetched_at)
        await self._store.put(
            key,
            msgpack.packb(
                {"payload": entry.payload, "provenance": entry.provenance, "fetched_at": entry.fetched_at},
                use_bin_type=True,
            ),
        )
        return entry

    async def delete(self, key: str) -> None:
        await self._store.delete(key)

    async def sweep(self, key: str, ceiling: float) -> bool:
        """Delete *key* if older than *ceiling* seconds (or corrupt). True if deleted."""
        try:
            entry = await self.load(key)
        except CacheCorrupt as e:
            logger.warning("cache.sweep_corrupt", key=key, error=str(e))
            await self.delete(key)
            return True
        if entry is None:
            return False
        age = entry.age(self._clock())
        if age > ceiling:
            logger.info("cache.sweep_deleted", key=key, age_seconds=int(age))
            await self.delete(key)
            return True
        return False
