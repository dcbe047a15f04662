"""FreshnessOrchestrator — stale-while-revalidate over the ResourceCache.

Per read it decides between serving from cache, serving and refreshing in
the background, and fetching synchronously. A read is never blocked on a
refresh once any current-provenance data exists.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog
from pydantic import BaseModel, ValidationError

from src.core.data.cache.resource_cache import CacheEntry, ResourceCache
from src.core.data.coalescer import UpstreamCoalescer
from src.core.data.errors import CacheCorrupt, StoreUnavailable, UpstreamError

logger = structlog.get_logger()

Fetch = Callable[[], Awaitable[BaseModel]]


@dataclass(frozen=True)
class ResourceClass:
    name: str
    fresh_ttl: float
    max_stale: float
    provenance: str
    model: type[BaseModel]


@dataclass
class ReadResult:
    payload: BaseModel
    from_cache: bool
    fresh: bool
    stale_if_error: bool = False
    age: float = 0.0

    @property
    def cache_status(self) -> str:
        if not self.from_cache:
            return "miss"
        if self.stale_if_error:
            return "stale-if-error"
        return "fresh" if self.fresh else "stale"

    @property
    def cache_source(self) -> str:
        return "cache" if self.from_cache else "api"


class FreshnessOrchestrator:

    def __init__(
        self,
        cache: ResourceCache,
        coalescer: UpstreamCoalescer,
        ceiling_seconds: float = 48 * 3600,
    ):
        self._cache = cache
        self._coalescer = coalescer
        self._ceiling = ceiling_seconds
        self._refreshing: dict[str, asyncio.Task] = {}

    @property
    def pending_refreshes(self) -> int:
        return len(self._refreshing)

    async def read(self, resource: ResourceClass, key: str, fetch: Fetch, force: bool = False) -> ReadResult:
        await self.sweep(key)

        if force:
            return await self._force_refresh(resource, key, fetch)

        current = await self._load_current(resource, key)
        if current is None:
            logger.info("cache.miss", resource=resource.name, key=key)
            payload = await self._fetch_and_store(resource, key, fetch)
            return ReadResult(payload, from_cache=False, fresh=True)

        payload, entry = current
        age = entry.age(self._cache.now())
        if age <= resource.fresh_ttl:
            logger.info("cache.hit", resource=resource.name, key=key, age=round(age, 1))
            return ReadResult(payload, from_cache=True, fresh=True, age=age)

        state = "stale" if age <= resource.max_stale else "expired"
        logger.info(f"cache.{state}", resource=resource.name, key=key, age=round(age, 1))
        self._schedule_refresh(resource, key, fetch)
        return ReadResult(payload, from_cache=True, fresh=False, age=age)

    async def peek(self, resource: ResourceClass, key: str) -> ReadResult | None:
        """Current-provenance entry within max-stale, without ever fetching."""
        current = await self._load_current(resource, key)
        if current is None:
            return None
        payload, entry = current
        age = entry.age(self._cache.now())
        if age > resource.max_stale:
            return None
        return ReadResult(payload, from_cache=True, fresh=age <= resource.fresh_ttl, age=age)

    async def sweep(self, key: str) -> bool:
        try:
            return await self._cache.sweep(key, self._ceiling)
        except StoreUnavailable as e:
            logger.warning("cache.sweep_failed", key=key, error=str(e))
            return False

    async def purge_incompatible(self, resource: ResourceClass, key: str) -> str | None:
        """Delete *key* when corrupt or from a foreign provider; returns why."""
        try:
            entry = await self._cache.load(key)
        except CacheCorrupt:
            await self._cache.delete(key)
            return "corrupt"
        if entry is not None and entry.provenance != resource.provenance:
            await self._cache.delete(key)
            return f"provenance:{entry.provenance or 'unknown'}"
        return None

    async def _force_refresh(self, resource: ResourceClass, key: str, fetch: Fetch) -> ReadResult:
        logger.info("cache.force_refresh", resource=resource.name, key=key)
        try:
            payload = await self._fetch_and_store(resource, key, fetch)
            return ReadResult(payload, from_cache=False, fresh=True)
        except UpstreamError as e:
            current = await self._load_current(resource, key)
            if current is None:
                logger.error("cache.no_fallback", resource=resource.name, key=key, error=str(e))
                raise
            payload, entry = current
            logger.warning("cache.stale_if_error", resource=resource.name, key=key, error=str(e))
            return ReadResult(
                payload, from_cache=True, fresh=False, stale_if_error=True,
                age=entry.age(self._cache.now()),
            )

    async def _load_current(self, resource: ResourceClass, key: str) -> tuple[BaseModel, CacheEntry] | None:
        """Load and decode *key*; anything not servable is deleted and reads as absent."""
        try:
            entry = await self._cache.load(key)
        except CacheCorrupt as e:
            logger.warning("cache.corrupt", key=key, error=str(e))
            await self._delete_quietly(key)
            return None
        except StoreUnavailable as e:
            logger.warning("cache.read_failed", key=key, error=str(e))
            return None
        if entry is None:
            return None

        if entry.provenance != resource.provenance:
            logger.info("cache.migration_purge", key=key, found=entry.provenance, active=resource.provenance)
            await self._delete_quietly(key)
            return None

        try:
            payload = resource.model.model_validate(entry.payload)
        except ValidationError as e:
            logger.warning("cache.invalid_payload", key=key, errors=e.error_count())
            await self._delete_quietly(key)
            return None
        return payload, entry

    async def _fetch_and_store(self, resource: ResourceClass, key: str, fetch: Fetch) -> BaseModel:
        async def perform() -> BaseModel:
            payload = await fetch()
            try:
                await self._cache.store(key, payload.model_dump(mode="json"), resource.provenance)
            except StoreUnavailable as e:
                logger.warning("cache.write_failed", key=key, error=str(e))
            else:
                logger.info("cache.stored", resource=resource.name, key=key)
            return payload

        return await self._coalescer.coalesce(key, perform)

    def _schedule_refresh(self, resource: ResourceClass, key: str, fetch: Fetch) -> None:
        if key in self._refreshing:
            logger.info("refresh.already_scheduled", key=key)
            return
        task = asyncio.create_task(self._refresh(resource, key, fetch))
        self._refreshing[key] = task

        def _done(t: asyncio.Task) -> None:
            if self._refreshing.get(key) is t:
                del self._refreshing[key]

        task.add_done_callback(_done)

    async def _refresh(self, resource: ResourceClass, key: str, fetch: Fetch) -> None:
        try:
            await self._fetch_and_store(resource, key, fetch)
            logger.info("refresh.ok", resource=resource.name, key=key)
        except UpstreamError as e:
            logger.warning("refresh.suppressed", resource=resource.name, key=key, code=e.code, error=str(e))
        except Exception as e:
            # Never surfaces to the reader that triggered the refresh
            logger.warning("refresh.failed", resource=resource.name, key=key, error=repr(e))

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self._cache.delete(key)
        except StoreUnavailable as e:
            logger.warning("cache.delete_failed", key=key, error=str(e))

    async def drain(self) -> None:
        """Wait for every scheduled background refresh to settle."""
        while self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._refreshing.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshing.clear()
