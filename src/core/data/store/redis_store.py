"""Redis-backed key-value store."""
import redis.asyncio as redis
from redis.exceptions import RedisError

from src.core.data.errors import StoreUnavailable
from src.core.data.store.base import KeyValueStore


class RedisStore(KeyValueStore):

    def __init__(self, redis_url: str = "redis://localhost:6379", namespace: str = "mood"):
        self.client = redis.from_url(redis_url)
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> bytes | None:
        try:
            return await self.client.get(self._key(key))
        except RedisError as e:
            raise StoreUnavailable(f"redis get {key!r} failed: {e}") from e

    async def put(self, key: str, value: bytes) -> None:
        try:
            await self.client.set(self._key(key), value)
        except RedisError as e:
            raise StoreUnavailable(f"redis set {key!r} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            raise StoreUnavailable(f"redis delete {key!r} failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()
