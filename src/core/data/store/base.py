"""Abstract KeyValueStore, the durable store shared by every instance."""
from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Single-key operations only; each call is independently atomic.

    Implementations raise StoreUnavailable when the backend cannot be reached.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        ...

    @abstractmethod
    async def put(self, key: str, value: bytes) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        return None
