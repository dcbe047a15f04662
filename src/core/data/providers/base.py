"""Abstract providers. Every upstream source implements one of these."""
from abc import ABC, abstractmethod

from src.core.coins.registry import CoinConfig
from src.core.data.models import NewsFeed, PriceHistory, PriceSnapshot


class MarketDataProvider(ABC):

    @property
    @abstractmethod
    def name(self) -> str:
        """Provenance tag stamped on cached payloads: 'coincap', ..."""
        ...

    @abstractmethod
    async def fetch_snapshots(self, coins: list[CoinConfig]) -> dict[str, PriceSnapshot]:
        """Batched snapshot, keyed by CoinConfig.id."""
        ...

    @abstractmethod
    async def fetch_history(self, coin: CoinConfig, days: int) -> PriceHistory:
        """Price series sorted ascending by timestamp."""
        ...


class NewsProvider(ABC):

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def search(self, coin: CoinConfig) -> NewsFeed:
        ...


class LanguageModel(ABC):

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @property
    @abstractmethod
    def configured(self) -> bool:
        ...

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 1500,
        timeout: float = 8.0,
    ) -> str:
        """Return the reply text; raises LanguageModelError."""
        ...
