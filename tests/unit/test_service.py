"""Unit tests for MoodService."""
import asyncio

import pytest

from src.core.coins.registry import CoinConfig, get_coin
from src.core.config import Settings
from src.core.data.errors import RetriesExhausted, UnsupportedCoin, UpstreamPayloadError
from src.core.data.models import Headline, NewsFeed, PriceHistory, PricePoint, PriceSnapshot
from src.core.data.providers.base import LanguageModel, MarketDataProvider, NewsProvider
from src.core.data.store.memory import MemoryStore
from src.core.narration.narrator import NarrationStatus
from src.core.narration.request import ExplainRequest
from src.core.service import MoodService, clamp_days, create_store


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class MockMarket(MarketDataProvider):
    """Serves fixed prices, or fails when told to."""

    def __init__(self, prices: dict[str, float] | None = None, error: Exception | None = None,
                 delay: float = 0.0):
        self.prices = prices or {"bitcoin": 65_000.0, "ethereum": 3_200.0}
        self.error = error
        self.delay = delay
        self.snapshot_calls = 0
        self.history_calls = []

    @property
    def name(self) -> str:
        return "coincap"

    async def fetch_snapshots(self, coins: list[CoinConfig]) -> dict[str, PriceSnapshot]:
        self.snapshot_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {
            c.id: PriceSnapshot(coin=c.id, price=self.prices[c.id], symbol=c.symbol,
                                timestamp="2024-01-01T00:00:00Z", source=self.name)
            for c in coins if c.id in self.prices
        }

    async def fetch_history(self, coin: CoinConfig, days: int) -> PriceHistory:
        self.history_calls.append((coin.id, days))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return history(coin.id, days, 100.0)


class MockNews(NewsProvider):

    def __init__(self, titles: list[str] | None = None):
        self.titles = titles or []
        self.calls = 0

    @property
    def name(self) -> str:
        return "newsapi"

    async def search(self, coin: CoinConfig) -> NewsFeed:
        self.calls += 1
        headlines = [Headline(title=t, url=f"https://n/{i}") for i, t in enumerate(self.titles)]
        return NewsFeed(coin=coin.id, headlines=headlines, total=len(headlines), source=self.name)


class OfflineModel(LanguageModel):

    @property
    def model_name(self) -> str:
        return "offline"

    @property
    def configured(self) -> bool:
        return False

    async def chat(self, messages, temperature=0.3, max_tokens=1500, timeout=8.0):
        raise AssertionError("model must not be called")


def history(coin: str, days: int, last: float) -> PriceHistory:
    return PriceHistory(
        coin=coin,
        prices=[PricePoint(timestamp="2024-01-01T00:00:00Z", price=last - 1),
                PricePoint(timestamp="2024-01-02T00:00:00Z", price=last)],
        days=days, symbol=coin[:3].upper(), source="coincap",
    )


def _service(market=None, news=None, clock=None, **overrides):
    cfg = Settings(store_backend="memory", **overrides)
    store = MemoryStore()
    service = MoodService(
        store, market or MockMarket(), news or MockNews(), OfflineModel(), cfg=cfg, clock=clock or FakeClock()
    )
    return service, store


class TestClampDays:

    def test_default_and_bounds(self):
        assert clamp_days(None, 30) == 7
        assert clamp_days(0, 30) == 1
        assert clamp_days(-5, 30) == 1
        assert clamp_days(90, 30) == 30
        assert clamp_days(14, 30) == 14


class TestMarketData:

    @pytest.mark.asyncio
    async def test_price_miss_then_fresh(self):
        market = MockMarket()
        service, store = _service(market)

        first = await service.get_price("bitcoin")
        second = await service.get_price("bitcoin")

        assert first.cache_status == "miss"
        assert second.cache_status == "fresh"
        assert second.payload.price == 65_000.0
        assert market.snapshot_calls == 1
        assert store.keys() == ["price_bitcoin"]

    @pytest.mark.asyncio
    async def test_unknown_coin(self):
        service, _ = _service()
        with pytest.raises(UnsupportedCoin):
            await service.get_price("notacoin")

    @pytest.mark.asyncio
    async def test_coin_missing_from_batch(self):
        service, _ = _service(MockMarket(prices={"ethereum": 1.0}))
        with pytest.raises(UpstreamPayloadError):
            await service.get_price("bitcoin")

    @pytest.mark.asyncio
    async def test_concurrent_history_reads_share_one_call(self):
        market = MockMarket()
        service, store = _service(market)

        results = await asyncio.gather(
            service.get_history("ethereum", 7), service.get_history("ethereum", 7)
        )

        assert market.history_calls == [("ethereum", 7)]
        assert results[0].payload == results[1].payload
        assert store.keys() == ["history_ethereum_7"]

    @pytest.mark.asyncio
    async def test_history_days_clamped(self):
        market = MockMarket()
        service, store = _service(market)
        await service.get_history("bitcoin", 365)
        assert market.history_calls == [("bitcoin", 30)]
        assert store.keys() == ["history_bitcoin_30"]


class TestSentiment:

    @pytest.mark.asyncio
    async def test_summary_built_from_news(self):
        titles = [f"Bitcoin rally continues into day {i}" for i in range(12)]
        news = MockNews(titles)
        service, store = _service(news=news)

        result = await service.get_sentiment_summary("bitcoin")

        summary = result.payload
        assert summary.count == 12
        assert len(summary.headlines) == 10
        assert summary.headlines[0].title == titles[0]
        assert summary.source == "rule-based"
        assert summary.label == "Bullish"
        assert store.keys() == ["news_bitcoin", "sentiment_bitcoin"]

        again = await service.get_sentiment_summary("bitcoin")
        assert again.cache_status == "fresh"
        assert news.calls == 1

    @pytest.mark.asyncio
    async def test_score_headlines(self):
        service, _ = _service()
        score = await service.score_headlines([Headline(title="Exchange hack sparks panic selling")])
        assert score.label == "Bearish"


class TestCanonicalPrice:

    @pytest.mark.asyncio
    async def test_cache_first(self):
        market = MockMarket()
        service, _ = _service(market)
        await service.get_price("bitcoin")
        market.error = RetriesExhausted("https://x", 2, None)

        price, source = await service.canonical_price(get_coin("bitcoin"), 1.0)

        assert (price, source) == (65_000.0, "cache")
        assert market.snapshot_calls == 1

    @pytest.mark.asyncio
    async def test_live_when_not_cached(self):
        service, _ = _service()
        assert await service.canonical_price(get_coin("bitcoin"), 1.0) == (65_000.0, "live")

    @pytest.mark.asyncio
    async def test_history_when_live_fails(self):
        service, _ = _service(MockMarket(error=RetriesExhausted("https://x", 2, None)))
        await service.cache.store("history_bitcoin_7", history("bitcoin", 7, 64_321.0).model_dump(), "coincap")
        assert await service.canonical_price(get_coin("bitcoin"), 1.0) == (64_321.0, "history")

    @pytest.mark.asyncio
    async def test_client_price_last_resort(self):
        service, _ = _service(MockMarket(error=RetriesExhausted("https://x", 2, None)))
        assert await service.canonical_price(get_coin("bitcoin"), 61_000.5) == (61_000.5, "client")
        assert await service.canonical_price(get_coin("bitcoin"), None) == (None, "none")

    @pytest.mark.asyncio
    async def test_live_timeout_falls_through(self):
        service, _ = _service(MockMarket(delay=0.2), ai_price_timeout_seconds=0.05)
        assert await service.canonical_price(get_coin("bitcoin"), 60_000.0) == (60_000.0, "client")
        await asyncio.sleep(0.3)


class TestExplain:

    @pytest.mark.asyncio
    async def test_server_price_overrides_client(self):
        service, _ = _service()
        request = ExplainRequest(coin="bitcoin", timeframe=7, currentPrice=1.0, currentRSI=55.0)

        result = await service.explain(request)

        assert result.status == NarrationStatus.FALLBACK
        assert result.reason == "not-configured"
        assert result.context.price == "65000.00"
        assert "65000.00" in result.explanation

    @pytest.mark.asyncio
    async def test_no_price_anywhere(self):
        service, _ = _service(MockMarket(error=RetriesExhausted("https://x", 2, None)))
        result = await service.explain(ExplainRequest(coin="bitcoin", timeframe=7))

        assert result.reason == "price-fetch-failed"
        assert result.as_response()["fallbackReason"] == "price-fetch-failed"
        assert result.context.price == "0.00"
        assert "unavailable" in result.explanation
        assert "0.00" not in result.explanation
        assert "SMA" not in result.explanation

    @pytest.mark.asyncio
    async def test_chart_close_used_before_current_price(self):
        service, _ = _service(MockMarket(error=RetriesExhausted("https://x", 2, None)))
        request = ExplainRequest(coin="bitcoin", timeframe=7, priceData=[{"y": 61_000.5}], currentPrice=1.0)

        result = await service.explain(request)

        assert result.context.price == "61000.50"

    @pytest.mark.asyncio
    async def test_unknown_coin(self):
        service, _ = _service()
        with pytest.raises(UnsupportedCoin):
            await service.explain(ExplainRequest(coin="notacoin", timeframe=7))


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_purge_legacy_cache(self):
        service, store = _service()
        snap = {"coin": "bitcoin", "price": 1.0, "symbol": "BTC", "timestamp": "t", "source": "coingecko"}
        await service.cache.store("price_bitcoin", snap, "coingecko")
        await store.put("news_ethereum", b"\xc1")
        await service.cache.store("price_solana", snap | {"coin": "solana", "source": "coincap"}, "coincap")

        report = await service.purge_legacy_cache()

        assert report["status"] == "completed"
        assert report["checked"] == len(list(service.known_keys()))
        assert report["deleted"] == 2
        assert {"key": "price_bitcoin", "reason": "provenance:coingecko"} in report["keys"]
        assert {"key": "news_ethereum", "reason": "corrupt"} in report["keys"]
        assert report["errors"] == []
        assert store.keys() == ["price_solana"]

    @pytest.mark.asyncio
    async def test_sweep_removes_entries_past_ceiling(self):
        clock = FakeClock(0.0)
        service, store = _service(clock=clock)
        await service.get_price("bitcoin")
        clock.now = 12 * 3600
        await service.get_price("ethereum")

        clock.now = 49 * 3600
        assert await service.sweep() == 1
        assert store.keys() == ["price_ethereum"]

    @pytest.mark.asyncio
    async def test_sweep_covers_any_history_window(self):
        clock = FakeClock(0.0)
        service, store = _service(clock=clock)
        await service.get_history("bitcoin", 14)
        assert store.keys() == ["history_bitcoin_14"]

        clock.now = 72 * 3600
        assert await service.sweep() == 1
        assert store.keys() == []

    def test_known_keys_cover_every_class(self):
        service, _ = _service()
        keys = {key for _, key in service.known_keys()}
        assert {"price_bitcoin", "history_bitcoin_1", "history_bitcoin_7", "history_bitcoin_30",
                "news_bitcoin", "sentiment_bitcoin", "price_ripple"} <= keys
        assert {f"history_solana_{d}" for d in range(1, 31)} <= keys
        assert "history_bitcoin_31" not in keys

    @pytest.mark.asyncio
    async def test_aclose_drains_background_work(self):
        clock = FakeClock()
        service, _ = _service(clock=clock)
        await service.get_price("bitcoin")
        clock.now += 30
        await service.get_price("bitcoin")
        assert service.orchestrator.pending_refreshes == 1
        await service.aclose()
        assert service.orchestrator.pending_refreshes == 0

    def test_create_store_memory(self):
        assert isinstance(create_store(Settings(store_backend="memory")), MemoryStore)
