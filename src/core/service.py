"""MoodService — the one object that owns every shared resource.

Constructed once per process (in the FastAPI lifespan) and handed to request
handlers through a dependency. It owns the store client, the backoff ledger,
the in-flight coalescer map, the upstream HTTP session and the providers;
nothing below it is reached through module globals.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Iterator

import aiohttp
import structlog

from src.core.coins.registry import COIN_REGISTRY, CoinConfig, get_coin
from src.core.config import Settings, settings
from src.core.data.backoff import BackoffLedger
from src.core.data.cache.orchestrator import FreshnessOrchestrator, ReadResult, ResourceClass
from src.core.data.cache.resource_cache import ResourceCache
from src.core.data.coalescer import UpstreamCoalescer
from src.core.data.errors import StoreUnavailable, UpstreamError, UpstreamPayloadError
from src.core.data.fetcher import RetryingFetcher, RetryPolicy
from src.core.data.models import (
    Headline,
    HeadlineRef,
    NewsFeed,
    PriceHistory,
    PriceSnapshot,
    SentimentSummary,
)
from src.core.data.providers.base import LanguageModel, MarketDataProvider, NewsProvider
from src.core.data.providers.coincap import CoinCapProvider
from src.core.data.providers.cohere import CohereClient
from src.core.data.providers.newsapi import NewsApiProvider
from src.core.data.store.base import KeyValueStore
from src.core.data.store.memory import MemoryStore
from src.core.data.store.redis_store import RedisStore
from src.core.narration.context import build_context, minimal_context
from src.core.narration.narrator import PRICE_UNAVAILABLE, ComplianceNarrator, NarrationResult
from src.core.narration.request import ExplainRequest
from src.core.sentiment.mood import MoodClassifier, MoodRequest, MoodResult
from src.core.sentiment.scoring import SentimentScore, SentimentScorer

logger = structlog.get_logger()

SENTIMENT_PROVENANCE = "sentiment_v2"
SENTIMENT_HEADLINES = 10
DEFAULT_HISTORY_DAYS = 7


def clamp_days(days: int | None, max_days: int) -> int:
    if days is None:
        return DEFAULT_HISTORY_DAYS
    return max(1, min(int(days), max_days))


class MoodService:

    def __init__(
        self,
        store: KeyValueStore,
        market: MarketDataProvider,
        news: NewsProvider,
        llm: LanguageModel,
        cfg: Settings = settings,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.market = market
        self.news = news
        self.llm = llm
        self.cfg = cfg
        self._session = session

        self.coalescer = UpstreamCoalescer()
        self.cache = ResourceCache(store, clock=clock)
        self.orchestrator = FreshnessOrchestrator(
            self.cache, self.coalescer, ceiling_seconds=cfg.cache_ceiling_hours * 3600
        )
        self.narrator = ComplianceNarrator(
            llm,
            model_timeout=cfg.ai_model_timeout_seconds,
            repair_timeout=cfg.ai_repair_timeout_seconds,
            total_timeout=cfg.ai_total_timeout_seconds,
        )
        self.scorer = SentimentScorer(llm, timeout=cfg.ai_model_timeout_seconds)
        self.moods = MoodClassifier(llm, timeout=cfg.ai_model_timeout_seconds)

        self.price_class = ResourceClass(
            "price", cfg.price_fresh_seconds, cfg.price_max_stale_seconds, market.name, PriceSnapshot
        )
        self.history_class = ResourceClass(
            "history", cfg.history_fresh_seconds, cfg.history_max_stale_seconds, market.name, PriceHistory
        )
        self.news_class = ResourceClass(
            "news", cfg.news_fresh_seconds, cfg.news_max_stale_seconds, news.name, NewsFeed
        )
        self.sentiment_class = ResourceClass(
            "sentiment", cfg.sentiment_fresh_seconds, cfg.sentiment_max_stale_seconds,
            SENTIMENT_PROVENANCE, SentimentSummary,
        )

    # ── Market data ─────────────────────────────────────────────────────────

    async def get_price(self, coin_id: str, force: bool = False) -> ReadResult:
        coin = get_coin(coin_id)

        async def fetch() -> PriceSnapshot:
            snapshots = await self.market.fetch_snapshots([coin])
            if coin.id not in snapshots:
                raise UpstreamPayloadError(f"No valid price data for {coin.id}")
            return snapshots[coin.id]

        return await self.orchestrator.read(self.price_class, f"price_{coin.id}", fetch, force=force)

    async def get_history(self, coin_id: str, days: int | None = None, force: bool = False) -> ReadResult:
        coin = get_coin(coin_id)
        days = clamp_days(days, self.cfg.history_max_days)

        async def fetch() -> PriceHistory:
            return await self.market.fetch_history(coin, days)

        return await self.orchestrator.read(
            self.history_class, f"history_{coin.id}_{days}", fetch, force=force
        )

    # ── News & sentiment ────────────────────────────────────────────────────

    async def get_news(self, coin_id: str, force: bool = False) -> ReadResult:
        coin = get_coin(coin_id)

        async def fetch() -> NewsFeed:
            return await self.news.search(coin)

        return await self.orchestrator.read(self.news_class, f"news_{coin.id}", fetch, force=force)

    async def get_sentiment_summary(self, coin_id: str, force: bool = False) -> ReadResult:
        coin = get_coin(coin_id)

        async def fetch() -> SentimentSummary:
            feed: NewsFeed = (await self.get_news(coin.id, force=force)).payload
            result = await self.scorer.score(feed.headlines)
            logger.info("sentiment.built", coin=coin.id, source=result.source,
                        score=result.score, headlines=len(feed.headlines))
            return SentimentSummary(
                coin=coin.id,
                score=result.score,
                label=result.label,
                count=len(feed.headlines),
                headlines=[
                    HeadlineRef(title=h.title, url=h.url, publishedAt=h.publishedAt)
                    for h in feed.headlines[:SENTIMENT_HEADLINES]
                ],
                source=result.source,
                timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                summary=result.summary,
            )

        return await self.orchestrator.read(
            self.sentiment_class, f"sentiment_{coin.id}", fetch, force=force
        )

    async def score_headlines(self, headlines: list[Headline]) -> SentimentScore:
        return await self.scorer.score(headlines)

    async def classify_mood(self, request: MoodRequest, enhanced: bool = False) -> MoodResult:
        result = await self.moods.classify(request, enhanced=enhanced)
        logger.info("mood.classified", coin=request.coin, mood=result.mood, method=result.method)
        return result

    # ── Narration ───────────────────────────────────────────────────────────

    async def canonical_price(self, coin: CoinConfig, client_price: float | None = None) -> tuple[float | None, str]:
        """Server-authoritative price: cache, live quote, cached history, then the client's."""
        cached = await self.orchestrator.peek(self.price_class, f"price_{coin.id}")
        if cached is not None:
            return cached.payload.price, "cache"

        try:
            live = await asyncio.wait_for(self.get_price(coin.id), timeout=self.cfg.ai_price_timeout_seconds)
            return live.payload.price, "live"
        except (UpstreamError, asyncio.TimeoutError) as e:
            logger.warning("canonical_price.live_failed", coin=coin.id, error=str(e) or type(e).__name__)

        history = await self.orchestrator.peek(self.history_class, f"history_{coin.id}_{DEFAULT_HISTORY_DAYS}")
        if history is not None:
            return history.payload.prices[-1].price, "history"

        if client_price is not None and client_price > 0:
            return float(client_price), "client"
        return None, "none"

    async def explain(self, request: ExplainRequest) -> NarrationResult:
        coin = get_coin(request.coin)
        client_price = request.client_price()
        price, source = await self.canonical_price(coin, client_price)
        if price is None:
            return self.narrator.fallback(coin.id, minimal_context(request.timeframe), PRICE_UNAVAILABLE)

        if client_price and abs(client_price - price) > 0.01:
            logger.info("explain.client_price_ignored", coin=coin.id, client=client_price, canonical=price)

        values = request.indicators(price)
        ctx = build_context(
            price=price,
            rsi=values["rsi"],
            sma=values["sma"],
            sma_period=request.sma_period(),
            bb_lower=values["bb_lower"],
            bb_upper=values["bb_upper"],
            timeframe=request.timeframe,
        )
        logger.info("explain.context", coin=coin.id, price_source=source, allowed=len(ctx.allowed_numbers))
        return await self.narrator.explain(coin.id, ctx)

    # ── Maintenance ─────────────────────────────────────────────────────────

    def known_keys(self) -> Iterator[tuple[ResourceClass, str]]:
        for coin in COIN_REGISTRY.values():
            yield self.price_class, f"price_{coin.id}"
            for days in range(1, self.cfg.history_max_days + 1):
                yield self.history_class, f"history_{coin.id}_{days}"
            yield self.news_class, f"news_{coin.id}"
            yield self.sentiment_class, f"sentiment_{coin.id}"

    async def purge_legacy_cache(self) -> dict:
        """Delete every known key holding a foreign-provenance or corrupt entry."""
        deleted = []
        errors = []
        checked = 0
        for resource, key in self.known_keys():
            checked += 1
            try:
                reason = await self.orchestrator.purge_incompatible(resource, key)
            except StoreUnavailable as e:
                errors.append({"key": key, "error": str(e)})
                continue
            if reason:
                deleted.append({"key": key, "reason": reason})
        logger.info("cache.purge_legacy", checked=checked, deleted=len(deleted), errors=len(errors))
        return {
            "status": "completed",
            "checked": checked,
            "deleted": len(deleted),
            "keys": deleted,
            "errors": errors,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    async def sweep(self) -> int:
        deleted = 0
        for _, key in self.known_keys():
            if await self.orchestrator.sweep(key):
                deleted += 1
        if deleted:
            logger.info("cache.sweep", deleted=deleted)
        return deleted

    async def run_sweeper(self) -> None:
        """Periodic safety sweep; runs until cancelled."""
        while True:
            await asyncio.sleep(self.cfg.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.warning("cache.sweep_failed", error=repr(e))

    async def aclose(self) -> None:
        await self.orchestrator.aclose()
        if self._session is not None:
            await self._session.close()
        await self.store.close()


def create_store(cfg: Settings) -> KeyValueStore:
    if cfg.store_backend == "memory":
        return MemoryStore()
    return RedisStore(cfg.redis_url)


def create_service(cfg: Settings = settings) -> MoodService:
    """Wire the production object graph; must run inside the event loop."""
    store = create_store(cfg)
    session = aiohttp.ClientSession()
    ledger = BackoffLedger(store)
    fetcher = RetryingFetcher(
        session,
        ledger,
        RetryPolicy(
            max_attempts=cfg.fetch_max_attempts,
            attempt_timeout=cfg.fetch_timeout_seconds,
            base_delay=cfg.backoff_base_seconds,
            multiplier=cfg.backoff_multiplier,
            rate_limit_cap=cfg.rate_limit_cap_seconds,
            transient_cap=cfg.transient_cap_seconds,
        ),
    )
    if cfg.market_data_provider != "coincap":
        raise ValueError(f"Unknown market data provider: {cfg.market_data_provider}")
    market = CoinCapProvider(fetcher, api_key=cfg.coincap_api_key, base_url=cfg.coincap_base_url)
    news = NewsApiProvider(fetcher, api_key=cfg.newsapi_key, base_url=cfg.newsapi_base_url)
    llm = CohereClient(
        session,
        api_key=cfg.cohere_api_key,
        model=cfg.cohere_model,
        base_url=cfg.cohere_base_url,
        requests_per_minute=cfg.llm_requests_per_minute,
    )
    logger.info("service.created", store=cfg.store_backend, market=market.name, llm_configured=llm.configured)
    return MoodService(store, market, news, llm, cfg=cfg, session=session)
