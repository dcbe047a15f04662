"""NewsAPI.org provider: recent English-language headlines per coin."""
from __future__ import annotations

import json
from datetime import date, timedelta

import structlog
from pydantic import BaseModel, ValidationError

from src.core.coins.registry import CoinConfig
from src.core.data.errors import ProviderNotConfigured, UpstreamPayloadError
from src.core.data.fetcher import RetryingFetcher
from src.core.data.models import Headline, NewsFeed
from src.core.data.providers.base import NewsProvider

NEWSAPI_BASE = "https://newsapi.org/v2"
PAGE_SIZE = 20
MAX_HEADLINES = 15
MIN_TITLE_LENGTH = 11

logger = structlog.get_logger()


class _Source(BaseModel):
    name: str | None = None


class _Article(BaseModel):
    title: str | None = None
    description: str | None = None
    url: str | None = None
    source: _Source | None = None
    publishedAt: str | None = None
    author: str | None = None
    urlToImage: str | None = None


class _EverythingResponse(BaseModel):
    status: str = "ok"
    message: str | None = None
    totalResults: int | None = None
    articles: list[_Article] = []


def build_query(coin: CoinConfig) -> str:
    return " OR ".join([coin.name, coin.symbol, "cryptocurrency", "crypto"])


def keep_article(article: _Article) -> bool:
    title = article.title or ""
    return (
        len(title) >= MIN_TITLE_LENGTH
        and "[Removed]" not in title
        and "advertisement" not in title.lower()
    )


class NewsApiProvider(NewsProvider):

    def __init__(self, fetcher: RetryingFetcher, api_key: str = "", base_url: str = NEWSAPI_BASE):
        self._fetcher = fetcher
        self._api_key = api_key
        self._base = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "newsapi"

    async def search(self, coin: CoinConfig) -> NewsFeed:
        if not self._api_key:
            raise ProviderNotConfigured("NewsAPI key not configured")

        query = build_query(coin)
        result = await self._fetcher.fetch(
            f"{self._base}/everything",
            resource_id=self.name,
            headers={"Accept": "application/json", "User-Agent": "Crypto-Mood-Dashboard/1.0"},
            params={
                "q": query,
                "language": "en",
                "sortBy": "publishedAt",
                "pageSize": PAGE_SIZE,
                "from": (date.today() - timedelta(days=1)).isoformat(),
                "apiKey": self._api_key,
            },
        )
        try:
            parsed = _EverythingResponse.model_validate(result.json())
        except (json.JSONDecodeError, ValidationError) as e:
            raise UpstreamPayloadError(f"NewsAPI response undecodable: {e}", status=result.status) from e
        if not result.ok or parsed.status == "error":
            raise UpstreamPayloadError(
                f"NewsAPI error: {result.status} - {parsed.message or 'unknown'}", status=result.status
            )

        headlines = [
            Headline(
                title=a.title.strip(),
                description=(a.description or "").strip(),
                url=a.url,
                source=(a.source.name if a.source and a.source.name else "Unknown"),
                publishedAt=a.publishedAt,
                author=a.author,
                image=a.urlToImage,
            )
            for a in parsed.articles
            if keep_article(a)
        ][:MAX_HEADLINES]

        logger.info("newsapi.search", coin=coin.id, articles=len(parsed.articles), kept=len(headlines))
        return NewsFeed(
            coin=coin.id,
            headlines=headlines,
            total=parsed.totalResults or len(headlines),
            source=self.name,
            query=query,
        )
