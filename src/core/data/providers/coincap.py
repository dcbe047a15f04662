"""CoinCap provider — crypto snapshots and price history via CoinCap API v3."""
from __future__ import annotations

import json
import time
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, ValidationError

from src.core.coins.registry import CoinConfig
from src.core.data.errors import UpstreamPayloadError
from src.core.data.fetcher import FetchResult, RetryingFetcher
from src.core.data.models import PriceHistory, PricePoint, PriceSnapshot
from src.core.data.providers.base import MarketDataProvider

COINCAP_BASE = "https://rest.coincap.io/v3"
USER_AGENT = "Crypto-Mood-Dashboard/1.0"

logger = structlog.get_logger()


# Raw CoinCap shapes; numbers arrive as strings and may be null
class _Asset(BaseModel):
    id: str
    symbol: str | None = None
    priceUsd: float | None = None
    changePercent24Hr: float | None = None
    marketCapUsd: float | None = None
    volumeUsd24Hr: float | None = None


class _AssetsResponse(BaseModel):
    data: list[_Asset] = []


class _HistoryPoint(BaseModel):
    time: int
    priceUsd: float | None = None


class _HistoryResponse(BaseModel):
    data: list[_HistoryPoint] = []


def _iso(ms: int | None = None) -> str:
    ts = time.time() if ms is None else ms / 1000
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class CoinCapProvider(MarketDataProvider):

    def __init__(self, fetcher: RetryingFetcher, api_key: str = "", base_url: str = COINCAP_BASE):
        self._fetcher = fetcher
        self._api_key = api_key
        self._base = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "coincap"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    def _decode(result: FetchResult, model: type[BaseModel], what: str) -> BaseModel:
        if not result.ok:
            raise UpstreamPayloadError(
                f"CoinCap {what} error: {result.status} - {result.body[:200]}", status=result.status
            )
        try:
            return model.model_validate(result.json())
        except (json.JSONDecodeError, ValidationError) as e:
            raise UpstreamPayloadError(f"CoinCap {what} response undecodable: {e}", status=result.status) from e

    async def fetch_snapshots(self, coins: list[CoinConfig]) -> dict[str, PriceSnapshot]:
        if not coins:
            return {}
        by_provider_id = {c.provider_id: c for c in coins}
        ids = ",".join(by_provider_id)
        result = await self._fetcher.fetch(
            f"{self._base}/assets",
            # first coin stands in for the whole batch in the backoff ledger
            resource_id=coins[0].provider_id,
            headers=self._headers(),
            params={"ids": ids},
        )
        parsed = self._decode(result, _AssetsResponse, "assets")
        if not parsed.data:
            raise UpstreamPayloadError(f"CoinCap returned empty data for: {ids}")

        now = _iso()
        snapshots: dict[str, PriceSnapshot] = {}
        for asset in parsed.data:
            coin = by_provider_id.get(asset.id.lower())
            if coin is None or not asset.priceUsd or asset.priceUsd <= 0:
                continue
            snapshots[coin.id] = PriceSnapshot(
                coin=coin.id,
                price=round(asset.priceUsd, 2),
                change24h=round(asset.changePercent24Hr or 0.0, 2),
                market_cap=asset.marketCapUsd or 0.0,
                volume_24h=asset.volumeUsd24Hr or 0.0,
                symbol=asset.symbol or coin.symbol,
                timestamp=now,
                source=self.name,
            )
        logger.info("coincap.snapshots", requested=len(coins), received=len(snapshots))
        return snapshots

    async def fetch_history(self, coin: CoinConfig, days: int) -> PriceHistory:
        interval = "d1" if days >= 7 else "h1"
        end = int(time.time() * 1000)
        start = end - days * 24 * 60 * 60 * 1000
        result = await self._fetcher.fetch(
            f"{self._base}/assets/{coin.provider_id}/history",
            resource_id=coin.provider_id,
            headers=self._headers(),
            params={"interval": interval, "start": start, "end": end},
        )
        parsed = self._decode(result, _HistoryResponse, "history")
        points = [
            PricePoint(timestamp=_iso(p.time), price=round(p.priceUsd, 2))
            for p in sorted(parsed.data, key=lambda p: p.time)
            if p.priceUsd and p.priceUsd > 0
        ]
        if not points:
            raise UpstreamPayloadError(f"No history data returned for {coin.id}")

        logger.info("coincap.history", coin=coin.id, days=days, points=len(points))
        return PriceHistory(
            coin=coin.id,
            prices=points,
            days=days,
            symbol=coin.symbol,
            source=self.name,
            note="Real market data from CoinCap",
        )
