"""Canonical payload shapes. Every provider response is decoded into one of these.

Downstream code (cache, orchestrator, API) only ever sees these models, never
raw provider fields.
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class PriceSnapshot(BaseModel):
    coin: str
    price: float = Field(gt=0)
    change24h: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    symbol: str
    timestamp: str
    source: str


class PricePoint(BaseModel):
    timestamp: str
    price: float = Field(gt=0)


class PriceHistory(BaseModel):
    coin: str
    prices: list[PricePoint] = Field(min_length=1)
    days: int
    symbol: str
    source: str
    note: str = ""


class Headline(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    url: str | None = None
    source: str = "Unknown"
    publishedAt: str | None = None
    author: str | None = None
    image: str | None = None


class NewsFeed(BaseModel):
    coin: str
    headlines: list[Headline] = Field(default_factory=list)
    total: int = 0
    source: str
    query: str = ""


class HeadlineRef(BaseModel):
    title: str
    url: str | None = None
    publishedAt: str | None = None


class SentimentSummary(BaseModel):
    coin: str
    score: float = Field(ge=0, le=1)
    label: str
    count: int
    headlines: list[HeadlineRef] = Field(default_factory=list)
    source: str
    timestamp: str
    summary: list[str] = Field(default_factory=list)
