"""Pydantic request/response models for the dashboard endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field

from src.core.data.models import Headline


# ── Sentiment ────────────────────────────────────────────────────────────


class SentimentRequest(BaseModel):
    headlines: list[Headline | str] = Field(default_factory=list)

    def as_headlines(self) -> list[Headline]:
        return [
            Headline(title=h) if isinstance(h, str) else h
            for h in self.headlines
            if (h if isinstance(h, str) else h.title).strip()
        ]


class SentimentResponse(BaseModel):
    score: float
    label: str
    count: int
    method: str
    summary: list[str] = Field(default_factory=list)


# ── Admin ────────────────────────────────────────────────────────────────


class PurgeRequest(BaseModel):
    token: str = ""
