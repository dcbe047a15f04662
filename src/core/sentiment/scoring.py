"""Headline sentiment scoring: a keyword lexicon and a Cohere-backed scorer.

Scores live on [0, 1]: 0 is fully bearish, 0.5 neutral, 1 fully bullish.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, Field, ValidationError

from src.core.data.errors import LanguageModelError
from src.core.data.models import Headline
from src.core.data.providers.base import LanguageModel

logger = structlog.get_logger()

BULLISH_AT = 0.66
BEARISH_AT = 0.33

POSITIVE_KEYWORDS = (
    "soar", "surge", "rally", "bull", "bullish", "gain", "gains", "rise", "rising",
    "up", "high", "moon", "pump", "breakthrough", "adoption", "institutional",
    "investment", "buy", "support", "strong", "growth", "increase", "positive",
    "optimistic", "confidence", "milestone", "achievement", "success", "upgrade",
    "partnership", "expansion", "innovation", "record", "all-time", "ath",
    "boost", "advance", "progress", "approve", "approved",
)

NEGATIVE_KEYWORDS = (
    "crash", "dump", "bear", "bearish", "fall", "drop", "down", "low", "dip",
    "decline", "plunge", "collapse", "sell", "selling", "pressure", "fear",
    "panic", "concern", "worry", "risk", "volatile", "uncertainty", "loss",
    "losses", "negative", "pessimistic", "regulation", "ban", "hack", "attack",
    "fraud", "scam", "bubble", "warning", "alert", "crisis", "problem",
    "reject", "rejected", "struggle", "suffer", "plummet",
)


@dataclass(frozen=True)
class SentimentScore:
    score: float
    label: str
    source: str
    summary: list[str] = field(default_factory=list)


def label_for(score: float) -> str:
    if score >= BULLISH_AT:
        return "Bullish"
    if score <= BEARISH_AT:
        return "Bearish"
    return "Neutral"


def _headline_score(text: str) -> float:
    text = text.lower()
    pos = sum(1 for k in POSITIVE_KEYWORDS if k in text)
    neg = sum(1 for k in NEGATIVE_KEYWORDS if k in text)
    if pos > neg:
        return min(1.0, 0.3 + (pos - neg) * 0.2)
    if neg > pos:
        return max(-1.0, -0.3 - (neg - pos) * 0.2)
    return 0.0


def lexicon_score(headlines: list[Headline]) -> SentimentScore:
    if not headlines:
        return SentimentScore(score=0.5, label="Neutral", source="rule-based")
    total = sum(_headline_score(f"{h.title} {h.description}") for h in headlines)
    # map the average from [-1, 1] onto [0, 1]
    normalized = (total / len(headlines) + 1) / 2
    return SentimentScore(
        score=round(normalized, 2), label=label_for(normalized), source="rule-based"
    )


class _CohereSentiment(BaseModel):
    score: float = Field(ge=0, le=1)
    label: str | None = None
    summary: list[str] = Field(default_factory=list)


def sentiment_prompt(titles: list[str]) -> str:
    numbered = "\n".join(f"{i}. {t}" for i, t in enumerate(titles, start=1))
    return f"""Analyze the sentiment of these cryptocurrency news headlines and determine the overall market mood.

Headlines:
{numbered}

Respond with ONLY a JSON object in this exact format:
{{
  "score": 0.75,
  "label": "Bullish",
  "summary": ["Point 1", "Point 2", "Point 3"]
}}

Rules:
- "score": A number between 0 and 1 where:
  - 0.0-0.33 = Bearish (negative sentiment)
  - 0.34-0.66 = Neutral (mixed/neutral sentiment)
  - 0.67-1.0 = Bullish (positive sentiment)
- "label": One of "Bullish", "Neutral", or "Bearish"
- "summary": Exactly 3 bullet points (strings) summarizing key sentiment drivers
- Use ONLY the provided headlines - do not make up data
- Return ONLY the JSON object, no other text"""


class SentimentScorer:
    """Cohere first when configured; the lexicon otherwise or on any model failure."""

    MAX_TITLES = 10

    def __init__(self, llm: LanguageModel, timeout: float = 8.0):
        self._llm = llm
        self._timeout = timeout

    async def score(self, headlines: list[Headline]) -> SentimentScore:
        if not headlines:
            return lexicon_score(headlines)
        if self._llm.configured:
            try:
                return await self._score_with_model(headlines)
            except LanguageModelError as e:
                logger.info("sentiment.model_fallback", code=e.code, error=str(e))
        return lexicon_score(headlines)

    async def _score_with_model(self, headlines: list[Headline]) -> SentimentScore:
        titles = [h.title for h in headlines if len(h.title) > 5][: self.MAX_TITLES]
        if not titles:
            raise LanguageModelError("No valid headlines to analyze", code="no-input")

        raw = await self._llm.chat(
            [{"role": "user", "content": sentiment_prompt(titles)}],
            temperature=0.3,
            max_tokens=500,
            timeout=self._timeout,
        )
        match = re.search(r"\{[\s\S]*\}", raw)
        if match is None:
            raise LanguageModelError("No JSON object in sentiment reply", code="parse-error")
        try:
            parsed = _CohereSentiment.model_validate(json.loads(match.group(0)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise LanguageModelError(f"Invalid sentiment reply: {e}", code="parse-error") from e

        score = round(parsed.score, 2)
        label = parsed.label if parsed.label in ("Bullish", "Neutral", "Bearish") else label_for(score)
        return SentimentScore(score=score, label=label, source="cohere", summary=parsed.summary)
