"""Market mood classification from chart signals.

The model is asked for one of bullish / bearish / neutral; any model failure
drops to a weighted rule-based score over the same signals.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.data.errors import LanguageModelError
from src.core.data.providers.base import LanguageModel
from src.core.narration.request import SeriesPoint

logger = structlog.get_logger()

MOODS = ("bullish", "bearish", "neutral")


class CandlePattern(BaseModel):
    model_config = ConfigDict(extra="ignore")

    signal: str = "NEUTRAL"
    name: str | None = None


class MoodRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rsi: float
    smaSignal: str = Field(min_length=1)
    bbSignal: str = Field(min_length=1)
    priceData: list[SeriesPoint] = Field(min_length=1)
    candlePatterns: list[CandlePattern] = Field(default_factory=list)
    coin: str | None = None


@dataclass(frozen=True)
class MoodResult:
    mood: str
    confidence: int
    reasoning: str
    method: str
    coin: str | None
    patterns: str | None = None

    def as_response(self) -> dict:
        body = {
            "mood": self.mood,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "method": self.method,
            "coin": self.coin,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        if self.patterns is not None:
            body["patterns"] = self.patterns
        return body


def price_change(points: list[SeriesPoint]) -> float:
    """Percent move across the last five points."""
    recent = points[-5:]
    old, new = recent[0].y, recent[-1].y
    if old == 0:
        return 0.0
    return (new - old) / old * 100


def price_trend(change: float) -> str:
    if change > 2:
        return "rising strongly"
    if change > 0.5:
        return "rising gradually"
    if change < -2:
        return "declining sharply"
    if change < -0.5:
        return "declining gradually"
    return "sideways movement"


def signal_confidence(rsi: float, sma_signal: str, change: float) -> int:
    conf = 60
    if rsi >= 70 or rsi <= 30:
        conf += 20
    elif rsi >= 60 or rsi <= 40:
        conf += 10
    if sma_signal in ("BUY", "SELL"):
        conf += 10
    if abs(change) > 2:
        conf += 10
    elif abs(change) > 0.5:
        conf += 5
    return min(90, conf)


def pattern_counts(patterns: list[CandlePattern]) -> tuple[int, int, int]:
    signals = [p.signal.upper() for p in patterns]
    return signals.count("BUY"), signals.count("SELL"), signals.count("NEUTRAL")


def pattern_summary(patterns: list[CandlePattern]) -> str:
    bullish, bearish, neutral = pattern_counts(patterns)
    if bullish > bearish:
        return f"{bullish} bullish patterns"
    if bearish > bullish:
        return f"{bearish} bearish patterns"
    if neutral > 2:
        return f"{neutral} neutral patterns"
    return "no clear patterns"


def _half_up(value: float) -> int:
    return math.floor(value + 0.5)


def rule_based_mood(req: MoodRequest, enhanced: bool = False) -> MoodResult:
    bull = bear = 0.0
    if req.rsi < 30:
        bull += 2
    elif req.rsi > 70:
        bear += 2
    elif 45 <= req.rsi <= 55:
        bull += 0.5

    if req.smaSignal == "BUY":
        bull += 1.5
    elif req.smaSignal == "SELL":
        bear += 1.5

    if req.bbSignal == "BUY":
        bull += 1
    elif req.bbSignal == "SELL":
        bear += 1

    if len(req.priceData) >= 3:
        first, last = req.priceData[-3].y, req.priceData[-1].y
        trend = (last - first) / first if first else 0.0
        if trend > 0.01:
            bull += 1
        elif trend < -0.01:
            bear += 1

    bull_patterns, bear_patterns, _ = pattern_counts(req.candlePatterns)
    if enhanced:
        bull += bull_patterns * 0.3
        bear += bear_patterns * 0.3

    if bull > bear + 1:
        mood, confidence = "bullish", min(90, 60 + (bull - bear) * 8)
    elif bear > bull + 1:
        mood, confidence = "bearish", min(90, 60 + (bear - bull) * 8)
    else:
        mood, confidence = "neutral", 50 + abs(bull - bear) * 5

    if not enhanced:
        return MoodResult(
            mood=mood,
            confidence=_half_up(confidence),
            reasoning=f"Fallback analysis: bullish signals {bull:.1f}, bearish signals {bear:.1f}",
            method="rule-based-fallback",
            coin=req.coin,
        )
    return MoodResult(
        mood=mood,
        confidence=_half_up(confidence),
        reasoning=(
            f"Enhanced fallback: bullish signals {bull:.1f}, bearish signals {bear:.1f}, "
            f"with {bull_patterns} bullish and {bear_patterns} bearish patterns"
        ),
        method="enhanced-fallback",
        coin=req.coin,
        patterns=f"{bull_patterns} bullish, {bear_patterns} bearish patterns",
    )


def signal_line(req: MoodRequest, trend: str, patterns: str | None = None) -> str:
    line = f"RSI: {req.rsi:.0f}, SMA: {req.smaSignal}, BB: {req.bbSignal}, Price trend: {trend}"
    if patterns is not None:
        line += f", Patterns: {patterns}"
    return line


def mood_prompt(signals: str) -> str:
    return f"""You are a cryptocurrency market sentiment classifier. Based on the technical analysis indicators provided, classify the market sentiment as exactly one of: "bullish", "bearish", or "neutral".

Technical Analysis Data:
{signals}

Guidelines:
- "bullish": Strong positive signals, RSI oversold (under 30) with buy signals, or strong upward momentum
- "bearish": Strong negative signals, RSI overbought (over 70) with sell signals, or strong downward momentum
- "neutral": Mixed signals, RSI in normal range (30-70), or conflicting indicators

Examples:
- RSI: 25, SMA: BUY, BB: BUY, Price trend: rising strongly -> bullish
- RSI: 80, SMA: SELL, BB: SELL, Price trend: declining sharply -> bearish
- RSI: 50, SMA: NEUTRAL, BB: NEUTRAL, Price trend: sideways movement -> neutral

Respond with ONLY a JSON object in this exact format:
{{"sentiment": "bullish", "confidence": 0.8, "reasoning": "Brief explanation"}}"""


ENHANCED_EXAMPLES = (
    ("RSI: 85, SMA: SELL, BB: SELL, Price trend: declining sharply, Patterns: 3 bearish reversal", "bearish"),
    ("RSI: 25, SMA: BUY, BB: BUY, Price trend: rising from oversold, Patterns: 2 bullish hammer", "bullish"),
    ("RSI: 45, SMA: NEUTRAL, BB: NEUTRAL, Price trend: sideways movement, Patterns: 4 doji neutral", "neutral"),
    ("RSI: 75, SMA: BUY, BB: NEUTRAL, Price trend: strong upward momentum, Patterns: 3 bullish continuation",
     "bullish"),
    ("RSI: 30, SMA: SELL, BB: SELL, Price trend: continued downtrend, Patterns: 2 shooting star bearish", "bearish"),
    ("RSI: 55, SMA: BUY, BB: BUY, Price trend: breaking resistance, Patterns: 1 bullish engulfing", "bullish"),
)


def enhanced_prompt(signals: str) -> str:
    examples = "\n".join(f"- {text} -> {label}" for text, label in ENHANCED_EXAMPLES)
    return f"""Classify cryptocurrency market sentiment based on technical analysis indicators AND candlestick patterns. Use "bullish" for positive outlook, "bearish" for negative outlook, and "neutral" for mixed or unclear signals.

Examples:
{examples}

Input:
{signals}

Respond with ONLY a JSON object in this exact format:
{{"sentiment": "neutral", "confidence": 0.7, "reasoning": "Brief explanation"}}

"confidence" is your certainty between 0 and 1."""


class _ModelMood(BaseModel):
    sentiment: str
    confidence: float | None = Field(default=None, ge=0, le=1)
    reasoning: str | None = None


class MoodClassifier:

    def __init__(self, llm: LanguageModel, timeout: float = 8.0):
        self._llm = llm
        self._timeout = timeout

    async def classify(self, req: MoodRequest, enhanced: bool = False) -> MoodResult:
        if self._llm.configured:
            try:
                if enhanced:
                    return await self._classify_enhanced(req)
                return await self._classify(req)
            except LanguageModelError as e:
                logger.info("mood.model_fallback", enhanced=enhanced, code=e.code, error=str(e))
        return rule_based_mood(req, enhanced=enhanced)

    async def _classify(self, req: MoodRequest) -> MoodResult:
        change = price_change(req.priceData)
        trend = price_trend(change)
        reply = await self._ask(mood_prompt(signal_line(req, trend)), max_tokens=200)
        return MoodResult(
            mood=reply.sentiment,
            # the signals decide confidence, not the model
            confidence=signal_confidence(req.rsi, req.smaSignal, change),
            reasoning=reply.reasoning or (
                f"Based on RSI {req.rsi:.1f}, SMA: {req.smaSignal}, BB: {req.bbSignal}, price trend: {trend}"
            ),
            method="cohere-chat-api",
            coin=req.coin,
        )

    async def _classify_enhanced(self, req: MoodRequest) -> MoodResult:
        trend = price_trend(price_change(req.priceData))
        patterns = pattern_summary(req.candlePatterns)
        reply = await self._ask(enhanced_prompt(signal_line(req, trend, patterns)), max_tokens=200)
        return MoodResult(
            mood=reply.sentiment,
            confidence=round((reply.confidence or 0) * 100),
            reasoning=(
                f"Enhanced analysis: RSI {req.rsi:.1f}, SMA: {req.smaSignal}, BB: {req.bbSignal}, "
                f"price trend: {trend}, with {patterns}"
            ),
            method="cohere-enhanced-api",
            coin=req.coin,
            patterns=patterns,
        )

    async def _ask(self, prompt: str, max_tokens: int) -> _ModelMood:
        raw = await self._llm.chat(
            [{"role": "user", "content": prompt}],
            temperature=0.3,
            max_tokens=max_tokens,
            timeout=self._timeout,
        )
        match = re.search(r"\{[\s\S]*\}", raw)
        if match is None:
            raise LanguageModelError("No JSON object in mood reply", code="parse-error")
        try:
            reply = _ModelMood.model_validate(json.loads(match.group(0)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise LanguageModelError(f"Invalid mood reply: {e}", code="parse-error") from e
        sentiment = reply.sentiment.strip().lower()
        if sentiment not in MOODS:
            raise LanguageModelError(f"Unknown mood label: {reply.sentiment!r}", code="parse-error")
        return reply.model_copy(update={"sentiment": sentiment})
