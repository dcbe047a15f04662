"""ComplianceNarrator — generate, validate, repair once, else fall back.

The language-model path is discarded on any provider error, unparseable
reply, explicit refusal, lingering violation or timeout. The caller always
gets an explanation plus the status that produced it.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog

from src.core.data.errors import ComplianceViolation, LanguageModelError
from src.core.data.providers.base import LanguageModel
from src.core.narration.context import NumericContext
from src.core.narration.template import render_fallback, render_unavailable
from src.core.narration.validator import parse_reply, validate_reply

logger = structlog.get_logger()

METHOD_MODEL = "cohere-chat-api"
METHOD_FALLBACK = "rule-based-fallback"
PRICE_UNAVAILABLE = "price-fetch-failed"


class NarrationStatus(str, Enum):
    OK = "ok"
    REPAIRED = "repaired"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class NarrationResult:
    status: NarrationStatus
    method: str
    model: str | None
    explanation: str
    context: NumericContext
    reason: str | None = None

    @property
    def header_status(self) -> str:
        if self.status == NarrationStatus.FALLBACK and self.reason == "timeout":
            return "timeout"
        return self.status.value

    def as_response(self) -> dict:
        body = {
            "ok": True,
            "method": self.method,
            "model": self.model,
            "explanation": self.explanation,
            "technicalContext": self.context.technical_context(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        if self.status == NarrationStatus.FALLBACK:
            body["fallbackReason"] = self.reason or "unknown"
        return body


def system_prompt(ctx: NumericContext) -> str:
    return (
        "You are a crypto technical analysis assistant. STRICT RULES:\n"
        "1) You may only use the numeric values listed in 'AllowedNumbers'. "
        "Do NOT invent or alter any numbers.\n"
        f"2) Refer to the moving average exactly as 'SMA({ctx.period})'. Do NOT use labels like "
        "'50-day' or '200-day' unless the period equals those values.\n"
        "3) Output must be valid JSON (see schema), and any free-text explanation must not "
        "contain numeric values not in AllowedNumbers.\n"
        "4) Keep the free-text explanation concise; if you cannot comply, return an object "
        'with { "ok": false, "reason": "violation" }.'
    )


def user_prompt(coin: str, ctx: NumericContext) -> str:
    allowed = ", ".join(ctx.allowed_numbers)
    return f"""Context: coin={coin.upper()}, timeframe={ctx.timeframe} days. AllowedNumbers: {allowed}.
Price {ctx.price}, RSI {ctx.rsi}, SMA({ctx.period}) {ctx.sma}, bands [{ctx.lower}, {ctx.upper}],
price vs SMA {ctx.price_vs_sma}%, band width {ctx.band_width}%.

Return a JSON object (no other top-level text) with this exact schema:
{{
  "ok": true | false,
  "method": "{METHOD_MODEL}",
  "model": "<model-name>",
  "explanation": "<Markdown string, no numbers outside AllowedNumbers>",
  "technicalContext": {{
     "currentPrice": <number>,
     "currentRSI": <number>,
     "currentSMA": <number>,
     "smaPeriod": <number>,
     "bb": {{ "lower": <number>, "upper": <number> }},
     "timeframe": <number>
  }},
  "timestamp": "<ISO timestamp>"
}}

If you cannot produce compliant output, set ok=false and give a short reason."""


def repair_prompt(ctx: NumericContext) -> str:
    allowed = ", ".join(ctx.allowed_numbers)
    return (
        "Repair: The previous JSON contained numeric values or labels not in AllowedNumbers. "
        f'Please rewrite the "explanation" and ensure it uses ONLY the provided AllowedNumbers: '
        f"{allowed} and the label SMA({ctx.period}). Return the same JSON schema. "
        'Do not change numbers. If you cannot comply, set ok=false and reason:"cannot_comply".'
    )


class ComplianceNarrator:

    def __init__(
        self,
        llm: LanguageModel,
        model_timeout: float = 8.0,
        repair_timeout: float = 5.0,
        total_timeout: float = 12.0,
    ):
        self._llm = llm
        self._model_timeout = model_timeout
        self._repair_timeout = repair_timeout
        self._total_timeout = total_timeout

    def fallback(self, coin: str, ctx: NumericContext, reason: str) -> NarrationResult:
        logger.info("narration.fallback", coin=coin, reason=reason)
        render = render_unavailable if reason == PRICE_UNAVAILABLE else render_fallback
        return NarrationResult(
            status=NarrationStatus.FALLBACK,
            method=METHOD_FALLBACK,
            model=None,
            explanation=render(coin, ctx),
            context=ctx,
            reason=reason,
        )

    async def explain(self, coin: str, ctx: NumericContext) -> NarrationResult:
        if not self._llm.configured:
            return self.fallback(coin, ctx, "not-configured")
        try:
            explanation, repaired = await asyncio.wait_for(
                self._generate(coin, ctx), timeout=self._total_timeout
            )
        except asyncio.TimeoutError:
            return self.fallback(coin, ctx, "timeout")
        except LanguageModelError as e:
            logger.warning("narration.model_error", coin=coin, code=e.code, error=str(e))
            return self.fallback(coin, ctx, e.code)
        except ComplianceViolation as e:
            logger.warning("narration.still_violating", coin=coin, violations=e.violations)
            return self.fallback(coin, ctx, "compliance-violation")

        status = NarrationStatus.REPAIRED if repaired else NarrationStatus.OK
        logger.info("narration.ok", coin=coin, status=status.value)
        return NarrationResult(
            status=status,
            method=METHOD_MODEL,
            model=self._llm.model_name,
            explanation=explanation,
            context=ctx,
            reason="repaired-after-violation" if repaired else None,
        )

    async def _generate(self, coin: str, ctx: NumericContext) -> tuple[str, bool]:
        messages = [
            {"role": "system", "content": system_prompt(ctx)},
            {"role": "user", "content": user_prompt(coin, ctx)},
        ]
        raw = await self._llm.chat(messages, temperature=0.3, max_tokens=1500, timeout=self._model_timeout)
        reply = parse_reply(raw)
        if not reply.ok:
            raise LanguageModelError(f"model declined: {reply.reason or 'unknown'}", code="model-declined")

        result = validate_reply(reply, ctx)
        if result.is_valid:
            return reply.explanation, False

        logger.info("narration.repair", coin=coin, violations=result.violations)
        messages += [
            {"role": "assistant", "content": raw},
            {"role": "user", "content": repair_prompt(ctx)},
        ]
        raw = await self._llm.chat(messages, temperature=0.2, max_tokens=1500, timeout=self._repair_timeout)
        repaired = parse_reply(raw)
        if not repaired.ok:
            raise LanguageModelError(f"repair declined: {repaired.reason or 'unknown'}", code="cannot-comply")

        result = validate_reply(repaired, ctx)
        if not result.is_valid:
            raise ComplianceViolation(result.violations)
        return repaired.explanation, True
