"""Parse-then-validate pipeline for language-model narration."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, ValidationError

from src.core.data.errors import LanguageModelError
from src.core.narration.context import NumericContext, canonical

NUMBER_TOKEN = re.compile(r"\d+(?:,\d{3})*(?:\.\d+)?")
FIXED_WINDOW_LABEL = re.compile(
    r"(?:\b|^)(50|100|200)(?:[-\s]day)?\s+SMA|\bMA(50|100|200)\b", re.IGNORECASE
)
JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class EchoedBands(BaseModel):
    lower: float | None = None
    upper: float | None = None


class EchoedContext(BaseModel):
    model_config = ConfigDict(extra="ignore")

    currentPrice: float | None = None
    currentRSI: float | None = None
    currentSMA: float | None = None
    smaPeriod: float | None = None
    bb: EchoedBands | None = None
    timeframe: float | None = None


class ModelReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ok: bool = True
    method: str | None = None
    model: str | None = None
    explanation: str = ""
    technicalContext: EchoedContext | None = None
    reason: str | None = None
    timestamp: str | None = None


@dataclass
class ValidationResult:
    violations: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations


def parse_reply(text: str) -> ModelReply:
    """Extract the JSON object from *text* and decode it into a ModelReply."""
    match = JSON_OBJECT.search(text or "")
    if match is None:
        raise LanguageModelError("No JSON object found in model reply", code="parse-error")
    try:
        reply = ModelReply.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise LanguageModelError(f"Invalid model reply: {e}", code="parse-error") from e
    if reply.ok and not reply.explanation.strip():
        raise LanguageModelError("Model reply has no explanation", code="parse-error")
    return reply


def _allowed_set(ctx: NumericContext) -> set[str]:
    allowed = set()
    for n in ctx.allowed_numbers:
        plain = n.replace(",", "")
        allowed.add(plain)
        allowed.add(plain.lstrip("+-"))
    return allowed


def find_violations(text: str, ctx: NumericContext) -> list[str]:
    allowed = _allowed_set(ctx)
    violations = []
    for match in NUMBER_TOKEN.finditer(text):
        token = match.group(0)
        if token.replace(",", "") not in allowed:
            violations.append(f"disallowed number: {token}")

    for match in FIXED_WINDOW_LABEL.finditer(text):
        window = match.group(1) or match.group(2)
        if window != ctx.period:
            violations.append(f"forbidden label {match.group(0)!r} (use SMA({ctx.period}))")
    return violations


def validate_reply(reply: ModelReply, ctx: NumericContext) -> ValidationResult:
    result = ValidationResult(violations=find_violations(reply.explanation, ctx))
    echoed = reply.technicalContext
    if echoed is not None and echoed.currentPrice is not None:
        if canonical(echoed.currentPrice) != ctx.price:
            result.violations.append(
                f"price mismatch: reply={canonical(echoed.currentPrice)} canonical={ctx.price}"
            )
    return result
